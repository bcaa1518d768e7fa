"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in riskledger/__init__.py with no default
limits; this module applies the limits per blueprint.

Usage:
    from riskledger.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

REGISTER_LIMIT = "60/minute"
LOOKUP_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Register endpoints (risks / issues / opportunities): 60/minute
        - Category lookups:  200/minute
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("register")
    if bp:
        limiter.limit(REGISTER_LIMIT)(bp)

    bp = app.blueprints.get("category")
    if bp:
        limiter.limit(LOOKUP_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — register: %s, categories: %s",
        REGISTER_LIMIT, LOOKUP_LIMIT,
    )
