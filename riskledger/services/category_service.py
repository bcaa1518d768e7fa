"""
Category lookups for risks and opportunities.

An unknown or blank category code resolves to "no category" rather than
failing the mutation.
"""

import logging

from riskledger.models import db
from riskledger.models.category import CATEGORY_SCOPES, Category

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    ("technical", "Technical"),
    ("schedule", "Schedule"),
    ("cost", "Cost"),
    ("other", "Other"),
)


def resolve_category_code(scope, value):
    """Return the stored code for ``value`` in ``scope``, or None."""
    if not isinstance(value, str) or not value.strip():
        return None
    code = value.strip()
    exists = Category.query.filter_by(scope=scope, code=code).first()
    if exists is None:
        logger.debug("Unknown %s category %r resolved to none", scope, code)
        return None
    return exists.code


def list_categories(scope=None):
    q = Category.query
    if scope:
        q = q.filter_by(scope=scope)
    return q.order_by(Category.scope, Category.sort_order, Category.code).all()


def seed_default_categories():
    """Insert any missing default categories. Returns the number created.

    Uses ``flush`` only; the CLI command commits.
    """
    created = 0
    for scope in sorted(CATEGORY_SCOPES):
        for order, (code, label) in enumerate(DEFAULT_CATEGORIES):
            if Category.query.filter_by(scope=scope, code=code).first():
                continue
            db.session.add(Category(scope=scope, code=code, label=label, sort_order=order))
            created += 1
    db.session.flush()
    return created
