"""
Risk Ledger
Register blueprints: /risks, /issues, /opportunities, /categories, /health.

Shared list paging for the register collection routes lives here.
"""

from flask import request

REGISTER_PAGE_SIZE = 100
REGISTER_PAGE_MAX = 500


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (ValueError, TypeError):
        return default


def paginate_query(query, default_limit=REGISTER_PAGE_SIZE, max_limit=REGISTER_PAGE_MAX):
    """Page a register query by ``?limit=`` and ``?offset=``.

    ``total`` counts the whole filtered register (e.g. one org unit), not
    the page. limit is kept within [1, max_limit]; a malformed value falls
    back to the default.

    Returns:
        (entities, total)
    """
    total = query.count()
    limit = max(1, min(_int_arg("limit", default_limit), max_limit))
    offset = max(_int_arg("offset", 0), 0)
    return query.limit(limit).offset(offset).all(), total
