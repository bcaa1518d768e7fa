"""
Category lookup blueprint (read-only).

Endpoints:
    GET /api/v1/categories?scope=risk|opportunity
"""

from flask import Blueprint, jsonify, request

from riskledger.models.category import CATEGORY_SCOPES
from riskledger.services.category_service import list_categories
from riskledger.utils.errors import E, api_error

category_bp = Blueprint("category", __name__, url_prefix="/api/v1")


@category_bp.route("/categories", methods=["GET"])
def get_categories():
    scope = request.args.get("scope")
    if scope and scope not in CATEGORY_SCOPES:
        return api_error(
            E.VALIDATION_REQUIRED,
            f"scope must be one of: {', '.join(sorted(CATEGORY_SCOPES))}",
        )
    items = [c.to_dict() for c in list_categories(scope)]
    return jsonify({"items": items, "total": len(items)})
