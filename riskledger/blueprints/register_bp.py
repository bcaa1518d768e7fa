"""
Risk Ledger
Register blueprint — one set of routes serving risks, issues and opportunities.

<kind> is one of: risks | issues | opportunities

Endpoints summary:
    ENTITY    /api/v1/<kind>                             GET (?organizational_unit_id), POST
              /api/v1/<kind>/<id>                        GET, PATCH, DELETE

    HISTORY   /api/v1/<kind>/<id>/history                GET (?at=ISO-8601)
              /api/v1/<kind>/<id>/waterfall              GET
              /api/v1/<kind>/<id>/audit-log              GET
              /api/v1/<kind>/waterfall/data              GET (?organizational_unit_id)
              /api/v1/<kind>/backfill-versions           POST

    STEPS     /api/v1/<kind>/<id>/steps                  GET, POST
              /api/v1/<kind>/<id>/steps/reorder          PATCH  {"step_ids": [...]}
              /api/v1/<kind>/<id>/steps/<step_id>        PATCH, DELETE

Service layer owns business logic and flushes; every mutation commits here
exactly once through db_commit_or_error().
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from riskledger.blueprints import paginate_query
from riskledger.core.exceptions import NotFoundError, ValidationError
from riskledger.models import db
from riskledger.services import history_service, register_service
from riskledger.services.audit_log import list_audit_log
from riskledger.services.register_kinds import BY_PATH
from riskledger.utils.errors import E, api_error
from riskledger.utils.helpers import db_commit_or_error, parse_datetime

logger = logging.getLogger(__name__)

register_bp = Blueprint("register", __name__, url_prefix="/api/v1")

KIND = "<any(risks, issues, opportunities):kind>"


# ── Error handlers ────────────────────────────────────────────────────────────


@register_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@register_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@register_bp.errorhandler(IntegrityError)
def _handle_integrity(error: IntegrityError):
    # Version numbers collide at the service-layer flush, before the commit helper.
    db.session.rollback()
    logger.warning("Integrity error on register write: %s", error.orig)
    return api_error(
        E.CONFLICT_DUPLICATE,
        "Concurrent modification or constraint violation, retry the request",
    )


# ── Helpers ──────────────────────────────────────────────────────────────────


def _json_body():
    """Return (data, None) or (None, error_response) when the body is not an object."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")
    return data, None


# ═══════════════════════════════════════════════════════════════════════════
#  ENTITY CRUD
# ═══════════════════════════════════════════════════════════════════════════


@register_bp.route(f"/{KIND}", methods=["GET"])
def list_entities(kind):
    descriptor = BY_PATH[kind]
    q = register_service.entity_query(
        descriptor, organizational_unit_id=request.args.get("organizational_unit_id"),
    )
    entities, total = paginate_query(q)
    return jsonify({
        "items": register_service.entities_to_dicts(descriptor, entities),
        "total": total,
    })


@register_bp.route(f"/{KIND}", methods=["POST"])
def create_entity(kind):
    descriptor = BY_PATH[kind]
    data, err = _json_body()
    if err:
        return err

    entity = register_service.create_entity(descriptor, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(register_service.entity_to_dict(descriptor, entity)), 201


@register_bp.route(f"/{KIND}/<entity_id>", methods=["GET"])
def get_entity(kind, entity_id):
    descriptor = BY_PATH[kind]
    entity = register_service.get_entity(descriptor, entity_id)
    return jsonify(register_service.entity_to_dict(descriptor, entity, include_steps=True))


@register_bp.route(f"/{KIND}/<entity_id>", methods=["PATCH"])
def update_entity(kind, entity_id):
    descriptor = BY_PATH[kind]
    data, err = _json_body()
    if err:
        return err

    entity = register_service.update_entity(descriptor, entity_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(register_service.entity_to_dict(descriptor, entity))


@register_bp.route(f"/{KIND}/<entity_id>", methods=["DELETE"])
def delete_entity(kind, entity_id):
    descriptor = BY_PATH[kind]
    register_service.delete_entity(descriptor, entity_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True})


# ═══════════════════════════════════════════════════════════════════════════
#  HISTORY / WATERFALL / AUDIT
# ═══════════════════════════════════════════════════════════════════════════


@register_bp.route(f"/{KIND}/<entity_id>/history", methods=["GET"])
def get_history(kind, entity_id):
    descriptor = BY_PATH[kind]
    at = parse_datetime(request.args.get("at"), "at")
    return jsonify(history_service.get_history(descriptor, entity_id, at=at))


@register_bp.route(f"/{KIND}/<entity_id>/waterfall", methods=["GET"])
def get_waterfall(kind, entity_id):
    descriptor = BY_PATH[kind]
    return jsonify(history_service.get_waterfall(descriptor, entity_id))


@register_bp.route(f"/{KIND}/<entity_id>/audit-log", methods=["GET"])
def get_audit_log(kind, entity_id):
    descriptor = BY_PATH[kind]
    register_service.get_entity(descriptor, entity_id)
    entries = list_audit_log(descriptor, entity_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@register_bp.route(f"/{KIND}/waterfall/data", methods=["GET"])
def get_portfolio_waterfall(kind):
    descriptor = BY_PATH[kind]
    points = history_service.get_portfolio_waterfall(
        descriptor, request.args.get("organizational_unit_id"),
    )
    return jsonify({"items": points, "total": len(points)})


@register_bp.route(f"/{KIND}/backfill-versions", methods=["POST"])
def backfill_versions(kind):
    descriptor = BY_PATH[kind]
    created = register_service.backfill_versions(descriptor)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "created": created,
        "message": f"Created {created} initial version(s) for {kind} without history",
    })


# ═══════════════════════════════════════════════════════════════════════════
#  STEPS
# ═══════════════════════════════════════════════════════════════════════════


@register_bp.route(f"/{KIND}/<entity_id>/steps", methods=["GET"])
def list_steps(kind, entity_id):
    descriptor = BY_PATH[kind]
    steps = register_service.list_steps(descriptor, entity_id)
    return jsonify({"items": [s.to_dict() for s in steps], "total": len(steps)})


@register_bp.route(f"/{KIND}/<entity_id>/steps", methods=["POST"])
def create_step(kind, entity_id):
    descriptor = BY_PATH[kind]
    data, err = _json_body()
    if err:
        return err

    step = register_service.create_step(descriptor, entity_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict()), 201


@register_bp.route(f"/{KIND}/<entity_id>/steps/reorder", methods=["PATCH"])
def reorder_steps(kind, entity_id):
    descriptor = BY_PATH[kind]
    data, err = _json_body()
    if err:
        return err

    steps = register_service.reorder_steps(descriptor, entity_id, data.get("step_ids"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"items": [s.to_dict() for s in steps], "total": len(steps)})


@register_bp.route(f"/{KIND}/<entity_id>/steps/<step_id>", methods=["PATCH"])
def update_step(kind, entity_id, step_id):
    descriptor = BY_PATH[kind]
    data, err = _json_body()
    if err:
        return err

    step = register_service.update_step(descriptor, entity_id, step_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict())


@register_bp.route(f"/{KIND}/<entity_id>/steps/<step_id>", methods=["DELETE"])
def delete_step(kind, entity_id, step_id):
    descriptor = BY_PATH[kind]
    register_service.delete_step(descriptor, entity_id, step_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True})
