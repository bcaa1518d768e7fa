"""
Audit log — one append-only entry per register mutation.

    record_mutation(...)   diff old/new state and append
    compute_changes(...)   {field: {"from": old, "to": new}} for differing fields
    list_audit_log(...)    newest first

Dates are compared by instant, so a naive value read back from SQLite and
an aware value from the request compare equal when they denote the same
moment. Uses ``flush`` only; the route keeps transaction control.
"""

import json
import logging
from datetime import datetime

from riskledger.models import db
from riskledger.models.audit import (
    CreatedDetails,
    DeletedDetails,
    RegisterAuditLog,
    UpdatedDetails,
)
from riskledger.utils.helpers import as_utc, iso_or_none, utcnow

logger = logging.getLogger(__name__)


def _comparable(value):
    if isinstance(value, datetime):
        return as_utc(value)
    return value


def _serialisable(value):
    if isinstance(value, datetime):
        return iso_or_none(value)
    return value


def compute_changes(fields, old_state: dict, new_state: dict) -> dict:
    """Diff two state dicts over ``fields``; unchanged fields are omitted."""
    changes = {}
    for name in fields:
        old, new = old_state.get(name), new_state.get(name)
        if _comparable(old) != _comparable(new):
            changes[name] = {"from": _serialisable(old), "to": _serialisable(new)}
    return changes


def append_entry(descriptor, owner_id, entity_type, entity_id, details, created_at=None):
    """Persist one entry from a tagged details payload."""
    entry = RegisterAuditLog(
        owner_kind=descriptor.kind,
        owner_id=owner_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=details.action,
        details_json=json.dumps(details.to_dict()),
        created_at=created_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        "Audit %s %s/%s on %s %s", details.action, entity_type, entity_id,
        descriptor.label, owner_id,
        extra={"entity_kind": descriptor.kind, "owner_id": owner_id, "action": details.action},
    )
    return entry


def record_mutation(
    descriptor,
    owner_id,
    entity_type,
    entity_id,
    action,
    *,
    old_state=None,
    new_state=None,
    fields=(),
    reasons=None,
    step_number=None,
    created_at=None,
) -> RegisterAuditLog:
    """Build the details payload for ``action`` and append it.

    ``old_state``/``new_state`` are only read for ``updated``.
    """
    if action == "created":
        details = CreatedDetails(step_number=step_number)
    elif action == "deleted":
        details = DeletedDetails(step_number=step_number)
    elif action == "updated":
        details = UpdatedDetails(
            changes=compute_changes(fields, old_state or {}, new_state or {}),
            reasons={k: v for k, v in (reasons or {}).items() if v},
            step_number=step_number,
        )
    else:
        raise ValueError(f"Unknown audit action: {action}")

    return append_entry(descriptor, owner_id, entity_type, entity_id, details, created_at)


def list_audit_log(descriptor, owner_id) -> list:
    """Entries for one entity and its steps, newest first."""
    return (
        RegisterAuditLog.query
        .filter_by(owner_kind=descriptor.kind, owner_id=owner_id)
        .order_by(RegisterAuditLog.created_at.desc(), RegisterAuditLog.id.desc())
        .all()
    )


def purge_audit_log(descriptor, owner_id) -> None:
    RegisterAuditLog.query.filter_by(owner_kind=descriptor.kind, owner_id=owner_id).delete()
