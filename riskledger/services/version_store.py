"""
Version store — append-only snapshot streams for entities and steps.

    append_entity_version / append_step_version
        version = count(existing) + 1, computed inside the caller's
        transaction (flush only; the route commits). The unique constraint
        on (kind, owner, version) turns a racing duplicate into an
        IntegrityError at flush, which the register blueprint maps to 409.

    ensure_entity_versions
        Self-healing read: an entity with no versions (imported or legacy
        rows) gets version 1 backfilled from its current state. A lost race
        re-reads; any other store failure degrades to a synthetic, unsaved
        version 1 so history reads never fail because of backfill.
"""

import json
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from riskledger.models import db
from riskledger.models.versioning import EntityVersion, StepVersion
from riskledger.utils.helpers import as_utc, iso_or_none, utcnow

logger = logging.getLogger(__name__)


def to_snapshot(obj, fields) -> dict:
    """Copy ``fields`` off a model instance into a JSON-safe dict."""
    snap = {}
    for name in fields:
        value = getattr(obj, name, None)
        if isinstance(value, datetime):
            value = iso_or_none(value)
        snap[name] = value
    return snap


# ── Writes ───────────────────────────────────────────────────────────────────

def append_entity_version(descriptor, entity, reasons=None, created_at=None) -> EntityVersion:
    """Snapshot ``entity`` as its next version. Caller owns the commit."""
    next_version = EntityVersion.query.filter_by(
        entity_kind=descriptor.kind, owner_id=entity.id,
    ).count() + 1

    version = EntityVersion(
        entity_kind=descriptor.kind,
        owner_id=entity.id,
        version=next_version,
        snapshot_json=json.dumps(to_snapshot(entity, descriptor.snapshot_fields)),
        created_at=created_at or utcnow(),
        **{k: v for k, v in (reasons or {}).items() if k in EntityVersion.REASON_FIELDS},
    )
    db.session.add(version)
    db.session.flush()

    logger.info(
        "%s %s version %d appended", descriptor.label, entity.id, next_version,
        extra={"entity_kind": descriptor.kind, "owner_id": entity.id, "version": next_version},
    )
    return version


def append_step_version(descriptor, step, created_at=None) -> StepVersion:
    """Snapshot ``step`` as its next version, stamped with its current position."""
    next_version = StepVersion.query.filter_by(
        step_kind=descriptor.kind, step_id=step.id,
    ).count() + 1

    version = StepVersion(
        step_kind=descriptor.kind,
        step_id=step.id,
        owner_id=step.parent_id,
        version=next_version,
        sequence_order=step.sequence_order or 0,
        snapshot_json=json.dumps(to_snapshot(step, descriptor.step_snapshot_fields)),
        created_at=created_at or utcnow(),
    )
    db.session.add(version)
    db.session.flush()
    return version


def purge_entity_streams(descriptor, owner_id) -> None:
    """Delete the entity's versions and every step version under it."""
    EntityVersion.query.filter_by(entity_kind=descriptor.kind, owner_id=owner_id).delete()
    StepVersion.query.filter_by(step_kind=descriptor.kind, owner_id=owner_id).delete()


def purge_step_versions(descriptor, step_id) -> None:
    StepVersion.query.filter_by(step_kind=descriptor.kind, step_id=step_id).delete()


# ── Reads ────────────────────────────────────────────────────────────────────

def list_entity_versions(descriptor, owner_id) -> list:
    return (
        EntityVersion.query
        .filter_by(entity_kind=descriptor.kind, owner_id=owner_id)
        .order_by(EntityVersion.version.asc())
        .all()
    )


def list_step_versions(descriptor, owner_id) -> list:
    """All step versions under one entity, oldest first."""
    return (
        StepVersion.query
        .filter_by(step_kind=descriptor.kind, owner_id=owner_id)
        .order_by(StepVersion.created_at.asc(), StepVersion.id.asc())
        .all()
    )


def _originals_from(descriptor, snapshot) -> dict:
    return {f"original_{s}": snapshot.get(s) for s in descriptor.score_fields}


def original_scores(descriptor, owner_id) -> dict:
    """Original score pair read from version 1 (None values if no version yet)."""
    first = EntityVersion.query.filter_by(
        entity_kind=descriptor.kind, owner_id=owner_id, version=1,
    ).first()
    return _originals_from(descriptor, first.snapshot if first else {})


def original_scores_for(descriptor, owner_ids) -> dict:
    """Batch form of ``original_scores``: owner_id → originals."""
    ids = list(owner_ids)
    if not ids:
        return {}
    rows = EntityVersion.query.filter(
        EntityVersion.entity_kind == descriptor.kind,
        EntityVersion.owner_id.in_(ids),
        EntityVersion.version == 1,
    ).all()
    found = {row.owner_id: _originals_from(descriptor, row.snapshot) for row in rows}
    return {oid: found.get(oid, _originals_from(descriptor, {})) for oid in ids}


def latest_status_rationale(descriptor, owner_id) -> str | None:
    row = (
        EntityVersion.query
        .filter(
            EntityVersion.entity_kind == descriptor.kind,
            EntityVersion.owner_id == owner_id,
            EntityVersion.status_change_rationale.isnot(None),
        )
        .order_by(EntityVersion.version.desc())
        .first()
    )
    return row.status_change_rationale if row else None


# ── Self-healing read ────────────────────────────────────────────────────────

def _synthetic_version(descriptor, entity) -> EntityVersion:
    """Version 1 built from current state, never added to the session."""
    return EntityVersion(
        entity_kind=descriptor.kind,
        owner_id=entity.id,
        version=1,
        snapshot_json=json.dumps(to_snapshot(entity, descriptor.snapshot_fields)),
        created_at=as_utc(entity.created_at) or utcnow(),
    )


def ensure_entity_versions(descriptor, entity) -> list:
    """Return the entity's versions, backfilling version 1 if there are none.

    Commits its own unit of work; only call on a read path with nothing
    else pending in the session.
    """
    versions = list_entity_versions(descriptor, entity.id)
    if versions:
        return versions

    owner_id = entity.id
    synthetic = _synthetic_version(descriptor, entity)
    try:
        append_entity_version(descriptor, entity, created_at=synthetic.created_at)
        db.session.commit()
        logger.info(
            "Backfilled version 1 for %s %s", descriptor.label, owner_id,
            extra={"entity_kind": descriptor.kind, "owner_id": owner_id, "version": 1},
        )
    except IntegrityError:
        # Another reader backfilled first.
        db.session.rollback()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning(
            "Version backfill failed for %s %s, serving unsaved snapshot: %s",
            descriptor.label, owner_id, exc,
            extra={"entity_kind": descriptor.kind, "owner_id": owner_id},
        )
        return [synthetic]

    return list_entity_versions(descriptor, owner_id)
