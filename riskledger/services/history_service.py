"""
Temporal reconstruction over the version streams.

    get_history(descriptor, owner_id)           merged entity + step timeline
    get_history(descriptor, owner_id, at=T)     entity snapshot in force at T
    get_waterfall(descriptor, owner_id)         planned vs actual level/rank
    get_portfolio_waterfall(descriptor, org)    every version in an org unit

Missing owner → NotFoundError. Empty streams degrade to empty lists.
"""

import logging

from riskledger.core.exceptions import NotFoundError, ValidationError
from riskledger.models import db
from riskledger.models.versioning import EntityVersion
from riskledger.services import version_store
from riskledger.services.level_classifier import DEFAULT_SCORE, clamp_score
from riskledger.utils.helpers import as_utc, iso_or_none

logger = logging.getLogger(__name__)

# Entity versions sort ahead of step versions stamped at the same instant.
_ENTITY_FIRST, _STEP_AFTER = 0, 1


def _get_owner(descriptor, owner_id):
    entity = db.session.get(descriptor.model, owner_id)
    if not entity:
        raise NotFoundError(resource=descriptor.label, resource_id=owner_id)
    return entity


def _entity_entry(version):
    return {
        "type": "entity",
        "version": version.version,
        "snapshot": version.snapshot,
        **version.reasons,
        "created_at": iso_or_none(version.created_at),
    }


def _step_entry(version):
    return {
        "type": "step",
        "step_id": version.step_id,
        "step_number": version.step_number,
        "version": version.version,
        "snapshot": version.snapshot,
        "created_at": iso_or_none(version.created_at),
    }


def get_history(descriptor, owner_id, at=None):
    """Full merged timeline, or the single entity snapshot in force at ``at``.

    Raises:
        NotFoundError: unknown owner, or ``at`` precedes the first version.
    """
    entity = _get_owner(descriptor, owner_id)
    versions = version_store.ensure_entity_versions(descriptor, entity)

    if at is not None:
        at = as_utc(at)
        in_force = [v for v in versions if as_utc(v.created_at) <= at]
        if not in_force:
            raise NotFoundError(resource=f"{descriptor.label} version at {at.isoformat()}")
        latest = max(in_force, key=lambda v: (as_utc(v.created_at), v.version))
        return _entity_entry(latest)

    keyed = [((as_utc(v.created_at), _ENTITY_FIRST, v.version), _entity_entry(v)) for v in versions]
    keyed += [
        ((as_utc(sv.created_at), _STEP_AFTER, sv.version), _step_entry(sv))
        for sv in version_store.list_step_versions(descriptor, owner_id)
    ]
    keyed.sort(key=lambda pair: pair[0])
    return [entry for _, entry in keyed]


# ── Waterfall ────────────────────────────────────────────────────────────────

def _point(descriptor, date, scores, **extra):
    result = descriptor.classify(scores)
    return {
        "date": iso_or_none(date),
        "level": result.level,
        "level_rank": result.rank,
        **scores,
        **extra,
    }


def _snapshot_scores(descriptor, snapshot):
    scores = {}
    for name in descriptor.score_fields:
        value = snapshot.get(name)
        scores[name] = clamp_score(value) if value is not None else DEFAULT_SCORE
    return scores


def get_waterfall(descriptor, owner_id):
    """Planned (steps' expected scores) and actual (versions + completed steps) series.

    Each series is sorted by date on its own; they are not merged.
    """
    entity = _get_owner(descriptor, owner_id)
    versions = version_store.ensure_entity_versions(descriptor, entity)
    text_field = descriptor.step_text_fields[0]

    actual = []
    for index, version in enumerate(versions):
        actual.append(_point(
            descriptor, version.created_at,
            _snapshot_scores(descriptor, version.snapshot),
            source="entity_version", version=version.version, is_original=index == 0,
        ))

    planned = []
    for step in descriptor.steps_of(entity.id):
        if step.actual_completed_at is not None:
            actual_scores = descriptor.scores_of(step, prefix="actual_")
            if all(v is not None for v in actual_scores.values()):
                actual.append(_point(
                    descriptor, step.actual_completed_at,
                    {k: clamp_score(v) for k, v in actual_scores.items()},
                    source="step", step_id=step.id, is_original=False,
                ))

        planned_date = step.estimated_end_date or step.estimated_start_date
        if planned_date is not None:
            planned.append(_point(
                descriptor, planned_date,
                descriptor.scores_of(step, prefix="expected_"),
                step_id=step.id, **{text_field: getattr(step, text_field)},
            ))

    actual.sort(key=lambda p: p["date"])
    planned.sort(key=lambda p: p["date"])
    return {"planned": planned, "actual": actual}


def get_portfolio_waterfall(descriptor, organizational_unit_id):
    """Every version of every entity in an org unit, oldest first."""
    if not organizational_unit_id:
        raise ValidationError(
            "organizational_unit_id is required",
            details={"organizational_unit_id": "Required query parameter"},
        )

    owner_ids = [
        row.id for row in
        descriptor.model.query.filter_by(organizational_unit_id=organizational_unit_id)
        .with_entities(descriptor.model.id).all()
    ]
    if not owner_ids:
        return []

    versions = (
        EntityVersion.query
        .filter(
            EntityVersion.entity_kind == descriptor.kind,
            EntityVersion.owner_id.in_(owner_ids),
        )
        .order_by(EntityVersion.created_at.asc(), EntityVersion.version.asc())
        .all()
    )
    points = []
    for version in versions:
        scores = _snapshot_scores(descriptor, version.snapshot)
        points.append({
            "date": iso_or_none(version.created_at),
            "owner_id": version.owner_id,
            "version": version.version,
            "level_rank": descriptor.classify(scores).rank,
        })
    points.sort(key=lambda p: p["date"])
    return points
