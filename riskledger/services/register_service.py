"""Register service layer — one engine for risks, issues and opportunities.

Transaction policy: functions use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit(), so the entity
write, its version and its audit entry land together or not at all.

Every mutation follows the same order:
    1. build the new state without touching the row
    2. run the rationale policy (raises before anything is written)
    3. apply the state, append a version, append an audit entry,
       all stamped with the same instant

Operations:
- Entity CRUD with level classification and read enrichment
- Step CRUD with dense sequence_order (insert / move / close gap)
- Step reorder with one audit entry for the whole move
- Version backfill for entities without history
"""
import logging

from riskledger.core.exceptions import NotFoundError, ValidationError
from riskledger.models import db
from riskledger.services import audit_log, version_store
from riskledger.services.category_service import resolve_category_code
from riskledger.services.level_classifier import DEFAULT_SCORE, clamp_score
from riskledger.services.rationale_policy import collect_rationale
from riskledger.utils.helpers import as_utc, iso_or_none, parse_datetime, utcnow

logger = logging.getLogger(__name__)


# ── Payload coercion ─────────────────────────────────────────────────────────


def _parse_score(value, field, errors):
    """Clamp an integer-like score into [1, 5]; record an error otherwise."""
    if value is None or isinstance(value, bool):
        errors[field] = "Must be an integer between 1 and 5"
        return None
    try:
        return clamp_score(int(value))
    except (TypeError, ValueError):
        errors[field] = "Must be an integer between 1 and 5"
        return None


def _clean_text(value, field, errors):
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = "Must be a string"
        return None
    return value.strip() or None


def _parse_date(value, field, errors):
    try:
        return parse_datetime(value, field)
    except ValidationError as exc:
        errors.update(exc.details)
        return None


def _reject_original_scores(descriptor, data):
    offending = [f"original_{s}" for s in descriptor.score_fields if f"original_{s}" in data]
    if offending:
        raise ValidationError(
            "Original scores are fixed at creation and cannot be set",
            details={key: "Read-only" for key in offending},
        )


def _require_dict(data):
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")


# ═════════════════════════════════════════════════════════════════════════════
#  Entities
# ═════════════════════════════════════════════════════════════════════════════


def _entity_state(descriptor, entity):
    return {name: getattr(entity, name) for name in descriptor.snapshot_fields}


def _build_entity_state(descriptor, data, state, creating):
    """Return ``state`` with the payload applied; never mutates the row.

    Raises:
        ValidationError: with every field-level problem collected in details.
    """
    new = dict(state)
    errors = {}

    for name in descriptor.text_fields:
        if name in data:
            new[name] = _clean_text(data[name], name, errors)
    for name in descriptor.required_fields:
        if (creating or name in data) and not new.get(name) and name not in errors:
            errors[name] = "Required"

    for name, choices in descriptor.choice_fields.items():
        if name in data:
            value = data[name] or None
            if value is not None and (not isinstance(value, str) or value not in choices):
                errors[name] = f"Must be one of: {', '.join(sorted(choices))}"
            new[name] = value

    for name, model in descriptor.link_fields.items():
        if name in data:
            value = data[name] or None
            if value is not None and db.session.get(model, value) is None:
                errors[name] = f"Referenced {model.__name__} does not exist"
            new[name] = value

    if "organizational_unit_id" in data:
        new["organizational_unit_id"] = _clean_text(
            data["organizational_unit_id"], "organizational_unit_id", errors,
        )
    if "owner" in data:
        new["owner"] = _clean_text(data["owner"], "owner", errors)

    if "category" in data:
        if descriptor.category_scope:
            new["category"] = resolve_category_code(descriptor.category_scope, data["category"])
        else:
            new["category"] = _clean_text(data["category"], "category", errors)

    if "status" in data:
        status = data["status"]
        if not isinstance(status, str) or status not in descriptor.statuses:
            errors["status"] = f"Must be one of: {', '.join(sorted(descriptor.statuses))}"
        else:
            new["status"] = status
    elif creating:
        new["status"] = descriptor.default_status

    for name in descriptor.score_fields:
        if name in data:
            new[name] = _parse_score(data[name], name, errors)
        elif creating:
            new[name] = DEFAULT_SCORE

    if errors:
        raise ValidationError(f"Invalid {descriptor.label.lower()} data", details=errors)

    new["level"] = descriptor.classify({s: new[s] for s in descriptor.score_fields}).level
    return new


def entity_query(descriptor, organizational_unit_id=None):
    """Entities of one kind, newest first, optionally scoped to an org unit."""
    q = descriptor.model.query
    if organizational_unit_id:
        q = q.filter_by(organizational_unit_id=organizational_unit_id)
    return q.order_by(descriptor.model.created_at.desc(), descriptor.model.id)


def get_entity(descriptor, entity_id):
    entity = db.session.get(descriptor.model, entity_id)
    if not entity:
        raise NotFoundError(resource=descriptor.label, resource_id=entity_id)
    return entity


def entity_to_dict(descriptor, entity, originals=None, include_steps=False):
    """Serialise with original scores, last_updated and the latest gated rationale."""
    data = entity.to_dict()
    if originals is None:
        originals = version_store.original_scores(descriptor, entity.id)
    data.update(originals)

    steps = descriptor.steps_of(entity.id)
    stamps = [as_utc(entity.updated_at)] + [as_utc(s.updated_at) for s in steps]
    stamps = [s for s in stamps if s is not None]
    data["last_updated"] = iso_or_none(max(stamps)) if stamps else None

    data["status_change_rationale"] = None
    if entity.status in descriptor.statuses_requiring_rationale:
        data["status_change_rationale"] = version_store.latest_status_rationale(descriptor, entity.id)

    if include_steps:
        data["steps"] = [s.to_dict() for s in steps]
    return data


def entities_to_dicts(descriptor, entities):
    originals = version_store.original_scores_for(descriptor, [e.id for e in entities])
    return [entity_to_dict(descriptor, e, originals=originals[e.id]) for e in entities]


def create_entity(descriptor, data):
    """Create an entity with version 1 and a ``created`` audit entry.

    Returns:
        The entity instance (already flushed).
    """
    _require_dict(data)
    _reject_original_scores(descriptor, data)

    blank = {name: None for name in descriptor.snapshot_fields}
    state = _build_entity_state(descriptor, data, blank, creating=True)

    now = utcnow()
    entity = descriptor.model(**state, created_at=now, updated_at=now)
    db.session.add(entity)
    db.session.flush()

    version_store.append_entity_version(descriptor, entity, created_at=now)
    audit_log.record_mutation(descriptor, entity.id, "entity", entity.id, "created", created_at=now)

    logger.info(
        "%s created: %s (%s)", descriptor.label, entity.id, entity.level,
        extra={"entity_kind": descriptor.kind, "owner_id": entity.id, "action": "created"},
    )
    return entity


def update_entity(descriptor, entity_id, data):
    """Apply a partial update, gated by the rationale policy.

    Always appends one version and one ``updated`` audit entry.

    Raises:
        NotFoundError: unknown entity.
        ValidationError: bad field values, missing rationale, original_* keys,
            or no recognised fields. Nothing is written in that case.
    """
    _require_dict(data)
    entity = get_entity(descriptor, entity_id)
    _reject_original_scores(descriptor, data)
    if not any(name in data for name in descriptor.audit_fields):
        raise ValidationError("No fields to update")

    old_state = _entity_state(descriptor, entity)
    new_state = _build_entity_state(descriptor, data, old_state, creating=False)

    changed_scores = [s for s in descriptor.score_fields if new_state[s] != old_state[s]]
    reasons = collect_rationale(
        descriptor, data, changed_scores, old_state["status"], new_state["status"],
    )

    now = utcnow()
    for name, value in new_state.items():
        setattr(entity, name, value)
    entity.updated_at = now
    db.session.flush()

    version = version_store.append_entity_version(descriptor, entity, reasons=reasons, created_at=now)
    audit_log.record_mutation(
        descriptor, entity.id, "entity", entity.id, "updated",
        old_state=old_state, new_state=new_state,
        fields=descriptor.audit_fields, reasons=reasons, created_at=now,
    )

    logger.info(
        "%s updated: %s → v%d", descriptor.label, entity.id, version.version,
        extra={
            "entity_kind": descriptor.kind, "owner_id": entity.id,
            "version": version.version, "action": "updated",
        },
    )
    return entity


def delete_entity(descriptor, entity_id):
    """Delete an entity with its steps, version streams and audit trail."""
    entity = get_entity(descriptor, entity_id)
    owner_id = entity.id

    version_store.purge_entity_streams(descriptor, owner_id)
    audit_log.purge_audit_log(descriptor, owner_id)
    db.session.delete(entity)
    db.session.flush()

    logger.info(
        "%s deleted: %s", descriptor.label, owner_id,
        extra={"entity_kind": descriptor.kind, "owner_id": owner_id, "action": "deleted"},
    )


def backfill_versions(descriptor):
    """Create version 1 for every entity that has none. Returns the count created.

    Goes through the same idempotent path as the read side, which commits
    per entity.
    """
    created = 0
    for entity in descriptor.model.query.order_by(descriptor.model.created_at.asc()).all():
        if version_store.list_entity_versions(descriptor, entity.id):
            continue
        versions = version_store.ensure_entity_versions(descriptor, entity)
        if versions and versions[0].id is not None:
            created += 1
    logger.info("Backfilled %d %s version stream(s)", created, descriptor.kind)
    return created


# ═════════════════════════════════════════════════════════════════════════════
#  Steps
# ═════════════════════════════════════════════════════════════════════════════


def _step_state(descriptor, step):
    return {name: getattr(step, name) for name in descriptor.step_snapshot_fields}


def _build_step_state(descriptor, data, state, entity, creating):
    """Return ``state`` with the step payload applied; never mutates the row.

    Actual fields: an absent key keeps the stored value, an explicit null
    clears it.
    """
    new = dict(state)
    errors = {}

    for name in descriptor.step_text_fields:
        if name in data:
            new[name] = _clean_text(data[name], name, errors)
        if not new.get(name) and name in descriptor.step_text_defaults:
            new[name] = descriptor.step_text_defaults[name]
        if (
            name in descriptor.step_required_text
            and (creating or name in data)
            and not new.get(name)
            and name not in errors
        ):
            errors[name] = "Required"

    for name in ("estimated_start_date", "estimated_end_date", "actual_completed_at"):
        if name in data:
            new[name] = _parse_date(data[name], name, errors)

    for score in descriptor.score_fields:
        expected, actual = f"expected_{score}", f"actual_{score}"
        if expected in data:
            new[expected] = _parse_score(data[expected], expected, errors)
        elif creating:
            if descriptor.step_expected_required:
                errors[expected] = "Required"
            else:
                new[expected] = getattr(entity, score)
        if actual in data:
            value = data[actual]
            new[actual] = None if value is None else _parse_score(value, actual, errors)

    if errors:
        raise ValidationError(f"Invalid {descriptor.step_label.lower()} data", details=errors)

    new["expected_rank"] = descriptor.classify(
        {s: new[f"expected_{s}"] for s in descriptor.score_fields}
    ).rank
    actual_scores = {s: new[f"actual_{s}"] for s in descriptor.score_fields}
    new["actual_rank"] = (
        descriptor.classify(actual_scores).rank
        if all(v is not None for v in actual_scores.values()) else None
    )
    return new


def _parse_position(value, upper):
    """Coerce a requested sequence_order into [0, upper]."""
    if value is None or isinstance(value, bool):
        raise ValidationError("Invalid sequence_order", details={"sequence_order": "Must be an integer"})
    try:
        position = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Invalid sequence_order", details={"sequence_order": "Must be an integer"},
        ) from exc
    return max(0, min(upper, position))


def list_steps(descriptor, entity_id):
    get_entity(descriptor, entity_id)
    return descriptor.steps_of(entity_id)


def get_step(descriptor, entity_id, step_id):
    step = db.session.get(descriptor.step_model, step_id)
    if not step or step.parent_id != entity_id:
        raise NotFoundError(resource=descriptor.step_label, resource_id=step_id)
    return step


def create_step(descriptor, entity_id, data):
    """Create a step. Without ``sequence_order`` it is appended; with one it
    is inserted there and later steps shift down.

    Returns:
        The step instance (already flushed).
    """
    _require_dict(data)
    entity = get_entity(descriptor, entity_id)

    blank = {name: None for name in descriptor.step_snapshot_fields}
    state = _build_step_state(descriptor, data, blank, entity, creating=True)

    siblings = descriptor.steps_of(entity_id)
    position = len(siblings)
    if data.get("sequence_order") is not None:
        position = _parse_position(data["sequence_order"], len(siblings))
    for sibling in siblings:
        if sibling.sequence_order >= position:
            sibling.sequence_order += 1
    state["sequence_order"] = position

    now = utcnow()
    step = descriptor.step_model(
        **{descriptor.parent_fk: entity_id}, **state, created_at=now, updated_at=now,
    )
    db.session.add(step)
    db.session.flush()

    version_store.append_step_version(descriptor, step, created_at=now)
    audit_log.record_mutation(
        descriptor, entity_id, "step", step.id, "created",
        step_number=step.step_number, created_at=now,
    )
    logger.info(
        "%s created: %s #%d on %s", descriptor.step_label, step.id, step.step_number, entity_id,
        extra={"entity_kind": descriptor.kind, "owner_id": entity_id, "action": "created"},
    )
    return step


def update_step(descriptor, entity_id, step_id, data):
    """Partially update a step; ``sequence_order`` moves it within its parent."""
    _require_dict(data)
    entity = get_entity(descriptor, entity_id)
    step = get_step(descriptor, entity_id, step_id)
    if not any(name in data for name in descriptor.step_audit_fields):
        raise ValidationError("No fields to update")

    old_state = _step_state(descriptor, step)
    new_state = _build_step_state(descriptor, data, old_state, entity, creating=False)

    if "sequence_order" in data:
        siblings = descriptor.steps_of(entity_id)
        old_pos = step.sequence_order
        new_pos = _parse_position(data["sequence_order"], len(siblings) - 1)
        for sibling in siblings:
            if sibling.id == step.id:
                continue
            if old_pos < sibling.sequence_order <= new_pos:
                sibling.sequence_order -= 1
            elif new_pos <= sibling.sequence_order < old_pos:
                sibling.sequence_order += 1
        new_state["sequence_order"] = new_pos

    now = utcnow()
    for name, value in new_state.items():
        setattr(step, name, value)
    step.updated_at = now
    db.session.flush()

    version = version_store.append_step_version(descriptor, step, created_at=now)
    audit_log.record_mutation(
        descriptor, entity_id, "step", step.id, "updated",
        old_state=old_state, new_state=new_state,
        fields=descriptor.step_audit_fields, step_number=step.step_number, created_at=now,
    )
    logger.info(
        "%s updated: %s → v%d", descriptor.step_label, step.id, version.version,
        extra={
            "entity_kind": descriptor.kind, "owner_id": entity_id,
            "version": version.version, "action": "updated",
        },
    )
    return step


def delete_step(descriptor, entity_id, step_id):
    """Delete a step and its versions; later steps move up to close the gap."""
    get_entity(descriptor, entity_id)
    step = get_step(descriptor, entity_id, step_id)
    step_number, position = step.step_number, step.sequence_order

    version_store.purge_step_versions(descriptor, step.id)
    db.session.delete(step)
    db.session.flush()

    for sibling in descriptor.steps_of(entity_id):
        if sibling.sequence_order > position:
            sibling.sequence_order -= 1
    db.session.flush()

    audit_log.record_mutation(
        descriptor, entity_id, "step", step_id, "deleted", step_number=step_number,
    )
    logger.info(
        "%s deleted: %s (was #%d) on %s", descriptor.step_label, step_id, step_number, entity_id,
        extra={"entity_kind": descriptor.kind, "owner_id": entity_id, "action": "deleted"},
    )


def reorder_steps(descriptor, entity_id, step_ids):
    """Renumber steps to follow ``step_ids``.

    Ids that do not belong to this entity are skipped. Steps the request
    does not mention keep their relative order after the listed ones.
    One ``updated`` audit entry records the 1-based order before and after,
    e.g. "1, 2, 3" → "3, 1, 2".

    Returns:
        The steps in their new order.
    """
    get_entity(descriptor, entity_id)
    if not isinstance(step_ids, list) or not step_ids:
        raise ValidationError("step_ids array is required", details={"step_ids": "Required"})
    if not all(isinstance(step_id, str) for step_id in step_ids):
        raise ValidationError(
            "step_ids must be a list of step ids", details={"step_ids": "Every entry must be a string"},
        )

    steps = descriptor.steps_of(entity_id)
    by_id = {s.id: s for s in steps}
    previous_number = {s.id: index + 1 for index, s in enumerate(steps)}

    ordered, seen = [], set()
    for step_id in step_ids:
        if step_id in seen:
            continue
        step = by_id.get(step_id)
        if step is None:
            logger.warning(
                "Reorder skipped step %s: not a %s of %s %s",
                step_id, descriptor.step_label.lower(), descriptor.label, entity_id,
                extra={"entity_kind": descriptor.kind, "owner_id": entity_id},
            )
            continue
        ordered.append(step)
        seen.add(step_id)
    ordered += [s for s in steps if s.id not in seen]

    before = ", ".join(str(n) for n in range(1, len(steps) + 1))
    after = ", ".join(str(previous_number[s.id]) for s in ordered)

    for index, step in enumerate(ordered):
        step.sequence_order = index
    db.session.flush()

    if before != after:
        audit_log.record_mutation(
            descriptor, entity_id, "entity", entity_id, "updated",
            old_state={"steps_reordered": before}, new_state={"steps_reordered": after},
            fields=("steps_reordered",),
        )
        logger.info(
            "Steps reordered on %s %s: %s → %s", descriptor.label, entity_id, before, after,
            extra={"entity_kind": descriptor.kind, "owner_id": entity_id, "action": "updated"},
        )
    return ordered
