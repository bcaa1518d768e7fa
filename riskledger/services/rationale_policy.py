"""
Rationale policy — which changes need an operator justification.

Rules (per kind descriptor):
    - any change to a score field requires ``<field>_change_reason``
    - moving INTO a gated status from a different status requires
      ``status_change_rationale``; leaving a gated status, moving between
      ungated statuses, or re-setting the same status never does

Evaluated before anything is written: a failure leaves no version and no
audit entry behind.
"""

import logging

from riskledger.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

STATUS_RATIONALE_KEY = "status_change_rationale"


def required_rationale(descriptor, changed_scores, old_status, new_status) -> set:
    """Return the set of reason keys the mutation must carry.

    Args:
        descriptor: KindDescriptor of the entity being changed.
        changed_scores: iterable of score field names whose value changes.
        old_status: status before the mutation (None on create).
        new_status: status after the mutation.
    """
    required = {
        descriptor.reason_key(f) for f in changed_scores if f in descriptor.score_fields
    }
    if (
        new_status != old_status
        and new_status in descriptor.statuses_requiring_rationale
    ):
        required.add(STATUS_RATIONALE_KEY)
    return required


def collect_rationale(descriptor, payload, changed_scores, old_status, new_status) -> dict:
    """Validate the payload against the policy and return the reasons to record.

    Only reasons that are required by this mutation are returned; stray
    reason keys are ignored.

    Raises:
        ValidationError: a required reason is missing or blank. ``details``
            names every missing key.
    """
    required = required_rationale(descriptor, changed_scores, old_status, new_status)
    reasons, missing = {}, {}
    for key in sorted(required):
        value = payload.get(key)
        text = value.strip() if isinstance(value, str) else ""
        if text:
            reasons[key] = text
        else:
            missing[key] = "A reason is required for this change"

    if missing:
        logger.info(
            "Rationale missing for %s update: %s", descriptor.kind, ", ".join(missing),
            extra={"entity_kind": descriptor.kind},
        )
        raise ValidationError("Change rationale is required", details=missing)
    return reasons
