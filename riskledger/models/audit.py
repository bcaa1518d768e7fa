"""
Risk Ledger
Register audit trail.

Models:
    - RegisterAuditLog: append-only "who/when did what" record, one row per mutation

Details payloads are a tagged union keyed by action:
    - CreatedDetails  (action="created")
    - UpdatedDetails  (action="updated")   changes + rationale
    - DeletedDetails  (action="deleted")

Rows belong to the owning entity and are purged when it is deleted.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

from riskledger.models import db
from riskledger.utils.helpers import iso_or_none


# ── Detail payloads ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreatedDetails:
    step_number: int | None = None
    action = "created"

    def to_dict(self) -> dict:
        out = {}
        if self.step_number is not None:
            out["step_number"] = self.step_number
        return out


@dataclass(frozen=True)
class UpdatedDetails:
    """Field diff plus any rationale supplied with the change.

    ``changes`` maps field → {"from": old, "to": new}. Empty collections are
    left out of the serialised form entirely.
    """

    changes: dict = field(default_factory=dict)
    reasons: dict = field(default_factory=dict)
    step_number: int | None = None
    action = "updated"

    @property
    def changed_fields(self) -> list:
        return list(self.changes)

    def to_dict(self) -> dict:
        out = {}
        if self.changes:
            out["changed_fields"] = self.changed_fields
            out["changes"] = dict(self.changes)
        for key, value in self.reasons.items():
            if value:
                out[key] = value
        if self.step_number is not None:
            out["step_number"] = self.step_number
        return out


@dataclass(frozen=True)
class DeletedDetails:
    step_number: int | None = None
    action = "deleted"

    def to_dict(self) -> dict:
        out = {}
        if self.step_number is not None:
            out["step_number"] = self.step_number
        return out


# ── Model ────────────────────────────────────────────────────────────────────

class RegisterAuditLog(db.Model):
    """
    Immutable audit entry for a register mutation.

    ``owner_id`` is always the top-level entity, even for step-scoped rows,
    so one query returns the whole trail of a risk and its steps.
    """

    __tablename__ = "register_audit_logs"
    __table_args__ = (
        db.Index("idx_register_audit_owner", "owner_kind", "owner_id"),
        db.Index("idx_register_audit_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_kind = db.Column(db.String(20), nullable=False, comment="risk | issue | opportunity")
    owner_id = db.Column(db.String(36), nullable=False)

    entity_type = db.Column(db.String(10), nullable=False, comment="entity | step")
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(10), nullable=False, comment="created | updated | deleted")

    details_json = db.Column(db.Text, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        """Deserialise *details_json* to a Python dict."""
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_kind": self.owner_kind,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "details": self.details,
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<RegisterAuditLog {self.id}: {self.action} {self.entity_type}/{self.entity_id}>"
