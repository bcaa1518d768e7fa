"""
Risk Ledger
Version stream models.

Models:
    - EntityVersion: immutable snapshot of a Risk / Issue / Opportunity
    - StepVersion: immutable snapshot of one of their steps

Both tables are append-only. Version numbers per owner form the gap-free
sequence 1..N; the unique constraint turns a concurrent duplicate into an
IntegrityError instead of a silent second "version 1".

Owners are polymorphic (three entity tables, three step tables), so the
owner reference is (kind, id) without a foreign key; the register service
purges a stream when its owner is deleted.
"""

import json
from datetime import datetime, timezone

from riskledger.models import db
from riskledger.utils.helpers import iso_or_none


class EntityVersion(db.Model):
    """One point-in-time copy of a tracked entity."""

    __tablename__ = "entity_versions"
    __table_args__ = (
        db.UniqueConstraint("entity_kind", "owner_id", "version", name="uq_entity_version"),
        db.Index("idx_entity_version_owner", "entity_kind", "owner_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_kind = db.Column(db.String(20), nullable=False, comment="risk | issue | opportunity")
    owner_id = db.Column(db.String(36), nullable=False)
    version = db.Column(db.Integer, nullable=False)

    snapshot_json = db.Column(db.Text, nullable=False, default="{}")

    likelihood_change_reason = db.Column(db.Text, nullable=True)
    consequence_change_reason = db.Column(db.Text, nullable=True)
    impact_change_reason = db.Column(db.Text, nullable=True)
    status_change_rationale = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    REASON_FIELDS = (
        "likelihood_change_reason",
        "consequence_change_reason",
        "impact_change_reason",
        "status_change_rationale",
    )

    @property
    def snapshot(self) -> dict:
        try:
            return json.loads(self.snapshot_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @property
    def reasons(self) -> dict:
        return {f: getattr(self, f) for f in self.REASON_FIELDS if getattr(self, f)}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_kind": self.entity_kind,
            "owner_id": self.owner_id,
            "version": self.version,
            "snapshot": self.snapshot,
            **{f: getattr(self, f) for f in self.REASON_FIELDS},
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<EntityVersion {self.entity_kind}/{self.owner_id} v{self.version}>"


class StepVersion(db.Model):
    """One point-in-time copy of a step, stamped with its position at the time."""

    __tablename__ = "step_versions"
    __table_args__ = (
        db.UniqueConstraint("step_kind", "step_id", "version", name="uq_step_version"),
        db.Index("idx_step_version_owner", "step_kind", "owner_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    step_kind = db.Column(db.String(20), nullable=False, comment="risk | issue | opportunity")
    step_id = db.Column(db.String(36), nullable=False, index=True)
    owner_id = db.Column(db.String(36), nullable=False, comment="Top-level entity id")
    version = db.Column(db.Integer, nullable=False)
    sequence_order = db.Column(db.Integer, nullable=False, default=0)

    snapshot_json = db.Column(db.Text, nullable=False, default="{}")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def snapshot(self) -> dict:
        try:
            return json.loads(self.snapshot_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @property
    def step_number(self) -> int:
        return (self.sequence_order or 0) + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "step_id": self.step_id,
            "owner_id": self.owner_id,
            "version": self.version,
            "step_number": self.step_number,
            "snapshot": self.snapshot,
            "created_at": iso_or_none(self.created_at),
        }

    def __repr__(self):
        return f"<StepVersion {self.step_kind}/{self.step_id} v{self.version}>"
