"""
Risk Ledger
Register domain models.

Models:
    - Risk: likelihood × consequence scoring, mitigation steps
    - Issue: consequence-only scoring (likelihood fixed at 1), resolution steps
    - Opportunity: likelihood × impact scoring, action-plan steps
    - MitigationStep / ResolutionStep / ActionPlanStep: planned sub-actions

Architecture chain: OrganizationalUnit (external) → Risk / Issue / Opportunity → Step

Original score pairs are NOT stored here; they are read from version 1 of
the entity's version stream (see services/version_store.py).
"""

import uuid
from datetime import datetime, timezone

from riskledger.models import db
from riskledger.services.level_classifier import (
    classify_issue, classify_opportunity, classify_risk,
)
from riskledger.utils.helpers import iso_or_none


# ── Constants ────────────────────────────────────────────────────────────────

RISK_STATUSES = {"open", "mitigating", "accepted", "closed", "realized"}
ISSUE_STATUSES = {"ignore", "control"}
OPPORTUNITY_STATUSES = {"pursue_now", "defer", "reevaluate", "reject"}

MITIGATION_STRATEGIES = {"acceptance", "avoidance", "transfer", "control", "burn_down"}


def _new_id():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Mixins ───────────────────────────────────────────────────────────────────

class TrackedEntityMixin:
    """Columns shared by every register entity."""

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    organizational_unit_id = db.Column(
        db.String(36), nullable=True, index=True,
        comment="Opaque org-unit reference owned by the org-unit directory",
    )
    category = db.Column(db.String(50), nullable=True)
    level = db.Column(db.String(20), nullable=True, comment="low / moderate / high")
    owner = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def _timestamps(self):
        return {
            "created_at": iso_or_none(self.created_at),
            "updated_at": iso_or_none(self.updated_at),
        }


class StepMixin:
    """Columns shared by every planned step.

    ``sequence_order`` is dense and zero-based within the parent.
    Actual fields stay null until the step is marked complete.
    """

    __parent_fk__ = None

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    sequence_order = db.Column(db.Integer, nullable=False, default=0)
    estimated_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_rank = db.Column(db.Integer, nullable=False, comment="1-25 waterfall rank")
    actual_rank = db.Column(db.Integer, nullable=True)
    actual_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def parent_id(self):
        return getattr(self, self.__parent_fk__)

    @property
    def step_number(self):
        """1-based display position."""
        return (self.sequence_order or 0) + 1

    def _common_dict(self):
        return {
            "id": self.id,
            self.__parent_fk__: self.parent_id,
            "sequence_order": self.sequence_order,
            "step_number": self.step_number,
            "estimated_start_date": iso_or_none(self.estimated_start_date),
            "estimated_end_date": iso_or_none(self.estimated_end_date),
            "expected_rank": self.expected_rank,
            "actual_rank": self.actual_rank,
            "actual_completed_at": iso_or_none(self.actual_completed_at),
            "created_at": iso_or_none(self.created_at),
            "updated_at": iso_or_none(self.updated_at),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  RISK
# ═══════════════════════════════════════════════════════════════════════════

class Risk(TrackedEntityMixin, db.Model):
    """
    A risk: "Given <condition>, if <if>, then <then>".

    Level = 5×5 lookup of likelihood × consequence.
    """

    __tablename__ = "risks"

    risk_name = db.Column(db.String(300), nullable=False)
    risk_condition = db.Column(db.Text, nullable=False)
    risk_if = db.Column(db.Text, nullable=False)
    risk_then = db.Column(db.Text, nullable=False)
    likelihood = db.Column(db.Integer, nullable=False, default=3, comment="1-5 scale")
    consequence = db.Column(db.Integer, nullable=False, default=3, comment="1-5 scale")
    mitigation_strategy = db.Column(db.String(20), nullable=True)
    mitigation_plan = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open", index=True)

    steps = db.relationship(
        "MitigationStep",
        order_by="MitigationStep.sequence_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def level_rank(self):
        return classify_risk(self.likelihood, self.consequence).rank

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "risk",
            "organizational_unit_id": self.organizational_unit_id,
            "risk_name": self.risk_name,
            "risk_condition": self.risk_condition,
            "risk_if": self.risk_if,
            "risk_then": self.risk_then,
            "category": self.category,
            "likelihood": self.likelihood,
            "consequence": self.consequence,
            "level": self.level,
            "level_rank": self.level_rank,
            "mitigation_strategy": self.mitigation_strategy,
            "mitigation_plan": self.mitigation_plan,
            "owner": self.owner,
            "status": self.status,
            **self._timestamps(),
        }

    def __repr__(self):
        return f"<Risk {self.id}: {(self.risk_name or '')[:40]}>"


class MitigationStep(StepMixin, db.Model):
    """A planned mitigation action that should drive the risk level down."""

    __tablename__ = "mitigation_steps"
    __parent_fk__ = "risk_id"

    risk_id = db.Column(
        db.String(36), db.ForeignKey("risks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    mitigation_actions = db.Column(db.Text, nullable=False)
    closure_criteria = db.Column(db.Text, nullable=False)
    expected_likelihood = db.Column(db.Integer, nullable=False)
    expected_consequence = db.Column(db.Integer, nullable=False)
    actual_likelihood = db.Column(db.Integer, nullable=True)
    actual_consequence = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            **self._common_dict(),
            "mitigation_actions": self.mitigation_actions,
            "closure_criteria": self.closure_criteria,
            "expected_likelihood": self.expected_likelihood,
            "expected_consequence": self.expected_consequence,
            "actual_likelihood": self.actual_likelihood,
            "actual_consequence": self.actual_consequence,
        }

    def __repr__(self):
        return f"<MitigationStep {self.id} #{self.step_number} of {self.risk_id}>"


# ═══════════════════════════════════════════════════════════════════════════
#  ISSUE
# ═══════════════════════════════════════════════════════════════════════════

class Issue(TrackedEntityMixin, db.Model):
    """
    An issue: a risk that has already happened.

    Likelihood is implicitly 1; level is read from consequence alone.
    """

    __tablename__ = "issues"

    issue_name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    consequence = db.Column(db.Integer, nullable=False, default=3, comment="1-5 scale")
    status = db.Column(db.String(20), nullable=False, default="control", index=True)
    source_risk_id = db.Column(
        db.String(36),
        db.ForeignKey("risks.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Risk this issue was realised from",
    )

    steps = db.relationship(
        "ResolutionStep",
        order_by="ResolutionStep.sequence_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def level_rank(self):
        return classify_issue(self.consequence).rank

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "issue",
            "organizational_unit_id": self.organizational_unit_id,
            "issue_name": self.issue_name,
            "description": self.description,
            "category": self.category,
            "consequence": self.consequence,
            "level": self.level,
            "level_rank": self.level_rank,
            "owner": self.owner,
            "status": self.status,
            "source_risk_id": self.source_risk_id,
            **self._timestamps(),
        }

    def __repr__(self):
        return f"<Issue {self.id}: {(self.issue_name or '')[:40]}>"


class ResolutionStep(StepMixin, db.Model):
    """A planned action to bring an issue's consequence down."""

    __tablename__ = "resolution_steps"
    __parent_fk__ = "issue_id"

    issue_id = db.Column(
        db.String(36), db.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    planned_action = db.Column(db.Text, nullable=False)
    expected_consequence = db.Column(db.Integer, nullable=False)
    actual_consequence = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            **self._common_dict(),
            "planned_action": self.planned_action,
            "expected_consequence": self.expected_consequence,
            "actual_consequence": self.actual_consequence,
        }

    def __repr__(self):
        return f"<ResolutionStep {self.id} #{self.step_number} of {self.issue_id}>"


# ═══════════════════════════════════════════════════════════════════════════
#  OPPORTUNITY
# ═══════════════════════════════════════════════════════════════════════════

class Opportunity(TrackedEntityMixin, db.Model):
    """
    An opportunity: upside counterpart of a risk.

    Level = 5×5 lookup of likelihood × impact (shown as Good / Very Good / Excellent).
    """

    __tablename__ = "opportunities"

    opportunity_name = db.Column(db.String(300), nullable=False)
    opportunity_condition = db.Column(db.Text, nullable=False)
    opportunity_if = db.Column(db.Text, nullable=False)
    opportunity_then = db.Column(db.Text, nullable=False)
    likelihood = db.Column(db.Integer, nullable=False, default=3, comment="1-5 scale")
    impact = db.Column(db.Integer, nullable=False, default=3, comment="1-5 scale")
    status = db.Column(db.String(20), nullable=False, default="pursue_now", index=True)

    steps = db.relationship(
        "ActionPlanStep",
        order_by="ActionPlanStep.sequence_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def level_rank(self):
        return classify_opportunity(self.likelihood, self.impact).rank

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "opportunity",
            "organizational_unit_id": self.organizational_unit_id,
            "opportunity_name": self.opportunity_name,
            "opportunity_condition": self.opportunity_condition,
            "opportunity_if": self.opportunity_if,
            "opportunity_then": self.opportunity_then,
            "category": self.category,
            "likelihood": self.likelihood,
            "impact": self.impact,
            "level": self.level,
            "level_rank": self.level_rank,
            "owner": self.owner,
            "status": self.status,
            **self._timestamps(),
        }

    def __repr__(self):
        return f"<Opportunity {self.id}: {(self.opportunity_name or '')[:40]}>"


class ActionPlanStep(StepMixin, db.Model):
    """A planned action to raise an opportunity's likelihood or impact."""

    __tablename__ = "action_plan_steps"
    __parent_fk__ = "opportunity_id"

    opportunity_id = db.Column(
        db.String(36), db.ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    planned_action = db.Column(db.Text, nullable=False)
    expected_likelihood = db.Column(db.Integer, nullable=False)
    expected_impact = db.Column(db.Integer, nullable=False)
    actual_likelihood = db.Column(db.Integer, nullable=True)
    actual_impact = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            **self._common_dict(),
            "planned_action": self.planned_action,
            "expected_likelihood": self.expected_likelihood,
            "expected_impact": self.expected_impact,
            "actual_likelihood": self.actual_likelihood,
            "actual_impact": self.actual_impact,
        }

    def __repr__(self):
        return f"<ActionPlanStep {self.id} #{self.step_number} of {self.opportunity_id}>"
