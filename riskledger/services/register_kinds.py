"""
Register kind descriptors.

Risk, Issue and Opportunity share one versioning / audit / rationale engine.
Everything that differs between them (score fields, status sets, gated
statuses, narrative fields, step shape, level function) lives in one
frozen ``KindDescriptor`` per kind, so the engine is written once.

    KINDS["risk"]          → descriptor by kind
    BY_PATH["risks"]       → descriptor by URL segment
"""

from dataclasses import dataclass, field
from typing import Callable

from riskledger.models.register import (
    ISSUE_STATUSES,
    MITIGATION_STRATEGIES,
    OPPORTUNITY_STATUSES,
    RISK_STATUSES,
    ActionPlanStep,
    Issue,
    MitigationStep,
    Opportunity,
    ResolutionStep,
    Risk,
)
from riskledger.services.level_classifier import (
    LevelResult,
    classify_issue,
    classify_opportunity,
    classify_risk,
)

COMMON_FIELDS = ("organizational_unit_id", "category", "owner", "status")


@dataclass(frozen=True)
class KindDescriptor:
    kind: str
    path: str
    label: str
    model: type
    step_model: type
    step_label: str

    score_fields: tuple
    level_fn: Callable[[dict], LevelResult]

    statuses: frozenset
    default_status: str
    statuses_requiring_rationale: frozenset

    required_fields: tuple
    text_fields: tuple
    choice_fields: dict = field(default_factory=dict)
    link_fields: dict = field(default_factory=dict)
    category_scope: str | None = None

    step_text_fields: tuple = ()
    step_required_text: tuple = ()
    step_text_defaults: dict = field(default_factory=dict)
    # False → expected scores default to the owner's current scores
    step_expected_required: bool = True

    # ── Derived field sets ───────────────────────────────────────────────

    @property
    def snapshot_fields(self) -> tuple:
        """Every field copied into an entity version, in display order."""
        return (
            self.text_fields
            + tuple(self.choice_fields)
            + tuple(self.link_fields)
            + COMMON_FIELDS
            + self.score_fields
            + ("level",)
        )

    @property
    def audit_fields(self) -> tuple:
        """Fields diffed for ``updated`` audit entries (level is derived)."""
        return tuple(f for f in self.snapshot_fields if f != "level")

    @property
    def step_expected_fields(self) -> tuple:
        return tuple(f"expected_{s}" for s in self.score_fields)

    @property
    def step_actual_fields(self) -> tuple:
        return tuple(f"actual_{s}" for s in self.score_fields)

    @property
    def step_snapshot_fields(self) -> tuple:
        return (
            ("sequence_order",)
            + self.step_text_fields
            + ("estimated_start_date", "estimated_end_date")
            + self.step_expected_fields
            + ("expected_rank",)
            + self.step_actual_fields
            + ("actual_rank", "actual_completed_at")
        )

    @property
    def step_audit_fields(self) -> tuple:
        return tuple(f for f in self.step_snapshot_fields if f not in ("expected_rank", "actual_rank"))

    @property
    def parent_fk(self) -> str:
        return self.step_model.__parent_fk__

    # ── Helpers ──────────────────────────────────────────────────────────

    def classify(self, scores: dict) -> LevelResult:
        return self.level_fn(scores)

    def steps_of(self, owner_id) -> list:
        """Steps under ``owner_id`` in presentation order."""
        return (
            self.step_model.query
            .filter_by(**{self.parent_fk: owner_id})
            .order_by(self.step_model.sequence_order.asc(), self.step_model.created_at.asc())
            .all()
        )

    def scores_of(self, obj, prefix="") -> dict:
        return {s: getattr(obj, f"{prefix}{s}") for s in self.score_fields}

    @staticmethod
    def reason_key(score_field: str) -> str:
        return f"{score_field}_change_reason"


RISK = KindDescriptor(
    kind="risk",
    path="risks",
    label="Risk",
    model=Risk,
    step_model=MitigationStep,
    step_label="Mitigation step",
    score_fields=("likelihood", "consequence"),
    level_fn=lambda s: classify_risk(s["likelihood"], s["consequence"]),
    statuses=frozenset(RISK_STATUSES),
    default_status="open",
    statuses_requiring_rationale=frozenset({"closed", "accepted", "realized"}),
    required_fields=("risk_name", "risk_condition", "risk_if", "risk_then"),
    text_fields=("risk_name", "risk_condition", "risk_if", "risk_then", "mitigation_plan"),
    choice_fields={"mitigation_strategy": frozenset(MITIGATION_STRATEGIES)},
    category_scope="risk",
    step_text_fields=("mitigation_actions", "closure_criteria"),
    step_required_text=("mitigation_actions", "closure_criteria"),
)

ISSUE = KindDescriptor(
    kind="issue",
    path="issues",
    label="Issue",
    model=Issue,
    step_model=ResolutionStep,
    step_label="Resolution step",
    score_fields=("consequence",),
    level_fn=lambda s: classify_issue(s["consequence"]),
    statuses=frozenset(ISSUE_STATUSES),
    default_status="control",
    # Issue status changes are not gated.
    statuses_requiring_rationale=frozenset(),
    required_fields=("issue_name",),
    text_fields=("issue_name", "description"),
    link_fields={"source_risk_id": Risk},
    category_scope=None,
    step_text_fields=("planned_action",),
    step_text_defaults={"planned_action": "Resolution step"},
    step_expected_required=False,
)

OPPORTUNITY = KindDescriptor(
    kind="opportunity",
    path="opportunities",
    label="Opportunity",
    model=Opportunity,
    step_model=ActionPlanStep,
    step_label="Action plan step",
    score_fields=("likelihood", "impact"),
    level_fn=lambda s: classify_opportunity(s["likelihood"], s["impact"]),
    statuses=frozenset(OPPORTUNITY_STATUSES),
    default_status="pursue_now",
    statuses_requiring_rationale=frozenset({"defer", "reevaluate", "reject"}),
    required_fields=(
        "opportunity_name", "opportunity_condition", "opportunity_if", "opportunity_then",
    ),
    text_fields=(
        "opportunity_name", "opportunity_condition", "opportunity_if", "opportunity_then",
    ),
    category_scope="opportunity",
    step_text_fields=("planned_action",),
    step_required_text=("planned_action",),
)

KINDS = {d.kind: d for d in (RISK, ISSUE, OPPORTUNITY)}
BY_PATH = {d.path: d for d in KINDS.values()}
