"""register_tables

Creates the register, version-stream and audit tables:
  - risks / mitigation_steps
  - issues / resolution_steps
  - opportunities / action_plan_steps
  - entity_versions / step_versions   — append-only snapshots, unique per (kind, owner, version)
  - register_audit_logs               — one row per mutation
  - categories                        — risk / opportunity category lookup

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1d2e3f4a01
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1d2e3f4a01'
down_revision = None
branch_labels = None
depends_on = None


def _entity_columns():
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organizational_unit_id", sa.String(length=36), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("level", sa.String(length=20), nullable=True,
                  comment="low / moderate / high"),
        sa.Column("owner", sa.String(length=150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _step_columns():
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("estimated_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expected_rank", sa.Integer(), nullable=False,
                  comment="1-25 waterfall rank"),
        sa.Column("actual_rank", sa.Integer(), nullable=True),
        sa.Column("actual_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Risks ─────────────────────────────────────────────────────────────
    if "risks" not in existing:
        op.create_table(
            "risks",
            *_entity_columns(),
            sa.Column("risk_name", sa.String(length=300), nullable=False),
            sa.Column("risk_condition", sa.Text(), nullable=False),
            sa.Column("risk_if", sa.Text(), nullable=False),
            sa.Column("risk_then", sa.Text(), nullable=False),
            sa.Column("likelihood", sa.Integer(), nullable=False, comment="1-5 scale"),
            sa.Column("consequence", sa.Integer(), nullable=False, comment="1-5 scale"),
            sa.Column("mitigation_strategy", sa.String(length=20), nullable=True),
            sa.Column("mitigation_plan", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_risks_organizational_unit_id", "risks", ["organizational_unit_id"])
        op.create_index("ix_risks_status", "risks", ["status"])

    if "mitigation_steps" not in existing:
        op.create_table(
            "mitigation_steps",
            *_step_columns(),
            sa.Column("risk_id", sa.String(length=36), nullable=False),
            sa.Column("mitigation_actions", sa.Text(), nullable=False),
            sa.Column("closure_criteria", sa.Text(), nullable=False),
            sa.Column("expected_likelihood", sa.Integer(), nullable=False),
            sa.Column("expected_consequence", sa.Integer(), nullable=False),
            sa.Column("actual_likelihood", sa.Integer(), nullable=True),
            sa.Column("actual_consequence", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["risk_id"], ["risks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_mitigation_steps_risk_id", "mitigation_steps", ["risk_id"])

    # ── Issues ────────────────────────────────────────────────────────────
    if "issues" not in existing:
        op.create_table(
            "issues",
            *_entity_columns(),
            sa.Column("issue_name", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("consequence", sa.Integer(), nullable=False, comment="1-5 scale"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="control"),
            sa.Column("source_risk_id", sa.String(length=36), nullable=True,
                      comment="Risk this issue was realised from"),
            sa.ForeignKeyConstraint(["source_risk_id"], ["risks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_issues_organizational_unit_id", "issues", ["organizational_unit_id"])
        op.create_index("ix_issues_status", "issues", ["status"])
        op.create_index("ix_issues_source_risk_id", "issues", ["source_risk_id"])

    if "resolution_steps" not in existing:
        op.create_table(
            "resolution_steps",
            *_step_columns(),
            sa.Column("issue_id", sa.String(length=36), nullable=False),
            sa.Column("planned_action", sa.Text(), nullable=False),
            sa.Column("expected_consequence", sa.Integer(), nullable=False),
            sa.Column("actual_consequence", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["issue_id"], ["issues.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_resolution_steps_issue_id", "resolution_steps", ["issue_id"])

    # ── Opportunities ─────────────────────────────────────────────────────
    if "opportunities" not in existing:
        op.create_table(
            "opportunities",
            *_entity_columns(),
            sa.Column("opportunity_name", sa.String(length=300), nullable=False),
            sa.Column("opportunity_condition", sa.Text(), nullable=False),
            sa.Column("opportunity_if", sa.Text(), nullable=False),
            sa.Column("opportunity_then", sa.Text(), nullable=False),
            sa.Column("likelihood", sa.Integer(), nullable=False, comment="1-5 scale"),
            sa.Column("impact", sa.Integer(), nullable=False, comment="1-5 scale"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pursue_now"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_opportunities_organizational_unit_id", "opportunities",
                        ["organizational_unit_id"])
        op.create_index("ix_opportunities_status", "opportunities", ["status"])

    if "action_plan_steps" not in existing:
        op.create_table(
            "action_plan_steps",
            *_step_columns(),
            sa.Column("opportunity_id", sa.String(length=36), nullable=False),
            sa.Column("planned_action", sa.Text(), nullable=False),
            sa.Column("expected_likelihood", sa.Integer(), nullable=False),
            sa.Column("expected_impact", sa.Integer(), nullable=False),
            sa.Column("actual_likelihood", sa.Integer(), nullable=True),
            sa.Column("actual_impact", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["opportunity_id"], ["opportunities.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_action_plan_steps_opportunity_id", "action_plan_steps",
                        ["opportunity_id"])

    # ── Version streams ───────────────────────────────────────────────────
    if "entity_versions" not in existing:
        op.create_table(
            "entity_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_kind", sa.String(length=20), nullable=False,
                      comment="risk | issue | opportunity"),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("snapshot_json", sa.Text(), nullable=False),
            sa.Column("likelihood_change_reason", sa.Text(), nullable=True),
            sa.Column("consequence_change_reason", sa.Text(), nullable=True),
            sa.Column("impact_change_reason", sa.Text(), nullable=True),
            sa.Column("status_change_rationale", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entity_kind", "owner_id", "version", name="uq_entity_version"),
        )
        op.create_index("idx_entity_version_owner", "entity_versions",
                        ["entity_kind", "owner_id"])

    if "step_versions" not in existing:
        op.create_table(
            "step_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("step_kind", sa.String(length=20), nullable=False,
                      comment="risk | issue | opportunity"),
            sa.Column("step_id", sa.String(length=36), nullable=False),
            sa.Column("owner_id", sa.String(length=36), nullable=False,
                      comment="Top-level entity id"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("snapshot_json", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("step_kind", "step_id", "version", name="uq_step_version"),
        )
        op.create_index("ix_step_versions_step_id", "step_versions", ["step_id"])
        op.create_index("idx_step_version_owner", "step_versions", ["step_kind", "owner_id"])

    # ── Audit ─────────────────────────────────────────────────────────────
    if "register_audit_logs" not in existing:
        op.create_table(
            "register_audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("owner_kind", sa.String(length=20), nullable=False,
                      comment="risk | issue | opportunity"),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("entity_type", sa.String(length=10), nullable=False,
                      comment="entity | step"),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=10), nullable=False,
                      comment="created | updated | deleted"),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_register_audit_owner", "register_audit_logs",
                        ["owner_kind", "owner_id"])
        op.create_index("idx_register_audit_ts", "register_audit_logs", ["created_at"])

    # ── Categories ────────────────────────────────────────────────────────
    if "categories" not in existing:
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("scope", sa.String(length=20), nullable=False,
                      comment="risk | opportunity"),
            sa.Column("code", sa.String(length=50), nullable=False),
            sa.Column("label", sa.String(length=100), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("scope", "code", name="uq_category_scope_code"),
        )


def downgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())
    for table in (
        "categories",
        "register_audit_logs",
        "step_versions",
        "entity_versions",
        "action_plan_steps",
        "opportunities",
        "resolution_steps",
        "issues",
        "mitigation_steps",
        "risks",
    ):
        if table in existing:
            op.drop_table(table)
