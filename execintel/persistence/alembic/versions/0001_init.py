"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, *, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _created() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _json(name: str, default: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(), server_default=sa.text(f"'{default}'::jsonb"), nullable=nullable)


def _flag(name: str, default: bool) -> sa.Column:
    return sa.Column(name, sa.Boolean(), server_default=sa.text("true" if default else "false"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        _flag("is_active", True),
        _created(),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("key_prefix", sa.String(), nullable=False),
        sa.Column("key_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        _ts("expires_at"),
        _ts("last_used_at"),
        _ts("revoked_at"),
        _created(),
    )
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)
    op.create_index("ix_api_keys_tenant_id", "api_keys", ["tenant_id"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "strategic_reports",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("format", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="draft", nullable=False),
        sa.Column("audience", sa.String(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("fiscal_quarter", sa.String(), nullable=True),
        sa.Column("fiscal_year", sa.Integer(), nullable=True),
        _json("section_types", "[]"),
        _json("kpis_snapshot", "{}"),
        _json("summary_json", "{}"),
        sa.Column("overall_strategic_score", sa.Float(), nullable=True),
        sa.Column("risk_posture_score", sa.Float(), nullable=True),
        sa.Column("opportunity_score", sa.Float(), nullable=True),
        sa.Column("messaging_alignment_score", sa.Float(), nullable=True),
        sa.Column("competitive_position_score", sa.Float(), nullable=True),
        sa.Column("brand_health_score", sa.Float(), nullable=True),
        sa.Column("tone", sa.String(), server_default="executive", nullable=False),
        sa.Column("target_length", sa.String(), server_default="standard", nullable=False),
        _flag("include_charts", True),
        _flag("include_recommendations", True),
        sa.Column("total_tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("generation_duration_ms", sa.Integer(), nullable=True),
        sa.Column("llm_model", sa.String(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("published_at"),
        sa.Column("published_by", sa.String(), nullable=True),
        sa.Column("pdf_storage_path", sa.String(), nullable=True),
        sa.Column("pptx_storage_path", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("ix_strategic_reports_tenant_id", "strategic_reports", ["tenant_id"])
    op.create_index("ix_strategic_reports_tenant_status", "strategic_reports", ["tenant_id", "status"])
    op.create_index(
        "ix_strategic_reports_tenant_format_period",
        "strategic_reports",
        ["tenant_id", "format", "period_end"],
    )

    op.create_table(
        "report_sections",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "report_id",
            sa.String(),
            sa.ForeignKey("strategic_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("section_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("order_index", sa.Integer(), server_default="0", nullable=False),
        sa.Column("content_md", sa.Text(), nullable=True),
        sa.Column("content_html", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        _json("key_points", "[]"),
        _json("metrics", "{}"),
        sa.Column("chart_config", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        _flag("is_edited", False),
        sa.Column("edit_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("edited_by", sa.String(), nullable=True),
        _ts("edited_at"),
        sa.Column("regeneration_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("generation_duration_ms", sa.Integer(), nullable=True),
        sa.Column("llm_model", sa.String(), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("ix_report_sections_tenant_id", "report_sections", ["tenant_id"])
    op.create_index("ix_report_sections_report_id", "report_sections", ["report_id"])
    op.create_index("ix_report_sections_report_order", "report_sections", ["report_id", "order_index"])

    op.create_table(
        "report_sources",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "report_id",
            sa.String(),
            sa.ForeignKey("strategic_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_system", sa.String(), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("source_type", sa.String(), nullable=True),
        sa.Column("source_title", sa.String(), nullable=True),
        sa.Column("source_url", sa.String(), nullable=True),
        _json("extracted_data", "{}"),
        sa.Column("data_points_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("relevance_score", sa.Float(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        _flag("is_primary", False),
        _json("used_in_sections", "[]"),
        sa.Column("extracted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _created(),
        _updated(),
        sa.UniqueConstraint("report_id", "source_system", "source_id", name="uq_report_sources_ref"),
    )
    op.create_index("ix_report_sources_tenant_id", "report_sources", ["tenant_id"])
    op.create_index("ix_report_sources_report_id", "report_sources", ["report_id"])

    op.create_table(
        "report_recipients",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "report_id",
            sa.String(),
            sa.ForeignKey("strategic_reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        _flag("include_pdf", True),
        _flag("include_inline_summary", True),
        _flag("is_active", True),
        _flag("is_validated", False),
        _created(),
        _updated(),
        sa.UniqueConstraint("report_id", "email", name="uq_report_recipients_email"),
    )
    op.create_index("ix_report_recipients_tenant_id", "report_recipients", ["tenant_id"])
    op.create_index("ix_report_recipients_report_id", "report_recipients", ["report_id"])

    # No FK to strategic_reports: the trail outlives a hard delete.
    op.create_table(
        "report_audit_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("report_id", sa.String(), nullable=False),
        sa.Column("section_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("new_status", sa.String(), nullable=True),
        _json("changes", "{}"),
        sa.Column("actor_type", sa.String(), server_default="user", nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_email", sa.String(), nullable=True),
        sa.Column("llm_model", sa.String(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        _created(),
    )
    op.create_index("ix_report_audit_logs_tenant_id", "report_audit_logs", ["tenant_id"])
    op.create_index("ix_report_audit_logs_report_id", "report_audit_logs", ["report_id"])
    op.create_index("ix_report_audit_logs_event_type", "report_audit_logs", ["event_type"])
    op.create_index("ix_report_audit_logs_report_created", "report_audit_logs", ["report_id", "created_at"])

    op.create_table(
        "upstream_snapshots",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("source_system", sa.String(), nullable=False),
        sa.Column("source_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        _json("payload_json", "{}"),
        sa.Column("captured_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_upstream_snapshots_tenant_id", "upstream_snapshots", ["tenant_id"])
    op.create_index(
        "ix_upstream_snapshots_lookup",
        "upstream_snapshots",
        ["tenant_id", "source_system", "captured_at"],
    )

    op.create_table(
        "exec_digests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("delivery_period", sa.String(), server_default="weekly", nullable=False),
        sa.Column("time_window", sa.String(), server_default="7d", nullable=False),
        sa.Column("schedule_day_of_week", sa.Integer(), server_default="1", nullable=False),
        sa.Column("schedule_hour", sa.Integer(), server_default="8", nullable=False),
        sa.Column("timezone", sa.String(), server_default="UTC", nullable=False),
        _flag("include_recommendations", True),
        _flag("include_kpis", True),
        _flag("include_narrative", True),
        _flag("include_risk_summary", True),
        _flag("include_competitive", True),
        _flag("is_active", True),
        _flag("is_archived", False),
        sa.Column("storage_bucket", sa.String(), nullable=False),
        sa.Column("pdf_storage_path", sa.String(), nullable=True),
        _ts("next_delivery_at"),
        _ts("last_delivered_at"),
        sa.Column("created_by", sa.String(), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("ix_exec_digests_tenant_id", "exec_digests", ["tenant_id"])
    op.create_index("ix_exec_digests_due", "exec_digests", ["is_active", "is_archived", "next_delivery_at"])

    op.create_table(
        "exec_digest_recipients",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "digest_id",
            sa.String(),
            sa.ForeignKey("exec_digests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        _flag("include_pdf", True),
        _flag("include_inline_summary", True),
        _flag("is_active", True),
        _flag("is_validated", False),
        _created(),
        _updated(),
        sa.UniqueConstraint("digest_id", "email", name="uq_exec_digest_recipients_email"),
    )
    op.create_index("ix_exec_digest_recipients_tenant_id", "exec_digest_recipients", ["tenant_id"])
    op.create_index("ix_exec_digest_recipients_digest_id", "exec_digest_recipients", ["digest_id"])

    op.create_table(
        "exec_digest_delivery_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "digest_id",
            sa.String(),
            sa.ForeignKey("exec_digests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("delivery_period", sa.String(), nullable=False),
        _ts("scheduled_at"),
        _ts("started_at"),
        _ts("completed_at"),
        sa.Column("status", sa.String(), server_default="pending", nullable=False),
        sa.Column("recipients_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("successful_deliveries", sa.Integer(), server_default="0", nullable=False),
        sa.Column("failed_deliveries", sa.Integer(), server_default="0", nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        _json("recipient_results", "[]"),
        _flag("is_test", False),
        _created(),
    )
    op.create_index("ix_exec_digest_delivery_logs_tenant_id", "exec_digest_delivery_logs", ["tenant_id"])
    op.create_index("ix_exec_digest_delivery_logs_digest_id", "exec_digest_delivery_logs", ["digest_id"])

    op.create_table(
        "risk_radar_snapshots",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("snapshot_date", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("overall_risk_index", sa.Float(), nullable=False),
        sa.Column("risk_level", sa.String(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("sentiment_score", sa.Float(), nullable=True),
        sa.Column("velocity_score", sa.Float(), nullable=True),
        sa.Column("propagation_score", sa.Float(), nullable=True),
        sa.Column("competitive_score", sa.Float(), nullable=True),
        sa.Column("governance_score", sa.Float(), nullable=True),
        sa.Column("persona_score", sa.Float(), nullable=True),
        _json("key_concerns", "[]"),
        _json("emerging_risks", "[]"),
        _json("positive_factors", "[]"),
        _flag("is_active", True),
        _flag("is_archived", False),
        sa.Column("computation_method", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        _created(),
        _updated(),
    )
    op.create_index("ix_risk_radar_snapshots_tenant_id", "risk_radar_snapshots", ["tenant_id"])
    op.create_index("ix_risk_radar_snapshots_risk_level", "risk_radar_snapshots", ["risk_level"])
    op.create_index(
        "ix_risk_radar_snapshots_tenant_date",
        "risk_radar_snapshots",
        ["tenant_id", "snapshot_date"],
    )

    op.create_table(
        "audit_replay_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("report_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="queued", nullable=False),
        sa.Column("total_events", sa.Integer(), server_default="0", nullable=False),
        sa.Column("processed_events", sa.Integer(), server_default="0", nullable=False),
        sa.Column("result_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _ts("started_at"),
        _ts("completed_at"),
        sa.Column("created_by", sa.String(), nullable=True),
        _created(),
    )
    op.create_index("ix_audit_replay_runs_tenant_id", "audit_replay_runs", ["tenant_id"])
    op.create_index("ix_audit_replay_runs_report_id", "audit_replay_runs", ["report_id"])


def downgrade() -> None:
    for table in (
        "audit_replay_runs",
        "risk_radar_snapshots",
        "exec_digest_delivery_logs",
        "exec_digest_recipients",
        "exec_digests",
        "upstream_snapshots",
        "report_audit_logs",
        "report_recipients",
        "report_sources",
        "report_sections",
        "strategic_reports",
        "api_keys",
        "users",
    ):
        op.drop_table(table)
