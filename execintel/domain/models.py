from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Store documents as JSONB on Postgres while keeping sqlite usable for local tests.
JSONDoc = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    # Carry the email so audit entries can name the human actor.
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    # Persist RBAC role as a simple string for fast lookup and migration safety.
    role: Mapped[str] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    # Keep a short prefix for operator display without exposing the secret.
    key_prefix: Mapped[str] = mapped_column(String)
    # Store only the hashed key to avoid plaintext credentials at rest.
    key_hash: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class StrategicReport(Base):
    __tablename__ = "strategic_reports"
    __table_args__ = (
        Index("ix_strategic_reports_tenant_status", "tenant_id", "status"),
        Index("ix_strategic_reports_tenant_format_period", "tenant_id", "format", "period_end"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    format: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="draft")
    audience: Mapped[str] = mapped_column(String)
    period_start: Mapped[date] = mapped_column(Date)
    period_end: Mapped[date] = mapped_column(Date)
    fiscal_quarter: Mapped[str | None] = mapped_column(String, nullable=True)
    fiscal_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Section kinds requested for generation, in display order.
    section_types: Mapped[list[str]] = mapped_column(JSONDoc, default=list)
    kpis_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    summary_json: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    overall_strategic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk_posture_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    opportunity_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    messaging_alignment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    competitive_position_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    brand_health_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    tone: Mapped[str] = mapped_column(String, default="executive")
    target_length: Mapped[str] = mapped_column(String, default="standard")
    include_charts: Mapped[bool] = mapped_column(Boolean, default=True)
    include_recommendations: Mapped[bool] = mapped_column(Boolean, default=True)
    total_tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    generation_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    llm_model: Mapped[str | None] = mapped_column(String, nullable=True)
    # Last generation failure, cleared on the next successful run.
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_by: Mapped[str | None] = mapped_column(String, nullable=True)
    pdf_storage_path: Mapped[str | None] = mapped_column(String, nullable=True)
    pptx_storage_path: Mapped[str | None] = mapped_column(String, nullable=True)
    # Optimistic concurrency token bumped on every guarded write.
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ReportSection(Base):
    __tablename__ = "report_sections"
    __table_args__ = (Index("ix_report_sections_report_order", "report_id", "order_index"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    report_id: Mapped[str] = mapped_column(
        String, ForeignKey("strategic_reports.id", ondelete="CASCADE"), index=True
    )
    section_type: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    content_md: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    key_points: Mapped[list[str]] = mapped_column(JSONDoc, default=list)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    chart_config: Mapped[dict[str, Any] | None] = mapped_column(JSONDoc, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)
    edit_count: Mapped[int] = mapped_column(Integer, default=0)
    edited_by: Mapped[str | None] = mapped_column(String, nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    regeneration_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    generation_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    llm_model: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ReportSource(Base):
    __tablename__ = "report_sources"
    __table_args__ = (
        # Deduplicate upstream references per report.
        UniqueConstraint("report_id", "source_system", "source_id", name="uq_report_sources_ref"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    report_id: Mapped[str] = mapped_column(
        String, ForeignKey("strategic_reports.id", ondelete="CASCADE"), index=True
    )
    source_system: Mapped[str] = mapped_column(String)
    source_id: Mapped[str] = mapped_column(String)
    source_type: Mapped[str | None] = mapped_column(String, nullable=True)
    source_title: Mapped[str | None] = mapped_column(String, nullable=True)
    source_url: Mapped[str | None] = mapped_column(String, nullable=True)
    extracted_data: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    data_points_count: Mapped[int] = mapped_column(Integer, default=0)
    relevance_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    used_in_sections: Mapped[list[str]] = mapped_column(JSONDoc, default=list)
    extracted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ReportAuditLog(Base):
    __tablename__ = "report_audit_logs"
    __table_args__ = (Index("ix_report_audit_logs_report_created", "report_id", "created_at"),)

    # Use a monotonic numeric id to break created_at ties in chronological reads.
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    # No FK: entries outlive a hard-deleted report for compliance.
    report_id: Mapped[str] = mapped_column(String, index=True)
    section_id: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String, nullable=True)
    new_status: Mapped[str | None] = mapped_column(String, nullable=True)
    changes: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    actor_type: Mapped[str] = mapped_column(String, default="user")
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String, nullable=True)
    llm_model: Mapped[str | None] = mapped_column(String, nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ReportRecipient(Base):
    """Board distribution list for a strategic report; same shape as digest recipients."""

    __tablename__ = "report_recipients"
    __table_args__ = (UniqueConstraint("report_id", "email", name="uq_report_recipients_email"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    report_id: Mapped[str] = mapped_column(
        String, ForeignKey("strategic_reports.id", ondelete="CASCADE"), index=True
    )
    email: Mapped[str] = mapped_column(String)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    include_pdf: Mapped[bool] = mapped_column(Boolean, default=True)
    include_inline_summary: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class UpstreamSnapshot(Base):
    __tablename__ = "upstream_snapshots"
    __table_args__ = (
        Index("ix_upstream_snapshots_lookup", "tenant_id", "source_system", "captured_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    # Feature area that produced this summary (media_performance, governance, ...).
    source_system: Mapped[str] = mapped_column(String)
    source_id: Mapped[str] = mapped_column(String)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JSONDoc, default=dict)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ExecDigest(Base):
    __tablename__ = "exec_digests"
    __table_args__ = (Index("ix_exec_digests_due", "is_active", "is_archived", "next_delivery_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_period: Mapped[str] = mapped_column(String, default="weekly")
    time_window: Mapped[str] = mapped_column(String, default="7d")
    # Postgres DOW convention: 0=Sunday .. 6=Saturday.
    schedule_day_of_week: Mapped[int] = mapped_column(Integer, default=1)
    schedule_hour: Mapped[int] = mapped_column(Integer, default=8)
    timezone: Mapped[str] = mapped_column(String, default="UTC")
    include_recommendations: Mapped[bool] = mapped_column(Boolean, default=True)
    include_kpis: Mapped[bool] = mapped_column(Boolean, default=True)
    include_narrative: Mapped[bool] = mapped_column(Boolean, default=True)
    include_risk_summary: Mapped[bool] = mapped_column(Boolean, default=True)
    include_competitive: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    storage_bucket: Mapped[str] = mapped_column(String)
    pdf_storage_path: Mapped[str | None] = mapped_column(String, nullable=True)
    next_delivery_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DigestRecipient(Base):
    __tablename__ = "exec_digest_recipients"
    __table_args__ = (UniqueConstraint("digest_id", "email", name="uq_exec_digest_recipients_email"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    digest_id: Mapped[str] = mapped_column(
        String, ForeignKey("exec_digests.id", ondelete="CASCADE"), index=True
    )
    # Stored lowercased and trimmed.
    email: Mapped[str] = mapped_column(String)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    include_pdf: Mapped[bool] = mapped_column(Boolean, default=True)
    include_inline_summary: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DigestDeliveryLog(Base):
    __tablename__ = "exec_digest_delivery_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    digest_id: Mapped[str] = mapped_column(
        String, ForeignKey("exec_digests.id", ondelete="CASCADE"), index=True
    )
    delivery_period: Mapped[str] = mapped_column(String)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    recipients_count: Mapped[int] = mapped_column(Integer, default=0)
    successful_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    failed_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipient_results: Mapped[list[dict[str, Any]]] = mapped_column(JSONDoc, default=list)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RiskRadarSnapshot(Base):
    __tablename__ = "risk_radar_snapshots"
    __table_args__ = (Index("ix_risk_radar_snapshots_tenant_date", "tenant_id", "snapshot_date"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    snapshot_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    overall_risk_index: Mapped[float] = mapped_column(Float)
    risk_level: Mapped[str] = mapped_column(String, index=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    velocity_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    propagation_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    competitive_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    governance_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    persona_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    key_concerns: Mapped[list[Any]] = mapped_column(JSONDoc, default=list)
    emerging_risks: Mapped[list[Any]] = mapped_column(JSONDoc, default=list)
    positive_factors: Mapped[list[Any]] = mapped_column(JSONDoc, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    computation_method: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AuditReplayRun(Base):
    __tablename__ = "audit_replay_runs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    report_id: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String, default="queued")
    total_events: Mapped[int] = mapped_column(Integer, default=0)
    processed_events: Mapped[int] = mapped_column(Integer, default=0)
    result_json: Mapped[dict[str, Any] | None] = mapped_column(JSONDoc, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
