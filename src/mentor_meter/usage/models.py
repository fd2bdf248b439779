"""SQLAlchemy models for the usage ledger."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mentor_meter.common.models import Base, TimestampMixin, generate_uuid

# Counter columns that may only change through UsageLedger.increment().
COUNTER_COLUMNS = {
    "sessions": "sessions_used",
    "minutes": "minutes_used",
    "documents": "documents_generated",
    "tokens": "tokens_consumed",
}


class UsagePeriodModel(Base, TimestampMixin):
    __tablename__ = "usage_periods"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "period_start", "period_end", name="uq_usage_period_user_bounds",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Tier in effect when the period opened; never re-derived.
    tier: Mapped[str] = mapped_column(String(50), nullable=False)
    price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    sessions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minutes_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    documents_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_conversation_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_document_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def usage(self) -> dict[str, int]:
        return {
            resource: getattr(self, column) or 0
            for resource, column in COUNTER_COLUMNS.items()
        }


class ConversationUsageDetailModel(Base, TimestampMixin):
    """Per-session metering row, keyed by the provider conversation id."""

    __tablename__ = "conversation_usage_details"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    usage_period_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("usage_periods.id"), nullable=False, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    planned_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    termination_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    ended_event_id: Mapped[str | None] = mapped_column(String(36), nullable=True)


class UsageRecordModel(Base, TimestampMixin):
    """Provenance row for ledger mutations caused by client actions."""

    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    usage_period_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("usage_periods.id"), nullable=False, index=True
    )
    metric: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
