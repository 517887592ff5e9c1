"""Amortization schedule models.

- ``AmortizationSchedule``: one prepayment or unearned-revenue schedule
- ``ScheduleLine``: one generated month of a schedule
- ``ScheduleAudit``: append-only trail of actions taken on a schedule
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String,
    Numeric,
    Enum,
    DateTime,
    Date,
    ForeignKey,
    Text,
    JSON,
    Index,
    CheckConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from prepaidly.database import Base
from prepaidly.services.amortization.schedule_generator import AllocationPolicy


class ScheduleType(str, enum.Enum):
    PREPAYMENT = "prepayment"
    UNEARNED = "unearned"

    @property
    def label(self) -> str:
        return "Prepaid Expense" if self is ScheduleType.PREPAYMENT else "Unearned Revenue"


class AuditActionType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    GENERATED = "generated"
    DOWNLOADED = "downloaded"


class AmortizationSchedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_schedule_total_positive"),
        CheckConstraint("service_start <= service_end", name="ck_schedule_range"),
        Index("ix_schedules_entity_created", "entity_id", "created_at"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    schedule_type: Mapped[ScheduleType] = mapped_column(Enum(ScheduleType), nullable=False)
    vendor: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    service_start: Mapped[date] = mapped_column(Date, nullable=False)
    service_end: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    allocation_policy: Mapped[AllocationPolicy] = mapped_column(
        Enum(AllocationPolicy), default=AllocationPolicy.EQUAL_MONTHLY, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    entries: Mapped[list["ScheduleLine"]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleLine.period",
    )


class ScheduleLine(Base):
    __tablename__ = "schedule_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    period: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cumulative: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    remaining: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    schedule: Mapped[AmortizationSchedule] = relationship(back_populates="entries")


class ScheduleAudit(Base):
    """Immutable audit row.  Never updated or deleted through the ORM."""
    __tablename__ = "schedule_audit"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[AuditActionType] = mapped_column(Enum(AuditActionType), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class AuditImmutableError(Exception):
    """Attempted to modify or delete an audit row."""


@event.listens_for(ScheduleAudit, "before_update")
def _block_audit_update(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} is immutable")


@event.listens_for(ScheduleAudit, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise AuditImmutableError(f"Audit entry {target.id} cannot be deleted")
