"""SQLAlchemy models for the Prepaidly schedule register."""

from prepaidly.models.schedule import (
    AmortizationSchedule,
    ScheduleLine,
    ScheduleAudit,
    ScheduleType,
    AuditActionType,
    AuditImmutableError,
)
from prepaidly.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "AmortizationSchedule",
    "ScheduleLine",
    "ScheduleAudit",
    "ScheduleType",
    "AuditActionType",
    "AuditImmutableError",
    "ErrorLog",
    "ErrorSeverity",
]
