"""Tests for the schedule register service.

Tests cover:
- Creation generates entries and audits the action
- Updates regenerate entries and describe what changed
- Rejected inputs leave the schedule untouched
- Regeneration with a different allocation policy
"""

import pytest
from decimal import Decimal
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

from prepaidly.auth_utils import Principal
from prepaidly.models.schedule import AmortizationSchedule, AuditActionType, ScheduleType
from prepaidly.services.amortization.schedule_generator import (
    AllocationPolicy,
    InvalidAmountError,
    InvalidRangeError,
)
from prepaidly.services.schedule_service import (
    ScheduleNotFoundError,
    create_schedule,
    describe_changes,
    get_schedule,
    list_schedules,
    regenerate_schedule,
    replace_entries,
    schedule_entries,
    update_schedule,
)
from prepaidly.services.amortization.schedule_generator import generate_schedule

AUDIT = "prepaidly.services.schedule_service.record_audit_entry"

PRINCIPAL = Principal(user_id="u-1", email="jo@example.com", name="Jo", entities={"ent-1": "user"})


def _mock_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


def _schedule(**overrides):
    values = dict(
        id=11,
        entity_id="ent-1",
        schedule_type=ScheduleType.PREPAYMENT,
        vendor="Acme",
        invoice_date=date(2024, 1, 5),
        total_amount=Decimal("100.00"),
        service_start=date(2024, 1, 1),
        service_end=date(2024, 3, 31),
        reference_number="INV-1",
        description=None,
        allocation_policy=AllocationPolicy.EQUAL_MONTHLY,
    )
    values.update(overrides)
    schedule = AmortizationSchedule(**values)
    replace_entries(
        schedule,
        generate_schedule(schedule.service_start, schedule.service_end, schedule.total_amount),
    )
    return schedule


# ===================================================================
# Create
# ===================================================================


class TestCreateSchedule:

    @pytest.mark.asyncio
    async def test_persists_generated_entries(self):
        db = _mock_db()
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            schedule = await create_schedule(
                db,
                entity_id="ent-1",
                schedule_type=ScheduleType.PREPAYMENT,
                vendor="Acme",
                invoice_date=date(2024, 1, 5),
                total_amount=Decimal("100.00"),
                service_start=date(2024, 1, 1),
                service_end=date(2024, 3, 31),
                reference_number="INV-1",
                principal=PRINCIPAL,
            )

        db.add.assert_called_once_with(schedule)
        db.flush.assert_awaited_once()
        assert schedule.created_by == "u-1"
        assert schedule.allocation_policy == AllocationPolicy.EQUAL_MONTHLY
        assert [line.amount for line in schedule.entries] == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
        ]

        audit.assert_awaited_once()
        kwargs = audit.call_args.kwargs
        assert kwargs["action_type"] == AuditActionType.CREATED
        assert kwargs["details"] == (
            "Prepaid Expense schedule created for Acme with total amount 100.00"
        )
        assert kwargs["principal"] is PRINCIPAL

    @pytest.mark.asyncio
    async def test_policy_and_type_from_strings(self):
        db = _mock_db()
        with patch(AUDIT, new_callable=AsyncMock):
            schedule = await create_schedule(
                db,
                entity_id="ent-1",
                schedule_type="unearned",
                vendor="Globex",
                invoice_date=date(2025, 2, 1),
                total_amount=Decimal("6000"),
                service_start=date(2025, 2, 6),
                service_end=date(2025, 8, 5),
                reference_number="SO-9",
                allocation_policy="days_weighted",
            )
        assert schedule.schedule_type == ScheduleType.UNEARNED
        assert schedule.allocation_policy == AllocationPolicy.DAYS_WEIGHTED
        assert schedule.entries[0].amount == Decimal("762.43")
        assert schedule.created_by is None

    @pytest.mark.asyncio
    async def test_invalid_range_writes_nothing(self):
        db = _mock_db()
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            with pytest.raises(InvalidRangeError):
                await create_schedule(
                    db,
                    entity_id="ent-1",
                    schedule_type=ScheduleType.PREPAYMENT,
                    vendor="Acme",
                    invoice_date=date(2024, 1, 5),
                    total_amount=Decimal("100.00"),
                    service_start=date(2024, 4, 1),
                    service_end=date(2024, 3, 31),
                    reference_number="INV-1",
                )
        db.add.assert_not_called()
        audit.assert_not_awaited()


# ===================================================================
# Read
# ===================================================================


class TestReadSchedules:

    @pytest.mark.asyncio
    async def test_get_missing_schedule(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        db = AsyncMock()
        db.execute.return_value = result
        with pytest.raises(ScheduleNotFoundError):
            await get_schedule(db, 404)

    @pytest.mark.asyncio
    async def test_get_existing_schedule(self):
        schedule = _schedule()
        result = MagicMock()
        result.scalar_one_or_none.return_value = schedule
        db = AsyncMock()
        db.execute.return_value = result
        assert await get_schedule(db, 11) is schedule

    @pytest.mark.asyncio
    async def test_list_schedules(self):
        rows = [_schedule(id=1), _schedule(id=2)]
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        db = AsyncMock()
        db.execute.return_value = result
        assert await list_schedules(db, ["ent-1"], schedule_type=ScheduleType.PREPAYMENT) == rows
        assert await list_schedules(db, None) == rows

    def test_schedule_entries_sorted(self):
        schedule = _schedule()
        schedule.entries.reverse()
        periods = [e.period for e in schedule_entries(schedule)]
        assert periods == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]


# ===================================================================
# Update
# ===================================================================


class TestUpdateSchedule:

    @pytest.mark.asyncio
    async def test_regenerates_entries(self):
        db = _mock_db()
        schedule = _schedule()
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            await update_schedule(
                db, schedule,
                {"total_amount": Decimal("120.00"), "service_end": date(2024, 4, 30)},
                principal=PRINCIPAL,
            )

        assert schedule.total_amount == Decimal("120.00")
        assert [line.amount for line in schedule.entries] == [Decimal("30.00")] * 4
        db.flush.assert_awaited_once()

        kwargs = audit.call_args.kwargs
        assert kwargs["action_type"] == AuditActionType.UPDATED
        assert kwargs["details"] == (
            "Schedule updated with changes: Amount: 100.00 → 120.00, "
            "Service end: 2024-03-31 → 2024-04-30"
        )
        assert kwargs["old_values"]["total_amount"] == Decimal("100.00")
        assert kwargs["new_values"]["total_amount"] == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_type_change(self):
        db = _mock_db()
        schedule = _schedule()
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            await update_schedule(db, schedule, {"schedule_type": "unearned"})
        assert schedule.schedule_type == ScheduleType.UNEARNED
        assert "Type: prepayment → unearned" in audit.call_args.kwargs["details"]

    @pytest.mark.asyncio
    async def test_unchanged_values(self):
        db = _mock_db()
        schedule = _schedule()
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            await update_schedule(db, schedule, {"total_amount": Decimal("100")})
        assert audit.call_args.kwargs["details"] == "Schedule regenerated with same values"

    @pytest.mark.asyncio
    async def test_rejected_update_leaves_schedule_untouched(self):
        db = _mock_db()
        schedule = _schedule()
        before = [line.amount for line in schedule.entries]
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            with pytest.raises(InvalidAmountError):
                await update_schedule(db, schedule, {"total_amount": Decimal("-1")})
        assert schedule.total_amount == Decimal("100.00")
        assert [line.amount for line in schedule.entries] == before
        db.flush.assert_not_awaited()
        audit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_field(self):
        with pytest.raises(ValueError, match="entity_id"):
            await update_schedule(_mock_db(), _schedule(), {"entity_id": "ent-2"})


class TestRegenerateSchedule:

    @pytest.mark.asyncio
    async def test_switch_policy(self):
        db = _mock_db()
        schedule = _schedule(
            total_amount=Decimal("600"),
            service_start=date(2024, 1, 15),
            service_end=date(2024, 3, 15),
        )
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            await regenerate_schedule(db, schedule, policy=AllocationPolicy.DAILY_PRORATION)

        assert schedule.allocation_policy == AllocationPolicy.DAILY_PRORATION
        assert [line.amount for line in schedule.entries] == [
            Decimal("167.21"), Decimal("285.25"), Decimal("147.54"),
        ]
        kwargs = audit.call_args.kwargs
        assert kwargs["action_type"] == AuditActionType.GENERATED
        assert kwargs["details"] == (
            "Schedule regenerated with daily_proration allocation (3 periods), "
            "previously equal_monthly"
        )

    @pytest.mark.asyncio
    async def test_keeps_stored_policy(self):
        db = _mock_db()
        schedule = _schedule(allocation_policy=AllocationPolicy.DAYS_WEIGHTED)
        with patch(AUDIT, new_callable=AsyncMock) as audit:
            await regenerate_schedule(db, schedule)
        assert schedule.allocation_policy == AllocationPolicy.DAYS_WEIGHTED
        assert "previously" not in audit.call_args.kwargs["details"]


# ===================================================================
# Change descriptions
# ===================================================================


class TestDescribeChanges:

    def test_quoted_text_fields(self):
        text = describe_changes(
            {"vendor": "Acme", "description": None},
            {"vendor": "Acme Ltd", "description": "Renewal"},
        )
        assert text == (
            'Schedule updated with changes: Contact: "Acme" → "Acme Ltd", '
            'Description: "" → "Renewal"'
        )

    def test_amounts_compared_numerically(self):
        assert describe_changes(
            {"total_amount": Decimal("100")}, {"total_amount": Decimal("100.00")}
        ) == "Schedule regenerated with same values"

    def test_enum_and_string_compare_equal(self):
        assert describe_changes(
            {"allocation_policy": AllocationPolicy.EQUAL_MONTHLY},
            {"allocation_policy": "equal_monthly"},
        ) == "Schedule regenerated with same values"
