"""
Tests for owner statistics: period math, revenue grouping and rankings.

Run with: pytest tests/test_statistics.py -v
"""

from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from fastapi import HTTPException

from kyros.statistics import (
    RevenuePeriod,
    appointments_by_branch,
    group_revenue,
    period_bounds,
    period_label,
    popular_services,
    rank_by_count,
    revenue_report,
    shift_period,
)

TZ = ZoneInfo("America/Mexico_City")
MONDAY = date(2030, 1, 7)


def local(day: int, hour: int, minute: int = 0, month: int = 1) -> datetime:
    return datetime(2030, month, day, hour, minute, tzinfo=TZ)


def scalars_result(rows):
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    return result


# ============================================================================
# PERIODS
# ============================================================================

class TestPeriods:

    def test_day_bounds(self):
        assert period_bounds(RevenuePeriod.DAY, MONDAY) == (MONDAY, date(2030, 1, 8))

    def test_week_starts_monday(self):
        """A Sunday belongs to the week that started the Monday before."""
        assert period_bounds(RevenuePeriod.WEEK, date(2030, 1, 13)) == (MONDAY, date(2030, 1, 14))

    def test_month_bounds(self):
        assert period_bounds(RevenuePeriod.MONTH, date(2030, 2, 14)) == (date(2030, 2, 1), date(2030, 3, 1))

    def test_shift_day_and_week(self):
        assert shift_period(RevenuePeriod.DAY, MONDAY, -1) == date(2030, 1, 6)
        assert shift_period(RevenuePeriod.WEEK, MONDAY, 1) == date(2030, 1, 14)

    def test_shift_month_clamps_day(self):
        """Jan 31 + one month lands on the last day of February."""
        assert shift_period(RevenuePeriod.MONTH, date(2030, 1, 31), 1) == date(2030, 2, 28)

    def test_shift_month_across_year(self):
        assert shift_period(RevenuePeriod.MONTH, date(2030, 1, 15), -1) == date(2029, 12, 15)

    def test_labels(self):
        assert period_label(RevenuePeriod.MONTH, MONDAY) == "January 2030"
        assert period_label(RevenuePeriod.WEEK, MONDAY) == "Jan 07 - Jan 13, 2030"


# ============================================================================
# GROUPING
# ============================================================================

class TestGroupRevenue:

    def test_day_buckets_by_hour(self):
        rows = [
            (local(7, 10, 15), Decimal("150")),
            (local(7, 10, 45), Decimal("100")),
            (local(7, 18, 0), Decimal("80")),
        ]
        buckets = group_revenue(RevenuePeriod.DAY, MONDAY, rows, TZ)
        assert [b.name for b in buckets][0] == "8:00"
        assert [b.name for b in buckets][-1] == "20:00"
        assert len(buckets) == 13
        values = {b.name: b.value for b in buckets}
        assert values["10:00"] == 250.0
        assert values["18:00"] == 80.0

    def test_day_outside_range_dropped(self):
        """A 7:30 completion has no bucket."""
        buckets = group_revenue(RevenuePeriod.DAY, MONDAY, [(local(7, 7, 30), Decimal("90"))], TZ)
        assert sum(b.value for b in buckets) == 0

    def test_utc_rows_bucketed_in_branch_time(self):
        """16:00 UTC is 10:00 in Mexico City."""
        row = (datetime(2030, 1, 7, 16, 0, tzinfo=ZoneInfo("UTC")), Decimal("50"))
        values = {b.name: b.value for b in group_revenue(RevenuePeriod.DAY, MONDAY, [row], TZ)}
        assert values["10:00"] == 50.0

    def test_week_buckets(self):
        rows = [
            (local(7, 12), Decimal("100")),
            (local(13, 12), Decimal("40")),
            (None, Decimal("999")),
        ]
        buckets = group_revenue(RevenuePeriod.WEEK, date(2030, 1, 9), rows, TZ)
        assert [b.name for b in buckets] == ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
        assert buckets[0].value == 100.0
        assert buckets[6].value == 40.0

    def test_month_buckets(self):
        buckets = group_revenue(
            RevenuePeriod.MONTH, date(2030, 2, 1), [(local(28, 12, month=2), Decimal("75"))], TZ
        )
        assert len(buckets) == 28
        assert buckets[-1].name == "28"
        assert buckets[-1].value == 75.0

    def test_rank_by_count(self):
        ranked = rank_by_count(["Haircut", "Beard trim", "Haircut"])
        assert [(r.name, r.value) for r in ranked] == [("Haircut", 2), ("Beard trim", 1)]
        assert len(rank_by_count(["a", "b", "c"], limit=2)) == 2


# ============================================================================
# QUERIES
# ============================================================================

class TestStatisticsQueries:

    async def test_appointments_by_branch_scoped_to_business(self, mock_session, owner_actor):
        mock_session.execute.return_value = scalars_result(["Centro", "Norte", "Centro", None])
        ranked = await appointments_by_branch(mock_session, owner_actor)
        assert [(r.name, r.value) for r in ranked] == [("Centro", 2), ("Norte", 1), ("No branch", 1)]
        sql = str(mock_session.execute.call_args.args[0].compile(compile_kwargs={"literal_binds": True}))
        assert "appointments.business_id = 1" in sql

    async def test_popular_services_limit(self, mock_session, owner_actor):
        mock_session.execute.return_value = scalars_result(["Haircut", None, "Haircut", "Dye"])
        ranked = await popular_services(mock_session, owner_actor, limit=2)
        assert [(r.name, r.value) for r in ranked] == [("Haircut", 2), ("Unnamed", 1)]
        sql = str(mock_session.execute.call_args.args[0].compile(compile_kwargs={"literal_binds": True}))
        assert "appointments.business_id = 1" in sql

    async def test_popular_services_other_branch_denied(self, mock_session, branch_actor):
        with pytest.raises(HTTPException) as exc:
            await popular_services(mock_session, branch_actor, branch_id=2)
        assert exc.value.status_code == 403

    async def test_revenue_report(self, mock_session, owner_actor, branch):
        mock_session.execute.return_value = scalars_result([
            SimpleNamespace(completed_at=local(7, 10, 15), total_paid=Decimal("250.00")),
            SimpleNamespace(completed_at=local(7, 7, 30), total_paid=Decimal("90.00")),
        ])
        with patch("kyros.statistics.require_owned", AsyncMock(return_value=branch)):
            report = await revenue_report(mock_session, owner_actor, 1, RevenuePeriod.DAY, MONDAY)

        assert report.total == Decimal("340.00")
        assert report.start_at == local(7, 0)
        assert report.end_at == local(8, 0)
        assert {b.name: b.value for b in report.buckets}["10:00"] == 250.0
        assert report.label == "Monday, January 07, 2030"
