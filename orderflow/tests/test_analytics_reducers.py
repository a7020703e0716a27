"""Pure analytics reducers: no database."""
from datetime import date, datetime, timedelta, timezone

import pytest

from orderflow.features.analytics.reducers import (
    day_window,
    period_start,
    previous_day,
    reduce_daily_metrics,
    reduce_monthly_aggregate,
    reduce_user_summary,
)
from orderflow.models.analytics import AnalyticsEvent, DailyReport, OrderSnapshot
from orderflow.tests.factories import FIXED_NOW

NY = "America/New_York"


def event(name, user_id="alice", i=0):
    return AnalyticsEvent(id=f"e{name}{user_id}{i}", user_id=user_id, event_name=name, timestamp=FIXED_NOW)


def snapshot(order_id, status, total=None):
    return OrderSnapshot(id=order_id, user_id="alice", status=status, total=total, created_at=FIXED_NOW)


def report(day, **overrides):
    values = dict(
        total_events=10,
        total_orders=2,
        completed_orders=1,
        new_users=1,
        active_users=3,
        total_revenue=20.0,
        average_order_value=20.0,
        conversion_rate=33.3,
        generated_at=FIXED_NOW,
    )
    values.update(overrides)
    return DailyReport(date=day, **values)


def test_empty_day_has_zero_ratios():
    metrics = reduce_daily_metrics([], [], new_users=0)

    assert metrics.total_events == 0
    assert metrics.average_order_value == 0
    assert metrics.conversion_rate == 0
    assert metrics.event_breakdown == {}


def test_daily_metrics_counts_revenue_from_completed_and_paid_only():
    events = [event("view", "alice"), event("view", "bob"), event("add_to_cart", "alice"), event("view", None)]
    orders = [
        snapshot("o1", "completed", 30.0),
        snapshot("o2", "paid", 10.0),
        snapshot("o3", "cancelled", 99.0),
        snapshot("o4", "processing", 5.0),
    ]

    metrics = reduce_daily_metrics(events, orders, new_users=2)

    assert metrics.total_events == 4
    assert metrics.active_users == 2  # anonymous event excluded
    assert metrics.total_orders == 4
    assert metrics.completed_orders == 2
    assert metrics.total_revenue == pytest.approx(40.0)
    assert metrics.average_order_value == pytest.approx(20.0)
    assert metrics.conversion_rate == pytest.approx(100.0)
    assert metrics.event_breakdown == {"add_to_cart": 1, "view": 3}
    assert metrics.order_status_breakdown == {"cancelled": 1, "completed": 1, "paid": 1, "processing": 1}


def test_daily_metrics_are_deterministic():
    events = [event("b"), event("a")]
    orders = [snapshot("o1", "paid", 1.0)]
    assert reduce_daily_metrics(events, orders, 0) == reduce_daily_metrics(list(reversed(events)), orders, 0)


def test_day_window_on_ordinary_day():
    start, end = day_window(date(2024, 3, 15), NY)

    assert start == datetime(2024, 3, 15, 4, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(hours=24)


def test_day_window_spring_forward_is_23_hours():
    start, end = day_window(date(2024, 3, 10), NY)

    assert start == datetime(2024, 3, 10, 5, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 3, 11, 4, 0, tzinfo=timezone.utc)


def test_day_window_fall_back_is_25_hours():
    start, end = day_window(date(2024, 11, 3), NY)

    assert end - start == timedelta(hours=25)


def test_previous_day_uses_report_zone():
    # 03:00 UTC on the 15th is still the evening of the 14th in New York
    assert previous_day(datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc), NY) == date(2024, 3, 13)
    assert previous_day(datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc), "UTC") == date(2024, 3, 14)


def test_period_start():
    assert period_start("today", FIXED_NOW) == datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert period_start("week", FIXED_NOW) == FIXED_NOW - timedelta(days=7)
    with pytest.raises(ValueError):
        period_start("decade", FIXED_NOW)


def test_monthly_aggregate_sums_only_its_month():
    reports = [report("2024-03-02"), report("2024-03-01", total_revenue=5.0), report("2024-02-29")]

    aggregate = reduce_monthly_aggregate("2024-03", reports, FIXED_NOW)

    assert aggregate.days_count == 2
    assert aggregate.days_included == ["2024-03-01", "2024-03-02"]
    assert aggregate.total_revenue == pytest.approx(25.0)
    assert aggregate.total_events == 20


def test_user_summary():
    summary = reduce_user_summary([event("view")], [snapshot("o1", "paid", 10.0), snapshot("o2", "pending", None)])

    assert summary.total_orders == 2
    assert summary.total_spent == pytest.approx(10.0)
    assert summary.avg_order_value == pytest.approx(5.0)
    assert summary.total_events == 1
    assert reduce_user_summary([], []).avg_order_value == 0
