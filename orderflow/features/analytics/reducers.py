"""
Pure deterministic reducers for order analytics.

All reducers: (rows, window) -> immutable read model. Same input, same output;
no clock reads unless `now` is omitted.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from zoneinfo import ZoneInfo

from orderflow.models.analytics import (
    AnalyticsEvent,
    DailyMetrics,
    DailyReport,
    MonthlyAggregate,
    OrderSnapshot,
    UserAnalyticsSummary,
)
from orderflow.models.order import REVENUE_STATUSES

PERIODS = ("today", "week", "month", "year")

_REVENUE_VALUES = frozenset(s.value for s in REVENUE_STATUSES)


def day_window(day: date, tz_name: str) -> Tuple[datetime, datetime]:
    """
    [start, end) of a calendar day in `tz_name`, as aware UTC datetimes.

    DST days come out as 23 or 25 hours long.
    """
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def previous_day(now: datetime, tz_name: str) -> date:
    """Calendar day before `now`, as seen in `tz_name`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).date() - timedelta(days=1)


def period_start(period: str, now: datetime) -> datetime:
    """Start of a business-metrics period ending at `now` (UTC)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    if period == "year":
        return now - timedelta(days=365)
    raise ValueError(f"Unknown period: {period}")


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator * scale


def reduce_daily_metrics(
    events: Iterable[AnalyticsEvent],
    orders: Iterable[OrderSnapshot],
    new_users: int,
) -> DailyMetrics:
    """
    Reduce one window of events and orders.

    Completed means status completed or paid; only those count as revenue.
    Active users are distinct user ids on events (anonymous events excluded).
    """
    total_events = 0
    active: Set[str] = set()
    event_breakdown: Dict[str, int] = {}
    for event in events:
        total_events += 1
        if event.user_id:
            active.add(event.user_id)
        event_breakdown[event.event_name] = event_breakdown.get(event.event_name, 0) + 1

    total_orders = 0
    completed = 0
    revenue = 0.0
    status_breakdown: Dict[str, int] = {}
    for order in orders:
        total_orders += 1
        status_breakdown[order.status] = status_breakdown.get(order.status, 0) + 1
        if order.status in _REVENUE_VALUES:
            completed += 1
            revenue += order.total or 0.0

    return DailyMetrics(
        total_events=total_events,
        total_orders=total_orders,
        completed_orders=completed,
        new_users=new_users,
        active_users=len(active),
        total_revenue=revenue,
        average_order_value=_ratio(revenue, completed),
        conversion_rate=_ratio(completed, len(active), 100.0),
        event_breakdown=dict(sorted(event_breakdown.items())),
        order_status_breakdown=dict(sorted(status_breakdown.items())),
    )


def reduce_monthly_aggregate(
    month: str,
    reports: Sequence[DailyReport],
    now: Optional[datetime] = None,
) -> MonthlyAggregate:
    """
    Fold a month's daily reports into its aggregate.

    Recomputed from the full set every time, so re-running a day never
    double-counts. Reports outside `month` are ignored.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    in_month = sorted((r for r in reports if r.date.startswith(month + "-")), key=lambda r: r.date)
    return MonthlyAggregate(
        month=month,
        total_events=sum(r.total_events for r in in_month),
        total_orders=sum(r.total_orders for r in in_month),
        completed_orders=sum(r.completed_orders for r in in_month),
        total_revenue=sum(r.total_revenue for r in in_month),
        new_users=sum(r.new_users for r in in_month),
        days_count=len(in_month),
        days_included=[r.date for r in in_month],
        last_updated=now,
    )


def reduce_user_summary(events: Iterable[AnalyticsEvent], orders: Iterable[OrderSnapshot]) -> UserAnalyticsSummary:
    """Per-user totals over a window. Spend counts every order with a total."""
    order_list: List[OrderSnapshot] = list(orders)
    spent = sum(o.total or 0.0 for o in order_list)
    return UserAnalyticsSummary(
        total_orders=len(order_list),
        total_spent=spent,
        avg_order_value=_ratio(spent, len(order_list)),
        total_events=sum(1 for _ in events),
    )
