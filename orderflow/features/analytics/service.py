"""
Analytics aggregation and queries.

generate_daily_report is the scheduled rollup: scan one report-zone day,
reduce, overwrite daily_reports[date], then recompute the month from its
daily reports. Both writes are upserts keyed by period, so a retried run
converges to the same rows.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import distinct, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from orderflow.core.auth import Caller
from orderflow.core.config import Settings, settings as default_settings
from orderflow.core.database import (
    Database,
    analytics_events,
    as_utc,
    daily_reports,
    monthly_analytics,
    orders,
    users,
    utc_now,
)
from orderflow.core.errors import InvalidArgumentError, PermissionDeniedError, UnauthenticatedError
from orderflow.features.analytics.reducers import (
    PERIODS,
    day_window,
    period_start,
    previous_day,
    reduce_daily_metrics,
    reduce_monthly_aggregate,
    reduce_user_summary,
)
from orderflow.models.analytics import (
    AnalyticsEvent,
    BusinessMetrics,
    DailyReport,
    MonthlyAggregate,
    OrderSnapshot,
)
from orderflow.models.order import REVENUE_STATUSES

logger = logging.getLogger("orderflow.analytics")

USER_EVENTS_LIMIT = 1000
ADMIN_PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}


def _require_admin(caller: Optional[Caller]) -> Caller:
    if caller is None:
        raise UnauthenticatedError("User must be authenticated")
    if not caller.is_admin:
        raise PermissionDeniedError("Admin access required")
    return caller


def _order_snapshots(session: Session, start: datetime, end: datetime, user_id: Optional[str] = None) -> List[OrderSnapshot]:
    stmt = select(orders.c.id, orders.c.user_id, orders.c.status, orders.c.total, orders.c.created_at).where(
        orders.c.created_at >= start, orders.c.created_at < end
    )
    if user_id is not None:
        stmt = stmt.where(orders.c.user_id == user_id)
    rows = session.execute(stmt.order_by(orders.c.created_at, orders.c.id)).all()
    return [OrderSnapshot.model_validate(dict(r._mapping)) for r in rows]


def _events(session: Session, start: datetime, end: datetime, user_id: Optional[str] = None, limit: Optional[int] = None) -> List[AnalyticsEvent]:
    stmt = select(analytics_events).where(analytics_events.c.timestamp >= start, analytics_events.c.timestamp < end)
    if user_id is not None:
        stmt = stmt.where(analytics_events.c.user_id == user_id)
    if limit is not None:
        stmt = stmt.order_by(analytics_events.c.timestamp.desc()).limit(limit)
    else:
        stmt = stmt.order_by(analytics_events.c.timestamp, analytics_events.c.id)
    return [AnalyticsEvent.model_validate(dict(r._mapping)) for r in session.execute(stmt).all()]


def _report_from_row(row) -> DailyReport:
    return DailyReport.model_validate(dict(row._mapping))


def _upsert(session: Session, table, key_column, key: str, values: Dict[str, Any]) -> None:
    """Insert or overwrite the row keyed by `key` in a single statement where the dialect allows."""
    dialect = session.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        stmt = (sqlite_insert if dialect == "sqlite" else pg_insert)(table).values(**{key_column.name: key}, **values)
        session.execute(stmt.on_conflict_do_update(index_elements=[key_column], set_=values))
        return

    exists = session.execute(select(key_column).where(key_column == key)).first()
    if exists:
        session.execute(update(table).where(key_column == key).values(**values))
    else:
        session.execute(insert(table).values(**{key_column.name: key}, **values))


def refresh_monthly_aggregate(session: Session, month: str, now: datetime) -> MonthlyAggregate:
    """Recompute monthly_analytics[month] from that month's daily reports."""
    rows = session.execute(
        select(daily_reports).where(daily_reports.c.date.like(f"{month}-%")).order_by(daily_reports.c.date)
    ).all()
    aggregate = reduce_monthly_aggregate(month, [_report_from_row(r) for r in rows], now)
    _upsert(
        session,
        monthly_analytics,
        monthly_analytics.c.month,
        month,
        aggregate.model_dump(exclude={"month"}),
    )
    return aggregate


def generate_daily_report(
    db: Database,
    cfg: Optional[Settings] = None,
    *,
    day: Optional[date] = None,
    now: Optional[datetime] = None,
) -> DailyReport:
    """
    Build (or rebuild) the report for `day`, defaulting to yesterday in the
    report time zone, and refresh its month.
    """
    cfg = cfg or default_settings
    now = now or utc_now()
    day = day or previous_day(now, cfg.REPORT_TIMEZONE)
    start, end = day_window(day, cfg.REPORT_TIMEZONE)

    with db.session() as session:
        events = _events(session, start, end)
        order_rows = _order_snapshots(session, start, end)
        new_users = session.execute(
            select(func.count()).select_from(users).where(users.c.created_at >= start, users.c.created_at < end)
        ).scalar_one()

        metrics = reduce_daily_metrics(events, order_rows, new_users)
        report = DailyReport(date=day.isoformat(), generated_at=end, **metrics.model_dump())
        _upsert(session, daily_reports, daily_reports.c.date, report.date, report.model_dump(exclude={"date"}))

        aggregate = refresh_monthly_aggregate(session, report.date[:7], end)

    logger.info(
        "analytics.daily_report_generated",
        extra={
            "date": report.date,
            "total_events": report.total_events,
            "total_orders": report.total_orders,
            "month_days": aggregate.days_count,
        },
    )
    return report


def calculate_business_metrics(
    db: Database,
    caller: Optional[Caller],
    period: str = "today",
    *,
    now: Optional[datetime] = None,
) -> BusinessMetrics:
    _require_admin(caller)
    if period not in PERIODS:
        raise InvalidArgumentError(f"Invalid period: {period}. Expected one of {', '.join(PERIODS)}")

    now = now or utc_now()
    start = period_start(period, now)
    revenue_values = [s.value for s in REVENUE_STATUSES]

    with db.session() as session:
        total_users = session.execute(select(func.count()).select_from(users)).scalar_one()
        active_users = session.execute(
            select(func.count(distinct(analytics_events.c.user_id))).where(
                analytics_events.c.timestamp >= start,
                analytics_events.c.timestamp <= now,
                analytics_events.c.user_id.is_not(None),
            )
        ).scalar_one()
        total_orders = session.execute(
            select(func.count()).select_from(orders).where(orders.c.created_at >= start, orders.c.created_at <= now)
        ).scalar_one()
        completed, revenue = session.execute(
            select(func.count(), func.coalesce(func.sum(orders.c.total), 0.0)).select_from(orders).where(
                orders.c.created_at >= start,
                orders.c.created_at <= now,
                orders.c.status.in_(revenue_values),
            )
        ).one()

    revenue = float(revenue or 0.0)
    return BusinessMetrics(
        period=period,
        total_users=total_users,
        active_users=active_users,
        total_orders=total_orders,
        total_revenue=revenue,
        average_order_value=revenue / completed if completed else 0.0,
        conversion_rate=completed / active_users * 100 if active_users else 0.0,
    )


def get_user_analytics(
    db: Database,
    caller: Optional[Caller],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Caller's own events (newest first, capped) and orders in a window; default last 30 days."""
    if caller is None:
        raise UnauthenticatedError("User must be authenticated")

    now = now or utc_now()
    end = as_utc(end) or now
    start = as_utc(start) or end - timedelta(days=30)
    if start > end:
        raise InvalidArgumentError("start must not be after end")

    # Inclusive end, matching how clients pass "up to now"
    upper = end + timedelta(microseconds=1)
    with db.session() as session:
        events = _events(session, start, upper, user_id=caller.uid, limit=USER_EVENTS_LIMIT)
        order_rows = _order_snapshots(session, start, upper, user_id=caller.uid)

    return {
        "success": True,
        "events": events,
        "orders": order_rows,
        "metrics": reduce_user_summary(events, order_rows),
    }


def get_admin_analytics(
    db: Database,
    caller: Optional[Caller],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    period: str = "30d",
    *,
    cfg: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Daily reports in range summed, plus all-time user and order counts."""
    _require_admin(caller)
    cfg = cfg or default_settings
    now = now or utc_now()

    span = timedelta(days=ADMIN_PERIOD_DAYS.get(period, 30))
    end = as_utc(end) or now
    start = as_utc(start) or end - span
    if start > end:
        raise InvalidArgumentError("start must not be after end")

    tz = ZoneInfo(cfg.REPORT_TIMEZONE)
    first = as_utc(start).astimezone(tz).date().isoformat()
    last = as_utc(end).astimezone(tz).date().isoformat()

    with db.session() as session:
        rows = session.execute(
            select(daily_reports)
            .where(daily_reports.c.date >= first, daily_reports.c.date <= last)
            .order_by(daily_reports.c.date)
        ).all()
        total_users = session.execute(select(func.count()).select_from(users)).scalar_one()
        total_orders_all_time = session.execute(select(func.count()).select_from(orders)).scalar_one()

    reports = [_report_from_row(r) for r in rows]
    totals = {
        "total_events": sum(r.total_events for r in reports),
        "total_orders": sum(r.total_orders for r in reports),
        "completed_orders": sum(r.completed_orders for r in reports),
        "total_revenue": sum(r.total_revenue for r in reports),
        "new_users": sum(r.new_users for r in reports),
    }
    completed = totals["completed_orders"]
    return {
        "success": True,
        "reports": reports,
        "summary": {
            **totals,
            "avg_order_value": totals["total_revenue"] / completed if completed else 0.0,
            "total_users": total_users,
            "total_orders_all_time": total_orders_all_time,
        },
    }
