"""
Analytics read models.

DailyMetrics is the deterministic output of the daily reducer; DailyReport and
MonthlyAggregate are the persisted rollups built from it.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyticsEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: Optional[str] = None
    event_name: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    timestamp: datetime


class OrderSnapshot(BaseModel):
    """Order fields the reducers need."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: Optional[str] = None
    status: str
    total: Optional[float] = None
    created_at: datetime


class DailyMetrics(BaseModel):
    """Reduction of one day's events, orders and signups."""

    model_config = ConfigDict(frozen=True)

    total_events: int = Field(ge=0)
    total_orders: int = Field(ge=0)
    completed_orders: int = Field(ge=0, description="Orders with status completed or paid")
    new_users: int = Field(ge=0)
    active_users: int = Field(ge=0, description="Distinct user ids seen in events")
    total_revenue: float = Field(ge=0, description="Sum of completed-or-paid order totals")
    average_order_value: float = Field(ge=0)
    conversion_rate: float = Field(ge=0, description="completed / active users x 100")
    event_breakdown: Dict[str, int] = Field(default_factory=dict)
    order_status_breakdown: Dict[str, int] = Field(default_factory=dict)


class DailyReport(DailyMetrics):
    date: str = Field(description="YYYY-MM-DD in the report time zone")
    generated_at: datetime = Field(description="End of the report window, fixed across re-runs")


class MonthlyAggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str = Field(description="YYYY-MM")
    total_events: int = Field(ge=0)
    total_orders: int = Field(ge=0)
    completed_orders: int = Field(ge=0)
    total_revenue: float = Field(ge=0)
    new_users: int = Field(ge=0)
    days_count: int = Field(ge=0)
    days_included: List[str] = Field(default_factory=list)
    last_updated: datetime


class BusinessMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: Literal["today", "week", "month", "year"]
    total_users: int
    active_users: int
    total_orders: int
    total_revenue: float
    average_order_value: float
    conversion_rate: float


class UserAnalyticsSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_orders: int
    total_spent: float
    avg_order_value: float
    total_events: int
