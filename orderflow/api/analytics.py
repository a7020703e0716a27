"""
Analytics API routes.

- POST /api/analytics/track-event: Authenticated event tracking
- POST /api/analytics/track-page-view: Page views (anonymous allowed)
- GET  /api/analytics/user: Caller's own events, orders and totals
- GET  /api/analytics/admin: Daily reports in range, summed (admin)
- GET  /api/analytics/business-metrics: Live period metrics (admin)
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from orderflow.api.deps import get_client_info, get_db, get_settings
from orderflow.core.auth import Caller, get_optional_caller
from orderflow.core.config import Settings
from orderflow.core.database import Database
from orderflow.features.analytics.service import (
    calculate_business_metrics,
    get_admin_analytics,
    get_user_analytics,
)
from orderflow.features.analytics.tracking import ClientInfo, track_event, track_page_view

router = APIRouter(prefix="/analytics", tags=["analytics"])


class TrackEventRequest(BaseModel):
    event_name: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None


class TrackPageViewRequest(BaseModel):
    page: Optional[str] = None
    referrer: Optional[str] = None


@router.post("/track-event")
def track_event_route(
    body: TrackEventRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return track_event(
        db,
        caller,
        body.event_name,
        body.properties,
        session_id=body.session_id,
        client=client,
    )


@router.post("/track-page-view")
def track_page_view_route(
    body: TrackPageViewRequest,
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
):
    return track_page_view(db, caller, body.page, body.referrer, client=client)


@router.get("/user")
def user_analytics(
    start: Optional[datetime] = Query(None, description="ISO timestamp; defaults to 30 days ago"),
    end: Optional[datetime] = Query(None, description="ISO timestamp; defaults to now"),
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
):
    result = get_user_analytics(db, caller, start, end)
    return {
        "success": True,
        "events": [e.model_dump(mode="json") for e in result["events"]],
        "orders": [o.model_dump(mode="json") for o in result["orders"]],
        "metrics": result["metrics"].model_dump(),
    }


@router.get("/admin")
def admin_analytics(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    period: str = Query("30d", description="7d | 30d | 90d, used when start/end are absent"),
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    result = get_admin_analytics(db, caller, start, end, period, cfg=cfg)
    return {
        "success": True,
        "reports": [r.model_dump(mode="json") for r in result["reports"]],
        "summary": result["summary"],
    }


@router.get("/business-metrics")
def business_metrics(
    period: str = Query("today"),
    caller: Optional[Caller] = Depends(get_optional_caller),
    db: Database = Depends(get_db),
):
    metrics = calculate_business_metrics(db, caller, period)
    return {"success": True, "metrics": metrics.model_dump()}
