"""
Client-facing tracking writes.

Events are append-only; only the retention sweep removes them. Each tracked
event also bumps the caller's user_analytics summary in the same transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import insert, select, update

from orderflow.core.auth import Caller
from orderflow.core.database import Database, analytics_events, page_views, user_analytics, utc_now
from orderflow.core.errors import InvalidArgumentError, UnauthenticatedError

logger = logging.getLogger("orderflow.analytics")


@dataclass(frozen=True)
class ClientInfo:
    """Request metadata stored alongside tracked rows."""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


def track_event(
    db: Database,
    caller: Optional[Caller],
    event_name: Optional[str],
    properties: Optional[Dict[str, Any]] = None,
    *,
    session_id: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if caller is None:
        raise UnauthenticatedError("User must be authenticated")
    if not event_name:
        raise InvalidArgumentError("Event name is required")

    client = client or ClientInfo()
    now = now or utc_now()
    event_id = uuid4().hex

    with db.session() as session:
        session.execute(
            insert(analytics_events).values(
                id=event_id,
                user_id=caller.uid,
                event_name=event_name,
                properties=dict(properties or {}),
                session_id=session_id,
                user_agent=client.user_agent,
                ip_address=client.ip_address,
                timestamp=now,
            )
        )

        summary = session.execute(
            select(user_analytics.c.event_counts)
            .where(user_analytics.c.user_id == caller.uid)
            .with_for_update()
        ).first()
        if summary is None:
            session.execute(
                insert(user_analytics).values(
                    user_id=caller.uid,
                    total_events=1,
                    event_counts={event_name: 1},
                    last_event_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )
        else:
            counts = dict(summary.event_counts or {})
            counts[event_name] = counts.get(event_name, 0) + 1
            session.execute(
                update(user_analytics)
                .where(user_analytics.c.user_id == caller.uid)
                .values(
                    total_events=user_analytics.c.total_events + 1,
                    event_counts=counts,
                    last_event_at=now,
                    updated_at=now,
                )
            )

    logger.info("analytics.event_tracked", extra={"user_id": caller.uid, "event_name": event_name})
    return {"success": True, "event_id": event_id}


def track_page_view(
    db: Database,
    caller: Optional[Caller],
    page: Optional[str],
    referrer: Optional[str] = None,
    *,
    client: Optional[ClientInfo] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Anonymous callers allowed; user_id is stored as null."""
    if not page:
        raise InvalidArgumentError("Page is required")

    client = client or ClientInfo()
    with db.session() as session:
        session.execute(
            insert(page_views).values(
                id=uuid4().hex,
                user_id=caller.uid if caller else None,
                page=page,
                referrer=referrer,
                user_agent=client.user_agent,
                ip_address=client.ip_address,
                timestamp=now or utc_now(),
            )
        )

    logger.info("analytics.page_view_tracked", extra={"page": page})
    return {"success": True}
