"""
User provisioning.
- get_or_create_user(db, user_id): runs on first authentication
- get_user_role(db, user_id)
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from orderflow.core.database import Database, user_analytics, users, utc_now
from orderflow.core.logging import log_event


def _fetch(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    with db.session() as session:
        row = session.execute(
            select(users.c.id, users.c.email, users.c.display_name, users.c.role).where(users.c.id == user_id)
        ).first()
    return dict(row._mapping) if row else None


def get_user_role(db: Database, user_id: str) -> Optional[str]:
    user = _fetch(db, user_id)
    return user["role"] if user else None


def get_or_create_user(
    db: Database,
    user_id: str,
    *,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Return the user row, creating it with zeroed counters (and an empty
    analytics summary) the first time `user_id` is seen. Idempotent.
    """
    existing = _fetch(db, user_id)
    if existing:
        return existing

    now = now or utc_now()
    try:
        with db.session() as session:
            session.execute(
                insert(users).values(
                    id=user_id,
                    display_name=display_name or user_id,
                    email=email,
                    role="customer",
                    order_count=0,
                    total_spent=0.0,
                    completed_order_count=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            has_summary = session.execute(
                select(user_analytics.c.user_id).where(user_analytics.c.user_id == user_id)
            ).first()
            if not has_summary:
                session.execute(
                    insert(user_analytics).values(
                        user_id=user_id,
                        total_events=0,
                        event_counts={},
                        created_at=now,
                        updated_at=now,
                    )
                )
    except IntegrityError:
        # Another request provisioned the same user first
        return _fetch(db, user_id)

    log_event("info", "user.created", user_id=user_id)
    return _fetch(db, user_id)
