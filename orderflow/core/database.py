"""
Database configuration and connection management.

This module provides:
- The explicitly constructed `Database` handle (engine + session factory)
- Table definitions for every collection the service reads or writes
- UTC helpers shared by services that persist timestamps
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC (SQLite hands back naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Database:
    """
    Engine and session factory for one process.

    Built once by the app lifespan or a worker entry point and passed to the
    services that need it.

    Usage:
        db = Database("postgresql://...")
        with db.session() as session:
            session.execute(...)
    """

    def __init__(self, url: str, *, echo: bool = False):
        if not url:
            raise ValueError(
                "DATABASE_URL is not configured. "
                "Set DATABASE_URL in environment or .env file."
            )
        self.url = url
        self.engine: Engine = self._build_engine(url, echo)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @staticmethod
    def _build_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so in-memory databases survive across sessions
                return create_engine(
                    url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                    echo=echo,
                )
            return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=echo,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transactional session: commit on success, rollback on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create all tables defined in metadata (idempotent)."""
        metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Only use in tests or development."""
        metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


orders = Table(
    'orders',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('user_id', String(128), nullable=True, index=True),
    Column('items', JSON, nullable=False),
    Column('payment_method', String(64), nullable=True),
    Column('subtotal', Float, nullable=True),
    Column('tax', Float, nullable=True),
    Column('total', Float, nullable=True),
    Column('status', String(32), nullable=False, server_default='pending'),
    Column('failure_reason', Text, nullable=True),
    Column('payment_intent_id', String(255), nullable=True, index=True),
    Column('inventory_reserved', Boolean, nullable=False, default=False),
    Column('status_history', JSON, nullable=False, default=dict),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('processing_started_at', DateTime(timezone=True), nullable=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('paid_at', DateTime(timezone=True), nullable=True),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('updated_at', DateTime(timezone=True), nullable=True),
    Index('idx_orders_created_at', 'created_at'),
    Index('idx_orders_user_created', 'user_id', 'created_at'),
)

users = Table(
    'users',
    metadata,
    Column('id', String(128), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('email', String(255), nullable=True),
    Column('role', String(32), nullable=False, server_default='customer'),
    Column('fcm_token', Text, nullable=True),
    Column('order_count', Integer, nullable=False, default=0),
    Column('total_spent', Float, nullable=False, default=0.0),
    Column('completed_order_count', Integer, nullable=False, default=0),
    Column('last_order_at', DateTime(timezone=True), nullable=True),
    Column('subscription_id', String(255), nullable=True),
    Column('subscription_status', String(32), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=True),
    Index('idx_users_created_at', 'created_at'),
)

inventory = Table(
    'inventory',
    metadata,
    Column('product_id', String(128), primary_key=True),
    Column('stock', Integer, nullable=False, default=0),
    Column('updated_at', DateTime(timezone=True), nullable=True),
)

analytics_events = Table(
    'analytics_events',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('user_id', String(128), nullable=True, index=True),
    Column('event_name', String(100), nullable=False, index=True),
    Column('properties', JSON, nullable=False, default=dict),
    Column('session_id', String(128), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('ip_address', String(64), nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Index('idx_analytics_events_timestamp', 'timestamp'),
    Index('idx_analytics_events_user_timestamp', 'user_id', 'timestamp'),
)

page_views = Table(
    'page_views',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('user_id', String(128), nullable=True),
    Column('page', Text, nullable=False),
    Column('referrer', Text, nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('ip_address', String(64), nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Index('idx_page_views_timestamp', 'timestamp'),
)

user_analytics = Table(
    'user_analytics',
    metadata,
    Column('user_id', String(128), primary_key=True),
    Column('total_events', Integer, nullable=False, default=0),
    Column('event_counts', JSON, nullable=False, default=dict),
    Column('last_event_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=True),
)

daily_reports = Table(
    'daily_reports',
    metadata,
    Column('date', String(10), primary_key=True),  # YYYY-MM-DD in the report time zone
    Column('total_events', Integer, nullable=False),
    Column('total_orders', Integer, nullable=False),
    Column('completed_orders', Integer, nullable=False),
    Column('new_users', Integer, nullable=False),
    Column('active_users', Integer, nullable=False),
    Column('total_revenue', Float, nullable=False),
    Column('average_order_value', Float, nullable=False),
    Column('conversion_rate', Float, nullable=False),
    Column('event_breakdown', JSON, nullable=False, default=dict),
    Column('order_status_breakdown', JSON, nullable=False, default=dict),
    Column('generated_at', DateTime(timezone=True), nullable=False),
)

monthly_analytics = Table(
    'monthly_analytics',
    metadata,
    Column('month', String(7), primary_key=True),  # YYYY-MM
    Column('total_events', Integer, nullable=False),
    Column('total_orders', Integer, nullable=False),
    Column('completed_orders', Integer, nullable=False),
    Column('total_revenue', Float, nullable=False),
    Column('new_users', Integer, nullable=False),
    Column('days_count', Integer, nullable=False),
    Column('days_included', JSON, nullable=False, default=list),
    Column('last_updated', DateTime(timezone=True), nullable=False),
)

backup_logs = Table(
    'backup_logs',
    metadata,
    Column('id', String(128), primary_key=True),
    Column('backup_type', String(32), nullable=False),
    Column('status', String(16), nullable=False),
    Column('collections', JSON, nullable=False, default=list),
    Column('error', Text, nullable=True),
    Column('initiated_by', String(128), nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Index('idx_backup_logs_timestamp', 'timestamp'),
)

cleanup_logs = Table(
    'cleanup_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('cleanup_type', String(32), nullable=False),
    Column('status', String(16), nullable=False),
    Column('results', JSON, nullable=False, default=list),
    Column('error', Text, nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(255), primary_key=True),  # processor subscription id
    Column('user_id', String(128), nullable=True, index=True),
    Column('customer_id', String(255), nullable=True),
    Column('status', String(32), nullable=False),
    Column('price_id', String(255), nullable=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('last_event_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=True),
)

payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('event_id', String(255), nullable=False, unique=True, index=True),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
)

payment_logs = Table(
    'payment_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('log_type', String(32), nullable=False),
    Column('order_id', String(64), nullable=False, index=True),
    Column('payment_intent_id', String(255), nullable=False),
    Column('amount', Integer, nullable=True),
    Column('currency', String(8), nullable=True),
    Column('error', Text, nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
)

invoice_logs = Table(
    'invoice_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('log_type', String(32), nullable=False),
    Column('invoice_id', String(255), nullable=False),
    Column('subscription_id', String(255), nullable=True),
    Column('amount', Integer, nullable=True),
    Column('currency', String(8), nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
)

notification_logs = Table(
    'notification_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('channel', String(16), nullable=False),
    Column('recipient', Text, nullable=True),
    Column('title', Text, nullable=False),
    Column('status', String(16), nullable=False),  # sent | failed | skipped
    Column('error', Text, nullable=True),
    Column('order_id', String(64), nullable=True, index=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Index('idx_notification_logs_timestamp', 'timestamp'),
)


# Collections eligible for JSON backups, by name
BACKUP_TABLES: Dict[str, Table] = {
    table.name: table
    for table in (orders, users, inventory, analytics_events, page_views, subscriptions, daily_reports, monthly_analytics)
}
