"""Request-scoped accessors for the objects create_app puts on app.state."""
from typing import Optional

from fastapi import Request

from orderflow.core.config import Settings
from orderflow.core.database import Database
from orderflow.features.analytics.tracking import ClientInfo
from orderflow.features.backups.storage import BlobStore
from orderflow.features.notifications.dispatcher import Dispatcher


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> Optional[Dispatcher]:
    return getattr(request.app.state, "dispatcher", None)


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return ClientInfo(user_agent=request.headers.get("user-agent"), ip_address=ip)
