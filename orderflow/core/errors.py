"""Error taxonomy and FastAPI handlers.

Callable endpoints surface a small fixed set of reason codes so clients can
branch on them: unauthenticated, permission-denied, invalid-argument,
not-found, internal.
"""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from orderflow.core.logging import get_request_id


class AppError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class UnauthenticatedError(AppError):
    code = "unauthenticated"
    status_code = 401


class PermissionDeniedError(AppError, builtins.PermissionError):
    code = "permission-denied"
    status_code = 403


class InvalidArgumentError(AppError, ValueError):
    code = "invalid-argument"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not-found"
    status_code = 404


class InternalError(AppError):
    code = "internal"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


def _respond(status_code: int, code: str, message: str, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=_error_payload(code, message, rid))
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("orderflow")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, exc.code, exc.message, rid)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    message = "Invalid request payload"
    if fields:
        message = f"{message}: {', '.join(f for f in fields if f) or 'body'}"
    logging.getLogger("orderflow").warning(
        "request.invalid",
        extra={"request_id": rid, "error_code": InvalidArgumentError.code, "fields": fields},
    )
    return _respond(400, InvalidArgumentError.code, message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    codes = {401: "unauthenticated", 403: "permission-denied", 404: "not-found"}
    code = codes.get(exc.status_code, "invalid-argument" if exc.status_code < 500 else "internal")
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    logging.getLogger("orderflow").warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, code, message, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("orderflow")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal"})
    return _respond(500, "internal", "Unexpected error", rid)
