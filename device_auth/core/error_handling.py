"""
Exception handlers — map domain errors onto JSON responses.

Body shape is always ``{"detail": <message>, "code": <code>}``.  The
internal ``reason`` on a ``SessionAuthError`` is logged, never sent.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from device_auth.core.errors import SessionAuthError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for the auth error taxonomy and storage failures."""

    @app.exception_handler(SessionAuthError)
    async def handle_session_auth_error(request: Request, exc: SessionAuthError):
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "%s %s -> %d %s (%s)",
            request.method, request.url.path, exc.status_code, exc.code, exc.reason or exc.message,
        )
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return _error_response(500, "Internal server error", "SERVER_ERROR")
