"""FastAPI middleware that captures unhandled exceptions and logs them to the DB.

Every 5xx response is recorded in the error_logs table.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from prepaidly.models.error_log import ErrorSeverity
from prepaidly.services.error_logger import log_error_standalone

logger = logging.getLogger("prepaidly.middleware")


def _user_id_from_request(request: Request) -> Optional[str]:
    """Best-effort subject lookup from the bearer token."""
    from prepaidly.auth_utils import decode_token

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = decode_token(auth_header[7:])
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub is not None else None


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Catches unhandled exceptions, returns 500, and persists the error."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        user_id = _user_id_from_request(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = round((time.time() - start) * 1000, 2)
            await log_error_standalone(
                exc,
                severity=ErrorSeverity.ERROR,
                request_method=request.method,
                request_path=str(request.url.path),
                status_code=500,
                response_time_ms=elapsed_ms,
                user_id=user_id,
            )
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error"},
            )

        if response.status_code >= 500:
            elapsed_ms = round((time.time() - start) * 1000, 2)
            await log_error_standalone(
                Exception(f"HTTP {response.status_code} on {request.method} {request.url.path}"),
                severity=ErrorSeverity.ERROR,
                request_method=request.method,
                request_path=str(request.url.path),
                status_code=response.status_code,
                response_time_ms=elapsed_ms,
                user_id=user_id,
            )
        return response
