# src/tokenlock/api/structured_logging.py
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from tokenlock.api.config import log_requests_enabled
from tokenlock.runtime.event_log import configure_structured_logging, log_event

Json = Dict[str, Any]

__all__ = ["RequestLogMiddleware", "configure_structured_logging", "log_event"]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Structured request logging middleware.

    TOKENLOCK_LOG_REQUESTS=0 disables it (default on).
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = log_requests_enabled()
        self._logger = logging.getLogger("tokenlock.http")

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = f"{type(e).__name__}: {e}"
            raise
        finally:
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                client=str(request.client.host) if request.client else "",
                error=err,
            )
