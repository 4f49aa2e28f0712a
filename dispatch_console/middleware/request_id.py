from __future__ import annotations

import logging
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
tab_id_var: ContextVar[str] = ContextVar("tab_id", default="-")


def get_request_id() -> str:
    return request_id_var.get()


def get_tab_id_context() -> str:
    return tab_id_var.get()


class RequestContextLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.tab_id = get_tab_id_context()
        return True


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = (
            request.headers.get("X-Request-Id")
            or request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-Id")
        )
        if not request_id:
            request_id = uuid4().hex

        request_token = request_id_var.set(request_id)
        tab_token = tab_id_var.set(request.headers.get("X-Console-Tab") or "-")
        try:
            response = await call_next(request)
        finally:
            tab_id_var.reset(tab_token)
            request_id_var.reset(request_token)

        response.headers.setdefault("X-Request-Id", request_id)
        return response
