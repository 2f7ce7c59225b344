from __future__ import annotations

import uuid
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders

from containership.observability.context import STATE_KEY, RequestContext
from containership.observability.logging import REDACTED, ServiceLogger


REQUEST_ID_HEADER = "x-request-id"


def resolve_request_id(headers: Headers) -> str:
    """Adopt a non-empty inbound x-request-id verbatim, otherwise mint a uuid4."""

    supplied = headers.get(REQUEST_ID_HEADER)
    if supplied:
        return supplied
    return str(uuid.uuid4())


class RequestIdMiddleware:
    """Assigns the correlation id and finalizes the request context.

    Must sit outside every other service middleware: it stamps the response
    header on ``http.response.start`` and fires the context's completion
    callbacks on the final body message, so every response path (routes,
    404s, error envelopes) is covered by a single hook.
    """

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = resolve_request_id(headers)
        client = scope.get("client")
        context = RequestContext(
            request_id=request_id,
            method=scope.get("method", ""),
            path=scope.get("path", ""),
            query=scope.get("query_string", b"").decode("latin-1"),
            client_ip=client[0] if client else None,
            user_agent=headers.get("user-agent"),
        )
        scope.setdefault("state", {})[STATE_KEY] = context

        structlog.contextvars.bind_contextvars(request_id=request_id)

        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                response_headers = MutableHeaders(scope=message)
                response_headers[REQUEST_ID_HEADER] = request_id
            elif message.get("type") == "http.response.body" and not message.get("more_body", False):
                context.finish(status_code)

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # The app gave up before finalizing its response.
            if not context.finished:
                context.finish(status_code)
            structlog.contextvars.clear_contextvars()


class AccessLogMiddleware:
    """Logs request arrival and, through the context's completion hook, its outcome."""

    def __init__(self, app: Callable[..., Any], logger: ServiceLogger) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        context: RequestContext | None = scope.get("state", {}).get(STATE_KEY)
        if context is None:
            raise RuntimeError("AccessLogMiddleware requires RequestIdMiddleware to run first")

        headers = Headers(scope=scope)
        extra: dict[str, Any] = {}
        if "authorization" in headers:
            extra["authorization"] = REDACTED
        self.logger.info(
            "Incoming request",
            request_id=context.request_id,
            method=context.method,
            path=context.path,
            query=context.query or None,
            client_ip=context.client_ip,
            user_agent=context.user_agent,
            content_type=headers.get("content-type"),
            **extra,
        )
        context.on_complete(self.logger.log_request)

        await self.app(scope, receive, send)
