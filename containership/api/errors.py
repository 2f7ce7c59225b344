from __future__ import annotations

from http import HTTPStatus
from typing import Any, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from containership.models.schemas import ErrorResponse
from containership.observability.context import STATE_KEY, get_request_id
from containership.observability.logging import ServiceLogger


def error_response(
    status_code: int,
    error: str,
    request_id: str | None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, request_id=request_id or "")
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True), headers=headers)


class ErrorEnvelopeMiddleware:
    """Turns exceptions escaping the routes into the JSON 500 envelope.

    Installed inside the tracing middlewares so the envelope still gets the
    x-request-id header and a completion record.
    """

    def __init__(self, app: Callable[..., Any], logger: ServiceLogger) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            context = scope.get("state", {}).get(STATE_KEY)
            request_id = context.request_id if context is not None else None
            self.logger.log_error(
                "Unhandled error",
                exc,
                request_id=request_id,
                path=scope.get("path"),
                method=scope.get("method"),
            )
            if response_started:
                raise
            response = error_response(500, "Internal Server Error", request_id)
            await response(scope, receive, send)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger: ServiceLogger = request.app.state.logger
    request_id = get_request_id(request)

    if exc.status_code == 404:
        logger.warning("Route not found", request_id=request_id, method=request.method, path=request.url.path)
        error = "Not Found"
    else:
        error = exc.detail if isinstance(exc.detail, str) else HTTPStatus(exc.status_code).phrase
        logger.warning(
            "HTTP error",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=exc.status_code,
        )

    return error_response(exc.status_code, error, request_id, headers=getattr(exc, "headers", None))
