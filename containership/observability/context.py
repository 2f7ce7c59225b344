from __future__ import annotations

from dataclasses import dataclass, field
from time import perf_counter
from typing import Callable

from starlette.requests import Request


STATE_KEY = "request_context"

CompletionCallback = Callable[["RequestContext"], None]


@dataclass
class RequestContext:
    """Per-request state, alive from arrival until the response is finalized."""

    request_id: str
    method: str
    path: str
    query: str = ""
    client_ip: str | None = None
    user_agent: str | None = None
    started_at: float = field(default_factory=perf_counter)
    status_code: int | None = None
    duration_ms: float | None = None
    _callbacks: list[CompletionCallback] = field(default_factory=list, repr=False)
    _finished: bool = field(default=False, repr=False)

    @property
    def finished(self) -> bool:
        return self._finished

    def on_complete(self, callback: CompletionCallback) -> None:
        self._callbacks.append(callback)

    def finish(self, status_code: int) -> bool:
        """Record the final status and run completion callbacks.

        Only the first call has any effect; returns False for later calls.
        """

        if self._finished:
            return False
        self._finished = True
        self.status_code = status_code
        self.duration_ms = (perf_counter() - self.started_at) * 1000.0
        for callback in self._callbacks:
            callback(self)
        return True


def get_request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, STATE_KEY, None)


def get_request_id(request: Request) -> str | None:
    context = get_request_context(request)
    return context.request_id if context is not None else None
