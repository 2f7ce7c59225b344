import uuid

from starlette.datastructures import Headers

from containership.observability.context import RequestContext
from containership.observability.middleware import resolve_request_id


def test_resolve_request_id_adopts_header_case_insensitively() -> None:
    headers = Headers(raw=[(b"x-request-id", b"abc-123")])
    assert resolve_request_id(headers) == "abc-123"
    assert resolve_request_id(Headers(headers={"X-Request-ID": "XYZ"})) == "XYZ"


def test_resolve_request_id_generates_for_missing_or_empty() -> None:
    for headers in (Headers(), Headers(headers={"x-request-id": ""})):
        value = resolve_request_id(headers)
        assert uuid.UUID(value).version == 4


def test_context_completion_fires_exactly_once() -> None:
    context = RequestContext(request_id="r", method="GET", path="/")
    seen: list[tuple[str, int | None]] = []
    context.on_complete(lambda ctx: seen.append((ctx.request_id, ctx.status_code)))

    assert context.finish(201) is True
    assert context.finish(500) is False

    assert seen == [("r", 201)]
    assert context.status_code == 201
    assert context.duration_ms is not None and context.duration_ms >= 0
    assert context.finished is True


def test_resolve_request_id_adopts_any_non_empty_value_verbatim() -> None:
    headers = Headers(raw=[(b"x-request-id", b"  ")])
    assert resolve_request_id(headers) == "  "
