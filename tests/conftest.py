from __future__ import annotations

import io
import json
from collections.abc import AsyncIterator, Callable, Iterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from containership.config import LoggingConfig, Settings, get_settings
from containership.main import create_app
from containership.observability.logging import ServiceLogger


_ENV_VARS = (
    "PORT",
    "HOST",
    "NODE_ENV",
    "APP_ENV",
    "SERVICE_NAME",
    "SERVICE_VERSION",
    "LOG_LEVEL",
    "LOG_TO_FILE",
    "LOG_DIR",
    "HOSTNAME",
)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def read_logs(log_stream: io.StringIO) -> Callable[[], list[dict]]:
    def _read() -> list[dict]:
        return [json.loads(line) for line in log_stream.getvalue().splitlines() if line.strip()]

    return _read


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    monkeypatch.setenv("NODE_ENV", "production")
    monkeypatch.setenv("SERVICE_NAME", "containership-test")
    monkeypatch.setenv("SERVICE_VERSION", "9.9.9")
    monkeypatch.setenv("HOSTNAME", "test-host")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    return get_settings()


@pytest.fixture
def service_logger(settings: Settings, log_stream: io.StringIO) -> Iterator[ServiceLogger]:
    logger = ServiceLogger(LoggingConfig.from_settings(settings), stream=log_stream)
    yield logger
    logger.close()


@pytest.fixture
def app(settings: Settings, service_logger: ServiceLogger) -> FastAPI:
    application = create_app(settings, service_logger)

    @application.get("/boom")
    async def boom() -> dict:
        raise RuntimeError("kaboom: secret internals")

    return application


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
