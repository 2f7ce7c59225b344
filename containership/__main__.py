from __future__ import annotations

import uvicorn

from containership.config import LoggingConfig, get_settings
from containership.main import create_app
from containership.observability.logging import ServiceLogger


def main() -> None:
    settings = get_settings()
    logger = ServiceLogger(LoggingConfig.from_settings(settings))
    # Keep uvicorn's own loggers consistent with ours; its access log is
    # replaced by the service's request records.
    logger.capture("uvicorn", "uvicorn.error")
    app = create_app(settings, logger)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None, access_log=False)


if __name__ == "__main__":
    main()
