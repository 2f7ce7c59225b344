from __future__ import annotations

import logging
import os
import sys
import threading
import traceback
from collections.abc import MutableMapping
from logging.handlers import RotatingFileHandler
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from containership.config import LoggingConfig
from containership.observability.context import RequestContext


REDACTED = "[REDACTED]"

SENSITIVE_KEYS: frozenset[str] = frozenset({
    "authorization",
    "proxy_authorization",
    "cookie",
    "set_cookie",
    "password",
    "secret",
    "token",
    "api_key",
    "access_token",
    "refresh_token",
})

# Leading keys of every shipped line; anything else follows in emission order.
SHIPPER_FIELDS = ("@timestamp", "level", "message", "service", "version", "environment")

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_ALIASES = {"warning": "warn", "critical": "error", "exception": "error"}


class DefaultFields:
    """Merge service metadata into every record; fields given by the caller win."""

    def __init__(self, config: LoggingConfig) -> None:
        self._fields = {
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "hostname": config.hostname,
        }

    def __call__(self, _logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in self._fields.items():
            event_dict.setdefault(key, value)
        event_dict.setdefault("pid", os.getpid())
        return event_dict


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _redact(dict(value))
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(item) for item in value)
    return value


def _redact(data: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in data.items():
        if isinstance(key, str) and key.lower().replace("-", "_") in SENSITIVE_KEYS:
            if value is not None:
                data[key] = REDACTED
        elif isinstance(value, (dict, list, tuple)):
            data[key] = _redact_value(value)
    return data


def redact_sensitive_fields(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    return _redact(event_dict)


def normalize_level(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    level = event_dict.get("level")
    if level in _LEVEL_ALIASES:
        event_dict["level"] = _LEVEL_ALIASES[level]
    return event_dict


def order_shipper_fields(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["message"] = event_dict.pop("event", "")
    ordered = {key: event_dict.pop(key, None) for key in SHIPPER_FIELDS}
    ordered.update(event_dict)
    return ordered


def prefix_request_id(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    request_id = event_dict.pop("request_id", None)
    if request_id:
        event_dict["event"] = f"[{str(request_id)[:8]}] {event_dict.get('event', '')}"
    return event_dict


def format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def _detached_logger(name: str, level: int, handlers: list[logging.Handler]) -> logging.Logger:
    # Not registered with logging.getLogger(): each ServiceLogger owns its sinks.
    logger = logging.Logger(name, level)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False
    return logger


class ServiceLogger:
    """Process-wide structured logger, built once at startup and injected where needed.

    Console output is a colourised dev renderer in development and single-line
    JSON everywhere else. In production with file logging enabled, records are
    also appended to rotating ``error.log`` / ``combined.log`` sinks.
    """

    def __init__(self, config: LoggingConfig, stream: TextIO | None = None) -> None:
        self.config = config
        self._stream = stream if stream is not None else sys.stdout
        self._level = LOG_LEVELS[config.level]
        self._pre_chain: list[Processor] = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            DefaultFields(config),
            redact_sensitive_fields,
        ]

        console = logging.StreamHandler(self._stream)
        console.setFormatter(self._pretty_formatter() if config.pretty else self._shipper_formatter())
        self.handlers: list[logging.Handler] = [console]
        file_handlers = self._file_handlers() if config.file_sinks_enabled else []
        self.handlers.extend(file_handlers)

        # Uncaught errors always go out as shipper JSON, whatever the environment.
        crash_console = logging.StreamHandler(self._stream)
        crash_console.setFormatter(self._shipper_formatter())
        self._crash_handlers: list[logging.Handler] = [crash_console, *file_handlers]

        self._log = self._wrap(_detached_logger(config.service_name, self._level, self.handlers))
        self._crash = self._wrap(
            _detached_logger(f"{config.service_name}.crash", logging.ERROR, self._crash_handlers)
        )

        self._captured: list[tuple[logging.Logger, list[logging.Handler], bool, int]] = []
        self._previous_hooks: tuple[Any, Any] | None = None
        self._closed = False

    def _wrap(self, logger: logging.Logger) -> structlog.stdlib.BoundLogger:
        return structlog.wrap_logger(
            logger,
            processors=[
                structlog.stdlib.filter_by_level,
                *self._pre_chain,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
        )

    def _shipper_formatter(self) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=self._pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.TimeStamper(fmt="iso", utc=True, key="@timestamp"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                normalize_level,
                order_shipper_fields,
                structlog.processors.JSONRenderer(),
            ],
        )

    def _pretty_formatter(self) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=self._pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
                structlog.processors.StackInfoRenderer(),
                normalize_level,
                prefix_request_id,
                structlog.dev.ConsoleRenderer(colors=True),
            ],
        )

    def _file_handlers(self) -> list[logging.Handler]:
        self.config.log_dir.mkdir(parents=True, exist_ok=True)
        # backupCount excludes the live file, so N retained files means N - 1 backups.
        error = RotatingFileHandler(
            self.config.error_log_path,
            maxBytes=self.config.max_bytes,
            backupCount=self.config.error_max_files - 1,
            encoding="utf-8",
        )
        error.setLevel(logging.ERROR)
        combined = RotatingFileHandler(
            self.config.combined_log_path,
            maxBytes=self.config.max_bytes,
            backupCount=self.config.combined_max_files - 1,
            encoding="utf-8",
        )
        for handler in (error, combined):
            handler.setFormatter(self._shipper_formatter())
        return [error, combined]

    def debug(self, message: str, **fields: Any) -> None:
        self._log.debug(message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log.info(message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log.warning(message, **fields)

    warn = warning

    def error(self, message: str, **fields: Any) -> None:
        self._log.error(message, **fields)

    def exception(self, message: str, **fields: Any) -> None:
        self._log.exception(message, **fields)

    def log_error(self, message: str, error: BaseException, /, **meta: Any) -> None:
        """Error record carrying the exception message and traceback plus caller metadata.

        Caller metadata is merged last, so it may override ``error``, ``error_type``
        or ``stack``.
        """

        fields = {
            "error": str(error),
            "error_type": type(error).__name__,
            "stack": format_stack(error),
            **meta,
        }
        self._log.error(message, **fields)

    def log_request(self, context: RequestContext) -> None:
        """Completion record for one request; used as a RequestContext callback."""

        self._log.info(
            "Request completed",
            request_id=context.request_id,
            method=context.method,
            path=context.path,
            status_code=context.status_code,
            duration_ms=round(context.duration_ms or 0.0, 2),
            user_agent=context.user_agent,
            client_ip=context.client_ip,
        )

    def capture(self, *names: str) -> None:
        """Route stdlib loggers (e.g. uvicorn's) through this logger's sinks."""

        for name in names:
            logger = logging.getLogger(name)
            self._captured.append((logger, list(logger.handlers), logger.propagate, logger.level))
            logger.handlers = list(self.handlers)
            logger.propagate = False
            logger.setLevel(self._level)

    def install_exception_hooks(self) -> None:
        if self._previous_hooks is not None:
            return
        self._previous_hooks = (sys.excepthook, threading.excepthook)
        sys.excepthook = self._handle_uncaught
        threading.excepthook = self._handle_thread_exception

    def _handle_uncaught(self, exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        self._log_crash("uncaughtException", exc)

    def _handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None or issubclass(args.exc_type, SystemExit):
            return
        thread = args.thread.name if args.thread is not None else None
        self._log_crash("uncaughtException", args.exc_value, thread=thread)

    def handle_loop_exception(self, loop: Any, context: dict[str, Any]) -> None:
        """asyncio exception handler: errors nobody awaited (task exceptions, failed callbacks)."""

        _ = loop
        message = context.get("message") or "Unhandled exception in event loop"
        error = context.get("exception")
        if error is None:
            self._crash.error(f"unhandledRejection: {message}", origin="unhandledRejection", exception=True)
            return
        self._log_crash("unhandledRejection", error, detail=message)

    def _log_crash(self, origin: str, error: BaseException, /, **meta: Any) -> None:
        fields = {
            "origin": origin,
            "exception": True,
            "error": str(error),
            "error_type": type(error).__name__,
            "stack": format_stack(error),
            **meta,
        }
        self._crash.error(f"{origin}: {error}", **fields)

    def close(self) -> None:
        """Flush and close every sink, and undo hooks and captures."""

        if self._closed:
            return
        self._closed = True

        if self._previous_hooks is not None:
            sys.excepthook, threading.excepthook = self._previous_hooks
            self._previous_hooks = None

        for logger, handlers, propagate, level in self._captured:
            logger.handlers = handlers
            logger.propagate = propagate
            logger.setLevel(level)
        self._captured.clear()

        for handler in {*self.handlers, *self._crash_handlers}:
            handler.flush()
            handler.close()
