"""Request tracing and structured logging.

Request ids are carried in structlog contextvars and on the ASGI scope so
that every record written while a request is in flight can be correlated.
"""
