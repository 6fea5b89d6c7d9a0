"""
Structured logging for the API and the reminder worker.

Events are snake_case names with key/value context. Request-scoped values
(correlation id, path, method) are bound through structlog contextvars by
the HTTP middleware and merged into every event logged during the request.
Client email addresses are masked before rendering.
"""
import logging
import re
import time
import uuid

import structlog
from fastapi import Request

_EMAIL = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+)")

# keys whose values may hold a client address
_EMAIL_KEYS = ("to", "email", "user_email", "recipient_email", "guest_email", "host_email")


def mask_email(value: str) -> str:
    """a@b.com -> a***@b.com; applied to any address inside the string."""
    return _EMAIL.sub(r"\1***@\2", value)


class EmailMaskingProcessor:
    def __call__(self, logger, method_name, event_dict):
        for key in _EMAIL_KEYS:
            value = event_dict.get(key)
            if isinstance(value, str):
                event_dict[key] = mask_email(value)
        return event_dict


class TruncatingProcessor:
    """Provider error bodies can be long; keep free-text fields short."""

    def __init__(self, max_length: int = 200):
        self.max_length = max_length

    def __call__(self, logger, method_name, event_dict):
        for key in ("error", "error_message", "reason", "detail"):
            value = event_dict.get(key)
            if value is not None:
                event_dict[key] = str(value)[:self.max_length]
        return event_dict


def setup_logging(debug: bool = False, max_log_length: int = 200, level: str = "INFO"):
    """Configure structlog over stdlib logging: console output in development, JSON otherwise."""
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        EmailMaskingProcessor(),
        TruncatingProcessor(max_length=max_log_length),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, format="%(message)s")
    # provider SDKs are chatty at INFO
    for noisy in ("googleapiclient.discovery_cache", "botocore", "httpx"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


class LoggingMiddleware:
    """Assigns a correlation id per request and logs slow or failed requests."""

    def __init__(self, log_requests: bool = False, log_responses: bool = False,
                 slow_threshold: float = 2.0):
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.slow_threshold = slow_threshold
        self.logger = get_logger("mindfulcare.http")

    async def __call__(self, request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex[:8]
        request.state.correlation_id = correlation_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        if self.log_requests:
            self.logger.info("request_start", query_params=dict(request.query_params))

        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "request_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration=round(time.perf_counter() - start, 3),
                )
                raise

            duration = time.perf_counter() - start
            slow = duration > self.slow_threshold
            if self.log_responses or slow or response.status_code >= 400:
                log = self.logger.warning if response.status_code >= 500 or slow else self.logger.info
                log("request_complete", status_code=response.status_code, duration=round(duration, 3), slow=slow)

            response.headers["X-Correlation-ID"] = correlation_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()
