import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from relay.config import settings
from relay.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

ACTIVITY_LOGGER_NAME = "relay.activity"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        # Add ISO-8601 timestamp if not present
        if not log_record.get('ts'):
            log_record['ts'] = _utc_timestamp()
        log_record['level'] = record.levelname

        # Add request_id from context if available
        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


class ActivityJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per line; the log message becomes the entry ``type``."""

    def add_fields(self, log_record, record, message_dict):
        super(ActivityJsonFormatter, self).add_fields(log_record, record, message_dict)
        # The entry type replaces the message key
        log_record['type'] = log_record.pop('message', record.getMessage())
        log_record['timestamp'] = _utc_timestamp()


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Configure root logger
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    # Create JSON handler for stdout
    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    # Route uvicorn logs through the same JSON handler
    uvicorn_loggers = [
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
    ]

    for logger_name in uvicorn_loggers:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Disable uvicorn.access logger since we have our own middleware
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys: ts, level, request_id, method, path, status, latency_ms.

    For /messages/send requests, also includes:
    - recipient: the requested recipient
    - result: raw send action result
    - derived_status: canonical status after verification
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Generate unique request ID
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Set request_id in context for logging
        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)
            # Echo the request ID to the caller
            response.headers["X-Request-ID"] = request_id

            # Calculate latency
            latency_seconds = time.time() - start_time
            latency_ms = round(latency_seconds * 1000, 2)

            # Exclude /metrics to avoid self-instrumentation noise
            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": latency_ms,
            }

            # Add send-specific fields if present
            if hasattr(request.state, "send_log_data"):
                log_data.update(request.state.send_log_data)

            logger = logging.getLogger("relay.requests")

            # Log level follows the response status
            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            # Reset context
            request_id_ctx.reset(token)


def log_send_data(request: Request, recipient: str = None, result: str = None, derived_status: str = None):
    """
    Attach send-specific logging data to the request state.
    This data will be included in the request log by the middleware.
    """
    send_data = {}

    # Only fields that were provided are attached
    if recipient is not None:
        send_data["recipient"] = recipient
    if result is not None:
        send_data["result"] = result
    if derived_status is not None:
        send_data["derived_status"] = derived_status

    request.state.send_log_data = send_data


# =============================================================================
# Activity log (JSON lines file)
# =============================================================================

@lru_cache()
def get_activity_logger() -> logging.Logger:
    """
    Logger that appends one JSON object per line to ACTIVITY_LOG_PATH.
    It does not propagate, so activity entries stay out of the stdout stream.
    """
    logger = logging.getLogger(ACTIVITY_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # delay=True defers creating the file until the first entry
    handler = logging.FileHandler(settings.ACTIVITY_LOG_PATH, encoding="utf-8", delay=True)
    handler.setFormatter(ActivityJsonFormatter('%(message)s'))
    logger.handlers = [handler]
    return logger


def log_sent_message(message_data: dict) -> None:
    get_activity_logger().info("message_sent", extra={**message_data, "status": "sent"})


def log_error(error: Any, context: Optional[dict] = None) -> None:
    get_activity_logger().error(
        "error",
        extra={"error": str(error), "context": context or {}, "status": "error"}
    )


def read_activity_log(limit: int = 100) -> list:
    """
    Return the last ``limit`` activity entries, oldest first.
    Lines that are not valid JSON are skipped.
    """
    logger = logging.getLogger(__name__)
    # A missing file means nothing has been logged yet
    try:
        with open(settings.ACTIVITY_LOG_PATH, "r", encoding="utf-8") as fh:
            lines = [line for line in fh.read().splitlines() if line.strip()]
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.error(f"Failed to read activity log: {e}")
        return []

    # Skip lines that are not valid JSON
    entries = []
    for line in lines:
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            logger.debug("Skipping malformed activity log line")
    return entries[-limit:] if limit > 0 else []


def clear_activity_log() -> None:
    # Flush pending writes before truncating
    for handler in get_activity_logger().handlers:
        handler.flush()
    with open(settings.ACTIVITY_LOG_PATH, "w", encoding="utf-8"):
        pass
    logging.getLogger(__name__).info("Activity log cleared")
