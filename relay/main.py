import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, status, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from relay.bridge import build_archive_decoder
from relay.config import settings
from relay.decoder import AttributedBodyDecoder
from relay.listing import build_conversation
from relay.logging_utils import (
    setup_logging,
    RequestLoggingMiddleware,
    log_send_data,
    log_sent_message,
    log_error,
    read_activity_log,
    clear_activity_log,
)
from relay.metrics import get_metrics, get_metrics_content_type
from relay.schemas import (
    ConversationResponse,
    ErrorResponse,
    HealthResponse,
    LogsResponse,
    MessageItem,
    SendRequest,
    SendResponse,
    VerificationInfo,
)
from relay.send_action import AppleScriptSendAction
from relay.storage import check_db_health, get_db, get_conversation
from relay.utils import sanitize_content
from relay.verifier import SEND_SUCCESS, SendAction, SendVerifier, VerificationResult


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache()
def get_decoder() -> AttributedBodyDecoder:
    archive_decoder = build_archive_decoder(
        enabled=settings.NATIVE_DECODE_ENABLED,
        swift_binary=settings.SWIFT_BINARY,
        timeout=settings.BRIDGE_TIMEOUT_SECONDS,
        batch_timeout=settings.BRIDGE_BATCH_TIMEOUT_SECONDS,
    )
    return AttributedBodyDecoder(archive_decoder, placeholder=settings.UNDECODED_PLACEHOLDER)


def get_verifier() -> SendVerifier:
    return SendVerifier(
        attempts=settings.VERIFY_ATTEMPTS,
        delay=settings.VERIFY_DELAY_MS / 1000,
        fail_timeout=timedelta(seconds=settings.SEND_FAIL_TIMEOUT_SECONDS),
        country_code=settings.DEFAULT_COUNTRY_CODE,
    )


def get_send_action() -> SendAction:
    return AppleScriptSendAction(
        osascript_binary=settings.OSASCRIPT_BINARY,
        timeout=settings.SEND_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    The store belongs to the host application, so startup only checks it is readable.
    """
    if not check_db_health():
        logger.warning("Message store not readable at startup; /health/ready will report not_ready")
    yield


app = FastAPI(
    title="Message Relay API",
    description="Send messages through the host Messages app and read back decoded conversations",
    version="1.0.0",
    lifespan=lifespan,
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


def _validation_error(error: str, details: list = None) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error=error, details=details or []).model_dump(),
    )


def _send_response(outcome: VerificationResult) -> SendResponse:
    verification = None
    if outcome.result == SEND_SUCCESS:
        verification = VerificationInfo(
            found=outcome.found,
            attempts=outcome.attempts,
            checked_at=outcome.checked_at.isoformat(),
            record=outcome.record.to_dict() if outcome.record else None,
        )
    return SendResponse(
        success=outcome.success,
        status=outcome.status.value,
        result=outcome.result,
        error=outcome.error,
        verification=verification,
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the message store is readable
    and has a message table. Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Message store not reachable or schema missing"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Send Route
# =============================================================================

@app.post(
    "/messages/send",
    response_model=SendResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": SendResponse, "description": "Send failed"},
    }
)
async def send_message(
    request: Request,
    response: Response,
    verifier: SendVerifier = Depends(get_verifier),
    send_action: SendAction = Depends(get_send_action),
):
    """
    Send a message and verify it against the local store.

    - Validates the body against SendRequest (400 on failure)
    - Strips angle brackets from the message body
    - Sends, then polls the store for the row the send produced

    Returns 200 unless the send itself failed or the row was derived as failed.
    A send that has not shown up in the store yet is reported as queued.
    """
    raw_body = await request.body()
    logger.debug(f"Send request body size: {len(raw_body)} bytes")

    try:
        send_request = SendRequest.model_validate(json.loads(raw_body))
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        return _validation_error(f"Invalid JSON: {e}")
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        return _validation_error(
            "Validation failed",
            e.errors(include_url=False, include_context=False, include_input=False),
        )

    body = sanitize_content(send_request.body)
    if not body:
        return _validation_error("body is empty after sanitising")

    outcome = await run_in_threadpool(verifier.send_and_verify, send_request.to, body, send_action)

    log_send_data(
        request=request,
        recipient=send_request.to,
        result=outcome.result,
        derived_status=outcome.status.value,
    )

    activity = {
        "recipient": send_request.to,
        "content": body,
        "result": outcome.result,
        "derived_status": outcome.status.value,
        "rowid": outcome.record.rowid if outcome.record else None,
    }
    if outcome.success:
        log_sent_message(activity)
    else:
        log_error(outcome.error or outcome.status.value, activity)
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return _send_response(outcome)


# =============================================================================
# Conversation Route
# =============================================================================

@app.get(
    "/messages/{sender}",
    response_model=ConversationResponse,
)
async def list_conversation(
    sender: str,
    limit: Annotated[int, Query(ge=1, le=200, description="Maximum number of messages to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of messages to skip")] = 0,
    db: Session = Depends(get_db),
    decoder: AttributedBodyDecoder = Depends(get_decoder),
) -> ConversationResponse:
    """
    One page of the conversation with ``sender``, newest first.

    Attributed bodies on the page are decoded with a single batch call;
    each row carries its derived delivery status.
    """
    logger.info(f"GET /messages/{sender}: limit={limit}, offset={offset}")

    records, total = get_conversation(db=db, sender=sender, limit=limit, offset=offset)
    items = await run_in_threadpool(
        build_conversation,
        records,
        decoder,
        None,
        timedelta(seconds=settings.SEND_FAIL_TIMEOUT_SECONDS),
    )

    logger.info(f"GET /messages/{sender}: returned {len(items)} of {total} messages")

    return ConversationResponse(
        sender=sender,
        data=[MessageItem(**item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# =============================================================================
# Activity Log Routes
# =============================================================================

@app.get("/logs", response_model=LogsResponse)
async def get_logs(
    limit: Annotated[int, Query(ge=1, le=1000, description="Number of most recent entries")] = 100,
) -> LogsResponse:
    entries = read_activity_log(limit)
    return LogsResponse(count=len(entries), logs=entries)


@app.delete("/logs")
async def delete_logs() -> dict:
    clear_activity_log()
    return {"success": True, "message": "Logs cleared"}


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Returns metrics in Prometheus text exposition format including:
    - http_requests_total: Total HTTP requests by method, path, status
    - decode_results_total: Decode outcomes by source
    - send_outcomes_total: Send-and-verify outcomes by derived status
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
