"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the send endpoint
- Response models for send, conversation, health and activity log endpoints
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from relay.config import settings


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendRequest(BaseModel):
    """
    Pydantic model for validating outbound send requests.

    Validates:
    - to: non-empty recipient (phone number or email)
    - body: non-empty, at most MAX_BODY_LENGTH characters
    """
    to: str = Field(
        ...,
        min_length=1,
        description="Recipient phone number or email"
    )
    body: str = Field(
        ...,
        min_length=1,
        description="Message text"
    )

    @field_validator("to")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("to must not be blank")
        return v

    @field_validator("body")
    @classmethod
    def validate_body_length(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("body must not be blank")
        if len(v) > settings.MAX_BODY_LENGTH:
            raise ValueError(f"body must be at most {settings.MAX_BODY_LENGTH} characters")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "to": "+84901234567",
                    "body": "Hello"
                }
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class VerificationInfo(BaseModel):
    """What the store showed after the send, if anything."""
    found: bool = Field(..., description="Whether a matching row was found")
    attempts: int = Field(..., ge=0, description="Store polls performed")
    checked_at: str = Field(..., description="ISO-8601 time of the final check")
    record: Optional[dict[str, Any]] = Field(None, description="Echo of the matching row")


class SendResponse(BaseModel):
    """Response model for POST /messages/send."""
    success: bool = Field(..., description="False only when the send failed")
    status: str = Field(..., description="queued, sent, delivered or failed")
    result: Optional[str] = Field(None, description="Raw send action result")
    error: Optional[str] = Field(None, description="Failure detail")
    verification: Optional[VerificationInfo] = None


class ErrorResponse(BaseModel):
    """Response model for request validation errors."""
    success: bool = Field(default=False)
    error: str = Field(..., description="Error description")
    details: list[Any] = Field(default_factory=list, description="Per-field validation errors")


class MessageItem(BaseModel):
    """One row of a conversation page."""
    id: int = Field(..., description="Store row id")
    handle: Optional[str] = Field(None, description="Counterpart identifier")
    content: str = Field(..., description="Plain text, decoded text or placeholder")
    message_type: str = Field(..., description="iMessage, SMS or RCS")
    direction: str = Field(..., description="inbound or outbound")
    status: str = Field(..., description="Derived canonical status")
    decoded_via: Optional[str] = Field(None, description="native, plist or heuristic when the body was decoded")
    has_rich_content: bool = Field(..., description="Row carries an attributed body")
    created_at: Optional[str] = Field(None, description="Local time, YYYY-MM-DD HH:MM:SS")
    date: Optional[int] = Field(None, description="Raw store timestamp")


class ConversationResponse(BaseModel):
    """
    Response model for GET /messages/{sender} with pagination.

    Contains:
    - data: one page of messages, newest first
    - total: messages with a body for this sender (ignoring pagination)
    - limit / offset: the page window used
    """
    sender: str
    data: list[MessageItem] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=200)
    offset: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class LogsResponse(BaseModel):
    """Response model for GET /logs."""
    success: bool = Field(default=True)
    count: int = Field(..., ge=0)
    logs: list[dict[str, Any]] = Field(default_factory=list)
