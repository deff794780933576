"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data
- Response models (views) for API responses
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_serializer

from smsrelay.utils import format_utc


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CredentialsRequest(BaseModel):
    """
    Body of POST /users and POST /auths.

    Both fields are optional at the schema level so that a missing value
    reaches the handler and gets the endpoint's own error response instead
    of a generic 422.
    """
    email: Optional[str] = Field(None, description="Account email (case-insensitive)")
    password: Optional[str] = Field(None, description="Account password")

    model_config = {
        "json_schema_extra": {
            "examples": [{"email": "user@example.com", "password": "password123"}]
        }
    }


class SendMessageRequest(BaseModel):
    """Body of POST /messages. Presence is checked by the dispatcher."""
    to: Optional[str] = Field(
        None,
        description="Destination phone number: '+' then 9-15 digits, no leading zero"
    )
    body: Optional[str] = Field(None, description="Message text, 1-1600 characters")

    model_config = {
        "json_schema_extra": {
            "examples": [{"to": "+14155550100", "body": "Hello"}]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class RegisteredUserView(BaseModel):
    id: str
    email: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return format_utc(value)


class AuthenticatedUserView(BaseModel):
    id: str
    email: str
    token_version: int

    model_config = {"from_attributes": True}


class RegistrationResponse(BaseModel):
    user: RegisteredUserView
    token: str
    message: str = "User created successfully"


class LoginResponse(BaseModel):
    user: AuthenticatedUserView
    token: str
    message: str = "Authentication successful"


class LogoutResponse(BaseModel):
    message: str = "Logout successful"


class MessageView(BaseModel):
    """
    A stored message as returned by the API.
    `to` is exposed as `phone_number`.
    """
    id: str
    body: str
    phone_number: str = Field(..., validation_alias=AliasChoices("to", "phone_number"))
    status: str
    provider_id: Optional[str] = Field(None, description="Carrier message id (Twilio SID)")
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("created_at", "updated_at")
    def serialize_timestamps(self, value: datetime) -> str:
        return format_utc(value)


class MessageEnvelope(BaseModel):
    """Response model for POST /messages."""
    message: MessageView
    status: str = "success"
    message_text: str = "Message processed successfully"


class MessagesListResponse(BaseModel):
    """Response model for GET /users/{user_id}/messages."""
    messages: list[MessageView] = Field(default_factory=list)
    count: int = Field(..., ge=0)
    status: str = "success"
    message_text: str = "Messages retrieved successfully"


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    status: Optional[str] = None
    message: Optional[str] = None


class ValidationErrorResponse(BaseModel):
    errors: list[str]
    status: Optional[str] = None
    message_text: Optional[str] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
