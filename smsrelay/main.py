import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from smsrelay import __version__
from smsrelay.auth import login, logout, register_user, require_user
from smsrelay.config import settings
from smsrelay.delivery import DeliveryGateway, TwilioGateway, get_delivery_gateway
from smsrelay.dispatcher import list_messages, send_message
from smsrelay.errors import ConfigurationError, InternalError, SmsRelayError, add_exception_handlers
from smsrelay.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_context
from smsrelay.metrics import record_auth_event, record_message_dispatch, get_metrics, get_metrics_content_type
from smsrelay.models import User
from smsrelay.schemas import (
    AuthenticatedUserView,
    CredentialsRequest,
    ErrorResponse,
    HealthResponse,
    LoginResponse,
    LogoutResponse,
    MessageEnvelope,
    MessagesListResponse,
    MessageView,
    RegisteredUserView,
    RegistrationResponse,
    SendMessageRequest,
    ValidationErrorResponse,
)
from smsrelay.storage import init_db, check_db_health, get_db
from smsrelay.tokens import TokenService, get_token_service


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="SMS Relay API",
    description="Register, authenticate and relay outbound SMS through Twilio",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
add_exception_handlers(app)


# =============================================================================
# Info & Health Check Routes
# =============================================================================

@app.get("/")
async def root() -> dict:
    """API info and endpoint directory."""
    return {
        "message": "SMS API is running",
        "version": __version__,
        "endpoints": {
            "register": "POST /users",
            "login": "POST /auths",
            "logout": "DELETE /auths",
            "send_sms": "POST /messages",
            "get_messages": "GET /users/:user_id/messages",
        },
    }


@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. JWT_SECRET is set (non-empty)
    2. Twilio credentials and sender number are configured
    3. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.JWT_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="JWT_SECRET not configured")

    try:
        TwilioGateway.from_settings().check_configuration()
    except ConfigurationError as e:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason=str(e))

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# User & Auth Routes
# =============================================================================

@app.post(
    "/users",
    status_code=status.HTTP_201_CREATED,
    response_model=RegistrationResponse,
    responses={
        422: {"model": ValidationErrorResponse, "description": "Invalid or duplicate account"},
    }
)
def create_user_account(
    request: Request,
    payload: Optional[CredentialsRequest] = None,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> RegistrationResponse:
    """
    Register an account and log it in.

    The email is trimmed and lower-cased before it is checked and stored.
    """
    payload = payload or CredentialsRequest()
    logger.info("Registration request received")

    try:
        user = register_user(db, payload.email, payload.password)
        token = tokens.issue(user.id, user.token_version)
    except SmsRelayError:
        record_auth_event("register", "rejected")
        raise
    except Exception as e:
        logger.error(f"User creation error: {e}", exc_info=True)
        record_auth_event("register", "error")
        raise InternalError(
            "User creation failed",
            errors=["User creation failed"],
            context={"message": "Registration failed"},
        ) from e

    record_auth_event("register", "created")
    log_request_context(request, user_id=user.id, result="created")
    return RegistrationResponse(user=RegisteredUserView.model_validate(user), token=token)


@app.post(
    "/auths",
    response_model=LoginResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Email or password missing"},
        401: {"model": ErrorResponse, "description": "Invalid email or password"},
    }
)
def create_session(
    request: Request,
    payload: Optional[CredentialsRequest] = None,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> LoginResponse:
    """Exchange email and password for a bearer token."""
    payload = payload or CredentialsRequest()

    try:
        user, token = login(db, payload.email, payload.password, tokens)
    except SmsRelayError:
        record_auth_event("login", "rejected")
        raise
    except Exception as e:
        logger.error(f"Authentication error: {e}", exc_info=True)
        record_auth_event("login", "error")
        raise InternalError(
            "Authentication failed",
            context={"message": "Authentication failed"},
        ) from e

    record_auth_event("login", "success")
    log_request_context(request, user_id=user.id, result="authenticated")
    return LoginResponse(user=AuthenticatedUserView.model_validate(user), token=token)


@app.delete(
    "/auths",
    response_model=LogoutResponse,
    responses={
        401: {"model": ErrorResponse, "description": "No valid bearer token"},
        422: {"model": ErrorResponse, "description": "Logout could not be persisted"},
    }
)
def destroy_session(
    request: Request,
    current_user: User = Depends(require_user),
    db: Session = Depends(get_db),
) -> LogoutResponse:
    """
    Log out everywhere: every token issued to this user so far stops working.
    """
    log_request_context(request, user_id=current_user.id)
    try:
        logout(db, current_user)
    except SmsRelayError:
        record_auth_event("logout", "failed")
        raise

    record_auth_event("logout", "success")
    log_request_context(request, result="logged_out")
    return LogoutResponse()


# =============================================================================
# Message Routes
# =============================================================================

@app.post(
    "/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageEnvelope,
    responses={
        400: {"model": ErrorResponse, "description": "Phone number or body missing"},
        401: {"model": ErrorResponse, "description": "No valid bearer token"},
        422: {"description": "Validation failed, or saved but failed to send"},
    }
)
def create_message(
    request: Request,
    current_user: User = Depends(require_user),
    payload: Optional[SendMessageRequest] = None,
    db: Session = Depends(get_db),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> MessageEnvelope:
    """
    Send one SMS and record it.

    The carrier is called once, synchronously. Whatever it answers, a
    message that passed validation is stored with its final status.
    """
    payload = payload or SendMessageRequest()
    log_request_context(request, user_id=current_user.id)

    try:
        message = send_message(db, current_user, payload.to, payload.body, gateway)
    except SmsRelayError as e:
        log_request_context(request, result=type(e).__name__)
        raise
    except Exception as e:
        logger.error(f"Message creation error for user {current_user.id}: {e}", exc_info=True)
        record_message_dispatch("error")
        raise InternalError("Failed to send message", context={"status": "error"}) from e

    log_request_context(request, message_id=message.id, result=message.status)
    return MessageEnvelope(message=MessageView.model_validate(message))


@app.get(
    "/users/{user_id}/messages",
    response_model=MessagesListResponse,
    responses={
        401: {"model": ErrorResponse, "description": "No valid bearer token"},
        403: {"model": ErrorResponse, "description": "Messages belong to another user"},
        404: {"model": ErrorResponse, "description": "User not found"},
    }
)
def list_user_messages(
    user_id: str,
    request: Request,
    current_user: User = Depends(require_user),
    db: Session = Depends(get_db),
) -> MessagesListResponse:
    """List the caller's messages, newest first."""
    log_request_context(request, user_id=current_user.id)

    try:
        messages = list_messages(db, current_user, user_id)
    except SmsRelayError:
        raise
    except Exception as e:
        logger.error(f"Messages index error for user {user_id}: {e}", exc_info=True)
        raise InternalError("Failed to retrieve messages", context={"status": "error"}) from e

    data = [MessageView.model_validate(message) for message in messages]
    logger.info(f"GET /users/{user_id}/messages: returned {len(data)} messages")
    return MessagesListResponse(messages=data, count=len(data))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
