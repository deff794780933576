"""
Registration, login, logout and the authentication gate.

The gate (get_current_user) never raises for a bad token: every failure
collapses into None ("no identity"), and require_user turns None into a 401
before the route does any work.
"""

import logging
from typing import Annotated, Optional

import bcrypt
from fastapi import Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smsrelay.config import settings
from smsrelay.errors import (
    BadRequestError,
    UnauthorizedError,
    UnprocessableError,
    ValidationFailedError,
)
from smsrelay.models import User
from smsrelay.storage import (
    create_user,
    get_db,
    get_user_by_email,
    get_user_by_id,
    increment_token_version,
)
from smsrelay.tokens import TokenError, TokenService, get_token_service
from smsrelay.utils import extract_bearer_token, is_blank, is_valid_email, normalize_email

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72

AUTH_FAILED = {"message": "Authentication failed"}
INVALID_CREDENTIALS = "Invalid email or password"


# =============================================================================
# Password hashing
# =============================================================================

def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_digest: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_digest.encode("utf-8"))
    except ValueError:
        logger.error("Stored password digest is not a valid bcrypt hash")
        return False


# =============================================================================
# Registration
# =============================================================================

def validate_registration(db: Session, email: str, password: Optional[str]) -> list[str]:
    """
    Check a normalized email and a raw password against account rules.

    Returns:
        Full error messages, empty when valid
    """
    errors = []
    if not email:
        errors.append("Email can't be blank")
    elif not is_valid_email(email):
        errors.append("Email must be a valid email address")
    elif get_user_by_email(db, email) is not None:
        errors.append("Email has already been taken")

    if not password:
        errors.append("Password can't be blank")
    elif len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password is too long (maximum is {MAX_PASSWORD_BYTES} bytes)")
    return errors


def register_user(db: Session, email: Optional[str], password: Optional[str]) -> User:
    """
    Create an account.

    Raises:
        ValidationFailedError: invalid or duplicate email, bad password
    """
    normalized = normalize_email(email)
    context = {"message": "User creation failed"}

    errors = validate_registration(db, normalized, password)
    if errors:
        logger.info(f"Registration rejected: {', '.join(errors)}")
        raise ValidationFailedError(errors, context=context)

    user = create_user(db, normalized, hash_password(password))
    if user is None:
        # Lost a race with a concurrent registration for the same email
        raise ValidationFailedError(["Email has already been taken"], context=context)
    return user


# =============================================================================
# Login / logout
# =============================================================================

def login(db: Session, email: Optional[str], password: Optional[str], tokens: TokenService) -> tuple[User, str]:
    """
    Authenticate credentials and mint a token.

    Unknown email and wrong password produce the same error so the response
    cannot be used to enumerate accounts.

    Raises:
        BadRequestError: email or password missing
        UnauthorizedError: credentials don't match an account
    """
    if is_blank(email) or not password:
        raise BadRequestError("Email and password are required", context=AUTH_FAILED)

    user = get_user_by_email(db, normalize_email(email))
    if user is None or not check_password(password, user.password_digest):
        logger.info("Login rejected: invalid credentials")
        raise UnauthorizedError(INVALID_CREDENTIALS, context=AUTH_FAILED)

    token = tokens.issue(user.id, user.token_version)
    logger.info(f"Login succeeded: user={user.id}")
    return user, token


def logout(db: Session, user: User) -> int:
    """
    Revoke every outstanding token for the user by bumping token_version.

    Returns:
        The new token_version

    Raises:
        UnprocessableError: the increment could not be persisted
    """
    try:
        new_version = increment_token_version(db, user.id)
    except SQLAlchemyError as e:
        logger.error(f"Logout failed for user {user.id}: {e}", exc_info=True)
        raise UnprocessableError("Logout failed", context=AUTH_FAILED) from e

    if new_version is None:
        logger.error(f"Logout failed for user {user.id}: user no longer exists")
        raise UnprocessableError("Logout failed", context=AUTH_FAILED)
    return new_version


# =============================================================================
# Authentication gate
# =============================================================================

def resolve_identity(db: Session, authorization: Optional[str], tokens: TokenService) -> Optional[User]:
    """
    Map an Authorization header to a user, or None.

    None covers: missing header, wrong scheme, expired or malformed token,
    unknown user, and a token_version that no longer matches.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return None

    try:
        claims = tokens.verify(token)
    except TokenError as e:
        logger.info(f"Rejected bearer token: {e}")
        return None

    user = get_user_by_id(db, claims.user_id)
    if user is None:
        logger.info(f"Token names unknown user {claims.user_id}")
        return None
    if user.token_version != claims.token_version:
        logger.info(f"Revoked token presented for user {user.id}")
        return None
    return user


def get_current_user(
    authorization: Annotated[Optional[str], Header()] = None,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> Optional[User]:
    try:
        return resolve_identity(db, authorization, tokens)
    except SQLAlchemyError as e:
        # Fail closed
        logger.error(f"Authentication lookup failed: {e}", exc_info=True)
        return None


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise UnauthorizedError()
    return user
