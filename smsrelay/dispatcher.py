"""
Message dispatch: listing a user's messages and sending new ones.

Send runs validate -> attempt -> persist. A message that fails local
validation is never stored; a message that passes is stored exactly once,
after the single delivery attempt, carrying its terminal status.
"""

import logging
from typing import NoReturn, Optional

from sqlalchemy.orm import Session

from smsrelay.delivery import DeliveryFailure, DeliveryGateway, DeliveryOutcome, DeliverySuccess
from smsrelay.errors import (
    BadRequestError,
    DeliveryFailedError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from smsrelay.metrics import record_message_dispatch
from smsrelay.models import Message, MessageStatus, User
from smsrelay.storage import get_messages_for_user, get_user_by_id, save_message
from smsrelay.utils import is_blank, is_valid_phone_number

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 1600

ERROR_CONTEXT = {"status": "error"}
VALIDATION_CONTEXT = {"status": "error", "message_text": "Validation failed"}


def validate_message(message: Message) -> list[str]:
    """
    Check a message against the model rules.

    Returns:
        Full error messages, empty when valid
    """
    errors = []
    if not message.user_id:
        errors.append("User can't be blank")

    if is_blank(message.to):
        errors.append("To can't be blank")
    elif not is_valid_phone_number(message.to):
        errors.append("To must be a valid phone number")

    if not message.body:
        errors.append("Body can't be blank")
    elif len(message.body) > MAX_BODY_LENGTH:
        errors.append(f"Body is too long (maximum is {MAX_BODY_LENGTH} characters)")

    if message.status not in MessageStatus.ALL:
        errors.append("Status is not included in the list")
    return errors


def list_messages(db: Session, current_user: User, owner_id: str) -> list[Message]:
    """
    Messages owned by `owner_id`, newest first.

    Raises:
        NotFoundError: no such user
        ForbiddenError: the caller is not the owner
    """
    owner = get_user_by_id(db, owner_id)
    if owner is None:
        raise NotFoundError("User not found", context=ERROR_CONTEXT)
    if owner.id != current_user.id:
        logger.warning(f"User {current_user.id} denied access to messages of {owner_id}")
        raise ForbiddenError("Access denied", context=ERROR_CONTEXT)
    return get_messages_for_user(db, owner.id)


def build_message(owner: User, destination: Optional[str], body: Optional[str]) -> Message:
    """In-memory candidate record. Not added to any session."""
    return Message(user_id=owner.id, to=destination, body=body, status=MessageStatus.PENDING)


def attempt_delivery(gateway: DeliveryGateway, message: Message) -> DeliveryOutcome:
    """
    Call the gateway once. Anything it raises is turned into a DeliveryFailure.
    """
    try:
        return gateway.send(message.to, message.body)
    except Exception as e:
        logger.error(f"Delivery gateway raised for user {message.user_id}: {e}", exc_info=True)
        return DeliveryFailure(cause=e)


def send_message(
    db: Session,
    sender: User,
    destination: Optional[str],
    body: Optional[str],
    gateway: DeliveryGateway,
) -> Message:
    """
    Validate, deliver and persist one outbound message.

    Returns:
        The persisted message with status queued, sent or delivered

    Raises:
        BadRequestError: `to` or `body` missing (nothing built)
        ValidationFailedError: invalid candidate (nothing persisted), or the
            failed record could not be persisted either
        DeliveryFailedError: delivery failed, message persisted as failed
    """
    if is_blank(destination) or is_blank(body):
        record_message_dispatch("missing_fields")
        raise BadRequestError("Phone number and message body are required", context=ERROR_CONTEXT)

    message = build_message(sender, destination, body)
    errors = validate_message(message)
    if errors:
        record_message_dispatch("invalid")
        logger.info(f"Message from user {sender.id} rejected: {', '.join(errors)}")
        raise ValidationFailedError(errors, context=VALIDATION_CONTEXT)

    logger.info(f"Sending SMS to {message.to} for user {sender.id}")
    outcome = attempt_delivery(gateway, message)

    if isinstance(outcome, DeliverySuccess) and outcome.status in MessageStatus.ACCEPTED:
        message.status = outcome.status
        message.provider_id = outcome.provider_id
        # Storage errors here propagate to the route as an internal error
        save_message(db, message)
        record_message_dispatch(message.status)
        logger.info(
            f"SMS sent for user {sender.id}: message={message.id}, "
            f"status={message.status}, provider_id={message.provider_id}"
        )
        return message

    if isinstance(outcome, DeliverySuccess):
        reason = f"Message failed with status: {outcome.status}"
    else:
        reason = outcome.reason
    _record_failed_delivery(db, sender, message, reason)


def _record_failed_delivery(db: Session, sender: User, message: Message, reason: str) -> NoReturn:
    logger.error(f"SMS delivery failed for user {sender.id}: {reason}")
    message.status = MessageStatus.FAILED
    message.provider_id = None
    record_message_dispatch(MessageStatus.FAILED)

    try:
        save_message(db, message)
    except Exception as e:
        logger.error(
            f"Failed to save failed message for user {sender.id}: {e}",
            exc_info=True,
        )
        errors = validate_message(message) or ["Message could not be saved"]
        raise ValidationFailedError(errors, context=VALIDATION_CONTEXT) from e

    logger.info(f"Failed message stored: id={message.id}, user={sender.id}")
    raise DeliveryFailedError(
        "Message saved but failed to send via SMS",
        context=ERROR_CONTEXT,
    )
