"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from smsrelay.storage import Base, utcnow


def _new_id() -> str:
    return uuid.uuid4().hex


class MessageStatus:
    """Lifecycle states of a Message."""
    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"

    ALL = (PENDING, QUEUED, SENT, DELIVERED, FAILED)
    # Carrier statuses that count as a successful hand-off
    ACCEPTED = (QUEUED, SENT, DELIVERED)


class User(Base):
    """
    Account record.

    Table: users
    token_version is the revocation counter: a token is accepted only while
    the version embedded in it equals this column. It starts at 1 and is only
    ever changed by storage.increment_token_version.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_digest = Column(String(255), nullable=False)
    token_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Message(Base):
    """
    Outbound SMS record.

    Table: messages
    Rows are written once, after the delivery attempt, so a persisted
    message always carries a terminal status.
    """
    __tablename__ = "messages"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    to = Column("to_number", String(16), nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=MessageStatus.PENDING)
    provider_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
