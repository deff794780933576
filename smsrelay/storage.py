import logging
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine, inspect, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from smsrelay.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """Server time used for created_at / updated_at columns."""
    return datetime.now(timezone.utc)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from smsrelay.models import User, Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        for table in ("users", "messages"):
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# User Repository Functions
# =============================================================================

def create_user(db: Session, email: str, password_digest: str):
    """
    Insert a new user.

    Args:
        db: Database session
        email: Normalized (trimmed, lower-cased) email
        password_digest: bcrypt hash of the password

    Returns:
        The created User, or None if the email is already taken
        (the unique index tripped).
    """
    from smsrelay.models import User

    user = User(email=email, password_digest=password_digest)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate email rejected by unique index: {email}")
        return None
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    logger.info(f"User created: id={user.id}")
    return user


def get_user_by_id(db: Session, user_id: str):
    from smsrelay.models import User

    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    """Look up a user by an already-normalized email."""
    from smsrelay.models import User

    return db.query(User).filter(User.email == email).first()


def increment_token_version(db: Session, user_id: str) -> Optional[int]:
    """
    Atomically bump a user's token_version by exactly 1.

    The increment happens in a single UPDATE statement so concurrent logouts
    cannot lose an increment.

    Returns:
        The new token_version, or None if the user no longer exists.
    """
    from smsrelay.models import User

    try:
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(
                token_version=User.token_version + 1,
                updated_at=utcnow(),
            )
        )
        if result.rowcount != 1:
            db.rollback()
            return None
        db.commit()
    except Exception:
        db.rollback()
        raise

    new_version = db.query(User.token_version).filter(User.id == user_id).scalar()
    logger.info(f"token_version incremented: user={user_id}, version={new_version}")
    return new_version


# =============================================================================
# Message Repository Functions
# =============================================================================

def save_message(db: Session, message) -> None:
    """
    Persist a message in a single commit.

    Raises whatever the database raised, after rolling back.
    """
    db.add(message)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(message)
    logger.info(f"Message saved: id={message.id}, status={message.status}")


def get_messages_for_user(db: Session, user_id: str) -> list:
    """
    Retrieve every message owned by a user, newest first.

    Ties on created_at are broken by id so the ordering is deterministic.
    """
    from smsrelay.models import Message

    messages = (
        db.query(Message)
        .filter(Message.user_id == user_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )
    logger.debug(f"Retrieved {len(messages)} messages for user {user_id}")
    return messages
