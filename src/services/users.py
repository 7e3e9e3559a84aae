"""
User lookup by external channel identity.
"""
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.database import User


def find_user(session: Session, external_id: str) -> Optional[User]:
    return session.execute(
        select(User).where(User.external_id == external_id)
    ).scalar_one_or_none()


def find_or_create_user(session: Session, external_id: str, display_name: Optional[str] = None) -> User:
    """
    Return the user for a channel identity, creating it on first contact.

    The cached display name is refreshed whenever the channel reports a
    different one. The insert runs in a savepoint: when a concurrent first
    contact wins the unique index, its row is used instead.

    Args:
        session: Session of the current unit of work
        external_id: Channel user identity
        display_name: Latest display name from the channel profile, if known

    Returns:
        Persistent User (flushed, so ``id`` is set)
    """
    user = find_user(session, external_id)

    if user is None:
        try:
            with session.begin_nested():
                user = User(external_id=external_id, display_name=display_name)
                session.add(user)
                session.flush()
            logger.info(f"Created user {user.id} for channel identity {external_id}")
            return user
        except IntegrityError:
            logger.debug(f"User for channel identity {external_id} was created concurrently")
            user = find_user(session, external_id)
            if user is None:
                raise

    if display_name and user.display_name != display_name:
        logger.debug(f"Refreshing display name of user {user.id}")
        user.display_name = display_name
        session.flush()

    return user
