import logging
from typing import AsyncGenerator
from app.database import async_session
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from fastapi import HTTPException, Request

from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.
    Commits what is still pending on success, rolls back on any error.
    """
    session = None
    try:
        session = async_session()
        logger.debug("Database session created")

        yield session

        if session.in_transaction():
            await session.commit()
            logger.debug("Database transaction committed")

    except HTTPException:
        if session and session.in_transaction():
            await session.rollback()
            logger.debug("Database transaction rolled back due to HTTPException")
        raise

    except SQLAlchemyError as e:
        logger.error(f"Database error in get_db: {type(e).__name__}: {e}")
        if session and session.in_transaction():
            await session.rollback()
        raise

    except Exception as e:
        logger.error(f"Unexpected error in get_db: {type(e).__name__}: {e}")
        if session and session.in_transaction():
            await session.rollback()
        raise

    finally:
        if session:
            await session.close()
            logger.debug("Database session closed")


def get_notifier(request: Request) -> NotificationDispatcher:
    """The dispatcher built at start-up, see ``app.main.lifespan``"""
    return request.app.state.notifier
