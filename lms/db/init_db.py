"""
Database initialization
"""
import logging

from lms.core.config import settings
from lms.db.base import Base
from lms.db.session import engine

logger = logging.getLogger(__name__)


def init_db() -> None:
    """
    Create tables directly for SQLite databases.

    Other backends are managed with `alembic upgrade head`.
    """
    # Register every model on Base.metadata
    import lms.models  # noqa: F401

    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("SQLite schema ensured (%d tables)", len(Base.metadata.tables))
