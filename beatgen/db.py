from typing import Optional

from sqlmodel import create_engine, SQLModel
from sqlalchemy import event
from sqlalchemy.engine import Engine
import logging

from beatgen.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create an engine for the given URL (defaults to settings.DATABASE_URL)."""
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        # The scheduler job and API callers share connections across threads
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    engine = create_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,
        pool_timeout=30,
        connect_args={"connect_timeout": 10},
    )
    event.listen(engine, "connect", _set_statement_timeout)
    return engine


def _set_statement_timeout(dbapi_connection, connection_record):
    """Cap query time on Postgres connections."""
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("SET statement_timeout = '30s'")
    except Exception as e:
        logger.warning(f"Could not set statement timeout: {e}")
    finally:
        cursor.close()


engine = build_engine()


def create_db_and_tables(target: Optional[Engine] = None) -> None:
    # Import models so their tables are registered on SQLModel.metadata
    import beatgen.models  # noqa: F401

    SQLModel.metadata.create_all(target or engine)
