"""
db.py

This module consists of functions to create the Database engine and Tables and use Database Session
"""

import logging
from pathlib import Path
from typing import Generator

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from chatgateway.api import models  # noqa: F401  (registers the tables)


logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for the given URL.

    SQLite files get their parent directory created and are opened with
    check_same_thread disabled, since FastAPI runs sync dependencies in a thread pool.
    An in-memory SQLite URL shares one connection across the process. SQLite only
    enforces foreign keys when asked to, so every connection turns them on.

    Args:
        database_url (str): SQLAlchemy database URL.

    Returns:
        Engine: The configured engine.
    """
    url = make_url(database_url)

    if url.get_backend_name() != "sqlite":
        return create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=300,  # Recycle connections every 5 minutes
        )

    connect_args = {"check_same_thread": False}
    if url.database in (None, "", ":memory:"):
        engine = create_engine(
            database_url, connect_args=connect_args, poolclass=StaticPool
        )
    else:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(database_url, connect_args=connect_args)

    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_and_tables(engine: Engine) -> None:
    """Creates every table registered on the SQLModel metadata."""
    SQLModel.metadata.create_all(engine)
    logger.info(f"Database ready at: {engine.url.render_as_string(hide_password=True)}")


def check_database(engine: Engine) -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database check failed: {str(e)}")
        return False


def get_session(request: Request) -> Generator[Session, None, None]:
    """Yields a database session bound to the application's engine.

    Yields:
        Session: A database session object, closed once the request is done.
    """
    with Session(request.app.state.context.engine) as session:
        yield session
