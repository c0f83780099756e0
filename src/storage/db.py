import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.errors import StoreError

DB_URL = os.getenv("DB_URL", "sqlite:///./data/alerts.db")  # default: ./data/alerts.db


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite connections may be shared across worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, future=True, connect_args=connect_args)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(DB_URL)
SessionLocal = make_session_factory(engine)


def utc_now() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Open a session, commit on success.
    SQLAlchemy failures are rolled back and re-raised as StoreError.
    """
    factory = session_factory or SessionLocal
    with factory() as session:
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Store operation failed: {e}")
            raise StoreError(str(e)) from e
