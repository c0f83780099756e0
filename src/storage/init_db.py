"""Create database tables."""
import os
from typing import Optional

from loguru import logger
from sqlalchemy.engine import Engine

from src.storage.db import engine as default_engine
from src.storage.models import Base


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url.endswith(":memory:"):
        return
    directory = os.path.dirname(url[len(prefix):])
    if directory:
        os.makedirs(directory, exist_ok=True)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create every table that does not exist yet (idempotent)."""
    target = bind or default_engine
    _ensure_sqlite_dir(str(target.url))
    Base.metadata.create_all(target)
    logger.info(f"Database ready: {target.url}")
