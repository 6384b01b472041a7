from __future__ import annotations

import logging
import os
from collections.abc import Generator

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from fleet_rbac.domain import models  # noqa: F401

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://fleet:fleet@db:5432/fleet_rbac",
)

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def get_engine() -> Engine:
    return engine


def new_session() -> Session:
    """Session whose rows stay readable after commit; services return them to callers."""
    return Session(get_engine(), expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    with new_session() as session:
        yield session


def create_schema() -> None:
    SQLModel.metadata.create_all(get_engine())


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("database readiness check failed", exc_info=True)
        return False
    return True
