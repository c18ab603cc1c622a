from typing import Any

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from .config import settings

DEFAULT_DATABASE_URL = "sqlite:///./tummy.db"


def _normalized_database_url(raw_url: str) -> str:
    """Bare postgres:// and postgresql:// URLs are pinned to the psycopg (v3) driver."""
    if not raw_url:
        return DEFAULT_DATABASE_URL
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


def _engine_options(url: str) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        return {}
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # Every session must see the tables created on the first connection
        options["poolclass"] = StaticPool
    return options


DATABASE_URL = _normalized_database_url(settings.database_url)
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


def get_db():
    with Session(engine) as session:
        yield session


def init_db():
    """Analysis records and error logs; no migrations, tables are created when missing."""
    SQLModel.metadata.create_all(engine)
