"""Database engine and session management"""

from typing import Any, Dict, Iterator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from bhalchandra_gateway.config import settings
from bhalchandra_gateway.infrastructure.database.models import Base


def engine_options(database_url: str) -> Dict[str, Any]:
    """SQLite (local dev, tests) gets no pool tuning; Postgres gets a pre-pinged, recycled pool"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create missing tables; schema migrations are handled outside the service"""
    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
