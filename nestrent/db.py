# Engine, session factory, and the request-scoped session dependency.
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL, is_sqlite


def _engine_options(url: str) -> Dict[str, Any]:
    if is_sqlite(url):
        # Requests and the sweeper thread share the file; wait on its write lock rather than erroring
        return {"connect_args": {"check_same_thread": False, "timeout": 15}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session, closed when the response is done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
