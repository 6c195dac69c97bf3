"""
Disruption Hub - Persistence setup

One engine per process. Sessions are request-scoped (get_db) and every
service commits or rolls back its own unit of work. SQLite URLs are accepted
for local runs; the engine then allows use from the threadpool FastAPI runs
sync routes on.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session for FastAPI dependencies."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables. Existing tables are left to the migrations/ scripts."""
    # Registers every table on Base.metadata
    from .models import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
