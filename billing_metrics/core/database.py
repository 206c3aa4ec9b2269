from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base: Any = declarative_base()


def build_engine(dsn: str) -> Engine:
    """Create a SQLAlchemy engine for the given DSN."""
    return create_engine(
        dsn,
        connect_args=({"check_same_thread": False} if "sqlite" in dsn else {}),
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)
