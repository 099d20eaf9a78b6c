from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from vibephoto.config import settings
from vibephoto.models import Base

_connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)
engine = create_engine(settings.database_url, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, class_=Session)


def init_db() -> None:
    """Create all tables."""
    Base.metadata.create_all(engine)


def get_db() -> Session:
    """Get a database session. Caller must close it."""
    return SessionLocal()
