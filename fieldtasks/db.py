from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from fieldtasks.settings import get_settings

_database_url = get_settings().database_url

engine = create_engine(
    _database_url,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if _database_url.startswith("sqlite") else {},
)

# One session per request; never share across threads.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
