from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


def build_engine(database_url: str) -> Engine:
    """Engine for ``database_url``; in-memory SQLite shares one connection."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    in_memory = ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite:")
    eng = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )
    if not in_memory:
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.close()


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind: Optional[Engine] = None) -> None:
    import models  # noqa: F401  registers the documents table

    Base.metadata.create_all(bind or engine)


@contextmanager
def session_scope(
    factory: Optional[Callable[[], Session]] = None,
) -> Iterator[Session]:
    """One unit of work: commit on success, roll back on any error."""
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
