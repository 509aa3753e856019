from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def _create_engine() -> Engine:
    settings = get_settings()
    is_sqlite = settings.database_url.startswith("sqlite")
    connect_args: dict[str, object] = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(settings.database_url, connect_args=connect_args)
    if is_sqlite:
        # Invoice payments point at ledger rows; SQLite only enforces that with
        # the pragma on.
        event.listen(eng, "connect", enable_sqlite_pragmas)
    return eng


def enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def rollback_on_error(session: Session) -> Iterator[Session]:
    """Discard every pending change of ``session`` when the block raises.

    Ledger edits touch several rows (a definition and its exceptions, an
    installment series, a card purchase and its invoice row). A rejected edit
    must not leave half of them dirty in a session that a later call commits.
    """
    try:
        yield session
    except Exception:
        session.rollback()
        raise
