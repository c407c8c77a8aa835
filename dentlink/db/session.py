# dentlink/db/session.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from dentlink.core.config import settings


def make_engine(db_uri: str) -> Engine:
    if db_uri.startswith("sqlite"):
        eng = create_engine(
            db_uri,
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )

        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return eng

    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        future=True,
    )


def make_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=eng,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = make_session_factory(engine)
