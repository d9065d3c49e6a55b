"""Database engine initialization and connection management."""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..events.outbox import install_outbox
from .schema import Base, ServiceMetadata
from .seed import seed_defaults

SCHEMA_VERSION = "1.0.0"


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # One shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, **kwargs)

    if url.get_backend_name() == "sqlite":
        _enable_sqlite_savepoints(engine)

    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINT works with pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def init_database(database_url: str, echo: bool = False, seed: bool = True) -> sessionmaker[Any]:
    """Create tables, seed policy rows and return a session factory."""
    engine = create_db_engine(database_url, echo=echo)
    Base.metadata.create_all(engine)

    session_maker = sessionmaker(bind=engine, expire_on_commit=False)
    install_outbox(session_maker)

    with session_maker() as session:
        schema_version = session.get(ServiceMetadata, "schema_version")
        if not schema_version:
            session.add(ServiceMetadata(key="schema_version", value=SCHEMA_VERSION))
        if seed:
            seed_defaults(session)
        session.commit()

    return session_maker
