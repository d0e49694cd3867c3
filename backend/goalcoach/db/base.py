from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from goalcoach.core.config import settings


def build_engine(database_url: str, **kwargs):
    """Create an engine whose transactions serialize completion writers.

    PostgreSQL relies on row locks and gets the configured statement timeout.
    SQLite ignores FOR UPDATE, so every transaction starts with BEGIN IMMEDIATE
    and takes the write lock up front.
    """
    engine = create_engine(database_url, echo=settings.database_echo, future=True, **kwargs)

    if engine.dialect.name == "postgresql":
        @event.listens_for(engine, "connect")
        def _set_statement_timeout(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"SET statement_timeout = {int(settings.statement_timeout_ms)}")
            cursor.close()

    elif engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
