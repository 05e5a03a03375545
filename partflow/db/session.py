"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

from partflow.core.config import settings
from partflow.core.logging import get_logger

logger = get_logger(__name__)


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def _engine_kwargs(url: str) -> dict:
    if is_sqlite_url(url):
        from sqlalchemy.pool import StaticPool
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
    }


def _enable_sqlite_savepoints(target_engine):
    # pysqlite issues its own BEGIN lazily which breaks SAVEPOINT; take over
    # transaction control so nested transactions behave as on PostgreSQL.
    @event.listens_for(target_engine, "connect")
    def _on_connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(target_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str):
    built = create_engine(url, **_engine_kwargs(url))
    if is_sqlite_url(url):
        _enable_sqlite_savepoints(built)
    return built


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session.

    Routes commit explicitly; anything that escapes the route rolls the
    whole request back.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


REQUIRED_TABLES = (
    "rfq_suppliers",
    "rfq_supplier_responses",
    "rfq_response_revisions",
    "rfq_response_lines",
    "supplier_parts",
    "supplier_price_lists",
)


def init_db():
    """
    Initialize database connection and verify the schema.

    Schema is managed by Alembic migrations (`alembic upgrade head`).
    With DEBUG=true missing tables are created directly from the models.
    """
    from sqlalchemy import inspect, text

    from partflow.db.preflight import run_db_preflight
    run_db_preflight()

    # Import models to register them on Base.metadata
    from partflow.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    missing = [t for t in REQUIRED_TABLES if t not in existing_tables]

    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run 'alembic upgrade head'.")
        if settings.DEBUG:
            logger.warning("DEBUG=true: auto-creating tables (not for production)")
            Base.metadata.create_all(bind=engine)
        return

    logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    if "alembic_version" in existing_tables:
        with engine.connect() as conn:
            version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
        logger.info(f"Alembic migration version: {version}")
    else:
        logger.warning("alembic_version table not found - migrations may not have been run")


def add_in_savepoint(db: Session, obj) -> bool:
    """Insert `obj` inside a SAVEPOINT.

    Returns False when a unique constraint rejected the row; the savepoint is
    rolled back and the enclosing transaction stays usable, so the caller can
    re-select the winning row.
    """
    try:
        with db.begin_nested():
            db.add(obj)
            db.flush()
    except IntegrityError:
        return False
    return True
