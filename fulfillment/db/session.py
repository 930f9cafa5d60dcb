"""
Database session management with SQLAlchemy.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator, Optional
from contextlib import contextmanager

from fulfillment.core.config import settings
from fulfillment.core.errors import ConflictError
from fulfillment.core.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, echo: Optional[bool] = None):
    """
    Create an engine with backend specific options.

    SQLite connections are shared across threads by the pool, wait on the
    write lock instead of failing fast, and enforce foreign keys.
    PostgreSQL gets a sized, pre-pinged pool.
    """
    backend = make_url(url).get_backend_name()
    kwargs = {"echo": settings.SQL_ECHO if echo is None else echo}

    if backend == "sqlite":
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.SQLITE_BUSY_TIMEOUT,
        }
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        **kwargs,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database session."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def transaction(db: Session, conflict_message: str = "Conflicting write, the record already exists."):
    """
    Run one fulfillment operation as a single unit of work.

    Commits when the block finishes. Any exception rolls the whole block
    back; unique index violations surface as ConflictError.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Integrity violation rolled back: {exc.orig}")
        raise ConflictError(conflict_message) from exc
    except Exception:
        db.rollback()
        raise


def init_db():
    """
    Initialize database connection and run startup tasks.

    IMPORTANT: Schema is managed by Alembic migrations, NOT create_all().
    Run `alembic upgrade head` before first startup.

    Startup order:
    1. Run preflight check (validates DB connectivity)
    2. Verify schema exists (tables were created by Alembic)
    3. Seed reference data ONLY if SEED_DEMO=true (never in production)
    """
    from sqlalchemy import inspect, text

    # Run preflight check first - exits if DB is unreachable
    from fulfillment.db.preflight import run_db_preflight
    run_db_preflight()

    # Import models to register them (but don't create tables)
    from fulfillment.db import models  # noqa

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()
    required_tables = ['users', 'orders', 'qc_ribbons', 'qc_onlines', 'outbounds', 'complains']

    missing = [t for t in required_tables if t not in existing_tables]
    if missing:
        logger.warning(f"Database schema missing tables: {missing}. Run `alembic upgrade head`.")

        # In development mode, create tables automatically
        if settings.DEBUG:
            logger.warning("DEBUG=true: auto-creating tables (NOT for production!)")
            Base.metadata.create_all(bind=engine)
        else:
            # Application will fail on API calls until migrations run
            return
    else:
        logger.info(f"Database schema verified: {len(existing_tables)} tables found")

    if 'alembic_version' in existing_tables:
        with engine.connect() as conn:
            version = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
            logger.info(f"Alembic migration version: {version}")

    if settings.SEED_DEMO:
        from fulfillment.db.seed import seed_reference_data
        logger.info("SEED_DEMO=true: seeding reference data")
        with get_db_context() as db:
            seed_reference_data(db)
