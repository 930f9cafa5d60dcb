"""
Database preflight check run before the API starts serving.

Fails fast with a readable hint when the database is unreachable, instead of
letting the first pick or QC scan surface a driver traceback.
"""
import sys
import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from fulfillment.core.config import settings
from fulfillment.core.logging import get_logger

logger = get_logger("db_preflight")


def describe_target(engine: Engine) -> str:
    """Database location without credentials."""
    url = engine.url
    if url.get_backend_name() == "sqlite":
        return f"sqlite:{url.database or ':memory:'}"
    return f"{url.get_backend_name()}://{url.host}:{url.port or ''}/{url.database}"


def _hint(engine: Engine, err_msg: str) -> Optional[str]:
    lowered = err_msg.lower()
    if "password authentication failed" in lowered:
        return (
            f"Credentials for {settings.POSTGRES_USER} do not match the database volume. "
            "FIX (Development): run 'docker compose down -v' to reset data."
        )
    if "unable to open database file" in lowered:
        return f"Directory for {engine.url.database} does not exist or is not writable."
    return None


def check_connection(engine: Engine, retries: int = 5, delay: float = 2) -> bool:
    """
    Run ``SELECT 1`` with retries. Returns False when every attempt failed
    or the failure cannot be fixed by waiting.
    """
    target = describe_target(engine)
    logger.info(f"Running DB preflight check against: {target}")

    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return True
        except OperationalError as e:
            err_msg = str(e.orig) if e.orig is not None else str(e)
            hint = _hint(engine, err_msg)
            if hint:
                logger.error(f"FATAL: cannot use database {target}: {err_msg}")
                logger.error(hint)
                return False

            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                logger.error(f"CRITICAL: Could not connect to {target} after {retries} attempts: {err_msg}")
    return False


def run_db_preflight(retries: int = 5, delay: float = 2) -> bool:
    """Check the application engine; exits the process when it is unusable."""
    from fulfillment.db.session import engine

    if not settings.DATABASE_URL:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    if not check_connection(engine, retries=retries, delay=delay):
        sys.exit(1)
    return True


if __name__ == "__main__":
    run_db_preflight()
