"""
Database preflight check to ensure connectivity before starting the application.
"""
import sys
import time
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from partflow.core.config import settings
from partflow.core.logging import get_logger

logger = get_logger("db_preflight")


def run_db_preflight(retries: int = 5, delay: int = 2):
    """
    Attempts to connect to the database and runs a simple query.
    Exits the process if the database stays unreachable.
    """
    from partflow.db.session import engine, is_sqlite_url

    db_url = settings.DATABASE_URL
    if not db_url:
        logger.error("CRITICAL: DATABASE_URL is not configured!")
        sys.exit(1)

    if is_sqlite_url(db_url):
        logger.info("Using SQLite database, skipping preflight")
        return True

    # Never log credentials
    safe_url = db_url.split("@")[-1] if "@" in db_url else "configured URL"
    logger.info(f"Running DB preflight check against: {safe_url}")

    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection successful.")
            return True
        except OperationalError as e:
            err_msg = str(e)

            if "password authentication failed" in err_msg.lower():
                logger.error(
                    f"FATAL: database authentication failed for user {settings.POSTGRES_USER} "
                    f"on {settings.POSTGRES_DB}. Check POSTGRES_* settings against the server."
                )
                sys.exit(1)

            if attempt < retries:
                logger.warning(f"Attempt {attempt}/{retries} failed: {err_msg}. Retrying in {delay}s...")
                time.sleep(delay)
            else:
                logger.error(f"CRITICAL: Could not connect to database after {retries} attempts: {err_msg}")
                sys.exit(1)


if __name__ == "__main__":
    run_db_preflight()
