# /backend/app/database.py

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings

logger = logging.getLogger(__name__)


class Database:
    engine: Optional[Engine] = None

db = Database()


def build_engine() -> Engine:
    """Create a pooled engine for the medical_rates database."""
    url = URL.create(
        "postgresql+psycopg2",
        username=settings.DB_USER or None,
        password=settings.DB_PASSWORD or None,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME,
    )
    connect_args = {"sslmode": "require"} if settings.DB_SSL else {}
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=0,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def connect_to_postgres():
    """Create the connection pool (no connection is opened yet)"""
    if not settings.database_configured:
        print("⚠️  DB_HOST/DB_NAME not set - database features disabled")
        return
    db.engine = build_engine()
    print(f"✅ Connection pool ready for {settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}")


def close_postgres_connection():
    """Dispose of the connection pool"""
    if db.engine is not None:
        db.engine.dispose()
        db.engine = None
        print("❌ Closed PostgreSQL connection pool")


def get_engine() -> Optional[Engine]:
    """Get the pooled engine, or None when no database is configured"""
    return db.engine


def test_connection(engine: Optional[Engine]) -> bool:
    """Run a trivial query and log server details."""
    if engine is None:
        logger.warning("Database connection test skipped: no engine configured")
        return False

    logger.info(
        f"Testing database connection: host={settings.DB_HOST} port={settings.DB_PORT} "
        f"database={settings.DB_NAME} user={settings.DB_USER} ssl={settings.DB_SSL}"
    )
    try:
        with engine.connect() as conn:
            row = conn.execute(
                text("SELECT NOW() AS current_time, version() AS pg_version")
            ).mappings().first()
        logger.info(
            f"Database connected: server time {row['current_time']}, "
            f"{str(row['pg_version']).split(',')[0]}"
        )
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {e}")
        return False


def initialize_database(engine: Optional[Engine]) -> bool:
    """
    Enable pg_trgm and build the trigram index on medical_rates.description.

    Run once during setup. CREATE INDEX CONCURRENTLY cannot run inside a
    transaction, so the statements execute in autocommit mode.
    """
    if engine is None:
        logger.warning("Database initialization skipped: no engine configured")
        return False

    try:
        with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            logger.info("Enabling pg_trgm extension")
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm"))

            logger.info("Creating GIN index on medical_rates.description")
            conn.execute(text(
                "CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_medical_rates_description_gin "
                "ON medical_rates USING gin (description gin_trgm_ops)"
            ))

            total = conn.execute(text("SELECT COUNT(*) FROM medical_rates")).scalar()
            logger.info(f"Total medical rates in database: {total}")
        return True
    except SQLAlchemyError as e:
        logger.error(f"Error initializing database: {e}")
        return False
