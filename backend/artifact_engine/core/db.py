"""Database connection and session management."""
import logging
import time
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import OperationalError
from artifact_engine.core.config import settings

logger = logging.getLogger(__name__)

# Determine database type and configure connection
is_postgresql = settings.is_postgresql
is_sqlite = settings.is_sqlite

connect_args = {}
if is_sqlite:
    # Version writes run in executor threads
    connect_args = {"check_same_thread": False, "timeout": 30}


def create_db_engine_with_retry(max_retries: int = 3, retry_delay: float = 2.0):
    """
    Create database engine with connection retry logic.

    Args:
        max_retries: Maximum number of connection retry attempts
        retry_delay: Delay between retries in seconds

    Returns:
        SQLAlchemy engine
    """
    db_url = settings.database_url

    if is_postgresql:
        # Plain postgresql:// URLs get the synchronous psycopg 3 driver
        if "+" not in db_url.split("://", 1)[0]:
            db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)
            logger.debug("Using psycopg3 driver for PostgreSQL")

        engine = create_engine(
            db_url,
            connect_args=connect_args,
            pool_size=5,  # Small pool for Supabase free tier
            max_overflow=10,
            pool_pre_ping=True,
            echo=False
        )
    else:
        engine = create_engine(
            db_url,
            connect_args=connect_args,
            echo=False
        )

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(f"Database connection successful (attempt {attempt})")
            return engine
        except OperationalError as e:
            if attempt < max_retries:
                logger.warning(
                    f"Database connection failed (attempt {attempt}/{max_retries}): {e}"
                )
                logger.info(f"Retrying in {retry_delay} seconds...")
                time.sleep(retry_delay)
            else:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")
                raise

    return engine


# Create engine
engine = create_db_engine_with_retry()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency for getting database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    # Register models on Base.metadata before create_all
    import artifact_engine.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")

        if is_postgresql:
            logger.info("Using PostgreSQL (Supabase)")
        else:
            logger.info("Using SQLite (local)")
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {e}")
        raise
