"""Database connection setup using SQLAlchemy."""

import os
import logging
from sqlalchemy import create_engine, exc
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

# Logger setup
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Load environment variables from .env
load_dotenv()


def _database_url() -> str:
    """
    Returns DATABASE_URL if set, otherwise builds a MySQL URL from the
    individual DB_* variables.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    required_db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = required_db_vars - set(os.environ)
    if missing_vars:
        logger.error(f"Missing database environment variables: {', '.join(sorted(missing_vars))}")

    return (
        f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
        f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
    )


SQLALCHEMY_DATABASE_URL = _database_url()


def build_engine(url: str):
    """Creates the engine; SQLite URLs get thread-safe connection args."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only lives as long as its single connection.
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    # pool_pre_ping=True handles connections dropped while idle in the pool.
    return create_engine(url, pool_pre_ping=True)


try:
    engine = build_engine(SQLALCHEMY_DATABASE_URL)
    with engine.connect() as connection:
        logger.info("Database connection established.")
except exc.SQLAlchemyError as e:
    logger.error(f"Error connecting to the database: {e}", exc_info=True)
    engine = None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None

Base = declarative_base()


# --- FastAPI dependency ---
def get_db():
    """
    Yields one database session per request and always closes it.
    The session is rolled back if a database error escapes the request.
    """
    if SessionLocal is None:
        logger.error("Database session factory is not initialized.")
        raise exc.SQLAlchemyError("Database is not available.")

    db = SessionLocal()
    try:
        yield db
    except exc.SQLAlchemyError as e:
        logger.error(f"Database error during request: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
