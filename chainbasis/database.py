"""
chainbasis/database.py

Sets up the SQLAlchemy engine, session factory and the declarative Base that
the wallet / transaction / cost-basis models register with.

Key Features:
- Reads DATABASE_URL / DATABASE_FILE from chainbasis.config (dotenv-backed)
- UTCDateTime column type so SQLite round-trips aware UTC datetimes
- get_db() generator for callers that want a scoped session
- create_tables() to initialize the schema
"""

import os
import logging
import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator, String

from chainbasis.config import DATABASE_FILE, DATABASE_URL

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# 1) SQLAlchemy Engine and Session Setup
# ------------------------------------------------------------------
if DATABASE_URL.startswith("sqlite:///") and DATABASE_URL.endswith(DATABASE_FILE):
    db_dir = os.path.dirname(DATABASE_FILE)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)
        logger.debug(f"Created directory: {db_dir}")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
logger.debug(f"SQLAlchemy engine created for {DATABASE_URL}")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# ------------------------------------------------------------------
# 2) Custom UTC DateTime for SQLite
# ------------------------------------------------------------------
class UTCDateTime(TypeDecorator):
    """
    Persists aware datetimes as UTC ISO8601 text ending in "Z" and reads them
    back aware. SQLite has no timezone-aware column type.
    """
    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Normalize to UTC and serialize (naive values are taken as UTC)."""
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        else:
            value = value.astimezone(datetime.timezone.utc)
        return value.isoformat().replace("+00:00", "Z")

    def process_result_value(self, value, dialect):
        """Parse the stored text back into an aware UTC datetime."""
        if value is None:
            return None
        value = value.replace("Z", "+00:00")
        return datetime.datetime.fromisoformat(value)

# ------------------------------------------------------------------
# 3) Session helpers
# ------------------------------------------------------------------
def get_db():
    """
    Yields a SessionLocal instance and closes it after use to prevent leaks.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Imports every model so it is registered on Base.metadata, then creates
    the tables on `bind` (defaults to the configured engine).
    """
    from chainbasis.models import wallet, transaction  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully.")
