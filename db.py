import logging
import re
import ssl
import time
import urllib.parse

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATABASE_URL as _CONFIGURED_DATABASE_URL
from config import TESTING

logger = logging.getLogger(__name__)

SLOW_QUERY_MS = 500

DATABASE_URL = _CONFIGURED_DATABASE_URL

if not DATABASE_URL:
    if TESTING:
        # In testing environment, use SQLite in-memory database as fallback
        DATABASE_URL = "sqlite:///:memory:"
        logger.warning("Using in-memory SQLite database for testing")
    else:
        raise ValueError("DATABASE_URL environment variable is not set")

ssl_mode = None

# Only apply PostgreSQL-specific modifications if we're actually using PostgreSQL
if not DATABASE_URL.startswith("sqlite"):
    # If using Heroku/Vercel, convert the postgres:// URL to postgresql://
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    parsed = urllib.parse.urlparse(DATABASE_URL)
    query_params = urllib.parse.parse_qs(parsed.query)
    ssl_mode = query_params.get("sslmode", [None])[0]

    # Use pg8000 instead of psycopg2
    if "postgresql" in DATABASE_URL and "+pg8000" not in DATABASE_URL:
        pattern = r"postgresql://([^:]+):([^@]+)@([^:/]+):?(\d*)/?([^?]*)"
        match = re.match(pattern, DATABASE_URL)
        if match:
            username, password, host, port, dbname = match.groups()
            if not port:
                port = "5432"
            DATABASE_URL = f"postgresql+pg8000://{username}:{password}@{host}:{port}/{dbname}"

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    connect_args = {}
    if ssl_mode == "disable" or TESTING:
        pass
    elif ssl_mode == "require" or not ssl_mode:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        connect_args["ssl_context"] = ssl_context

    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
        pool_recycle=300,
        connect_args=connect_args,
    )


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start_times = conn.info.get("query_start_time")
    if not start_times:
        return
    elapsed_ms = (time.perf_counter() - start_times.pop()) * 1000
    if elapsed_ms >= SLOW_QUERY_MS:
        compact = " ".join(statement.split())
        logger.warning(f"SLOW_QUERY | time_ms={elapsed_ms:.1f} | sql={compact[:300]}")


def install_query_timing(target_engine):
    """Attach slow-query logging to an engine (idempotent)."""
    if event.contains(target_engine, "before_cursor_execute", _before_cursor_execute):
        return
    event.listen(target_engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(target_engine, "after_cursor_execute", _after_cursor_execute)


install_query_timing(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all tables"""
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
