#!/usr/bin/env python3
"""
Database access for the API and the CLI scripts

Two modes, picked once at import time from DB_USE_POOLING:
- pooled (the Flask app sets DB_USE_POOLING=true before importing this
  module): one psycopg_pool ConnectionPool per worker, opened lazily,
  pinged by a keepalive thread
- simple (scripts): a fresh connection per get_db_connection() block,
  committed on clean exit and rolled back on error

Connection settings come from DATABASE_URL, or from DB_HOST / DB_PORT /
DB_NAME / DB_USER / DB_PASSWORD.
"""

import os
import logging
import time
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


# ============================================================================
# SETTINGS
# ============================================================================

USE_POOLING = os.environ.get('DB_USE_POOLING', 'false').lower() == 'true'

DB_SETTINGS = {
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': os.environ.get('DB_PORT', '5432'),
    'dbname': os.environ.get('DB_NAME', 'prelude'),
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD', ''),
}

DATABASE_URL = os.environ.get('DATABASE_URL') or (
    "postgresql://{user}:{password}@{host}:{port}/{dbname}".format(**DB_SETTINGS)
)

SCHEMA_PATH = Path(__file__).parent / 'sql' / 'schema.sql'

KEEPALIVE_INTERVAL_SECONDS = 300

# Each save fans out one connection per album/artist row, so leave headroom
POOL_MIN_SIZE = int(os.environ.get('DB_POOL_MIN_SIZE', '2'))
POOL_MAX_SIZE = int(os.environ.get('DB_POOL_MAX_SIZE', '8'))

CONNECTION_KWARGS = {
    'row_factory': dict_row,
    'autocommit': False,
    'prepare_threshold': None,
}


def _describe_target():
    if os.environ.get('DATABASE_URL'):
        return 'DATABASE_URL'
    return "{user}@{host}:{port}/{dbname}".format(**DB_SETTINGS)


# ============================================================================
# POOLED MODE (Flask workers)
# ============================================================================

pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()
_keepalive_thread: Optional[threading.Thread] = None
_keepalive_stop = threading.Event()


def _open_pool():
    new_pool = ConnectionPool(
        DATABASE_URL,
        min_size=POOL_MIN_SIZE,
        max_size=POOL_MAX_SIZE,
        open=True,
        timeout=30,
        max_lifetime=1800,
        max_idle=600,
        kwargs={
            **CONNECTION_KWARGS,
            'connect_timeout': 10,
            'keepalives': 1,
            'keepalives_idle': 30,
            'options': '-c statement_timeout=30000',
        }
    )
    with new_pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT pg_backend_pid() AS pid")
            logger.info(f"Connection pool ready (backend PID {cur.fetchone()['pid']})")
    return new_pool


def init_connection_pool(max_retries=3, retry_delay=2):
    """
    Open the pool if it is not open yet

    Returns:
        bool: True when a usable pool exists
    """
    if not USE_POOLING:
        return True

    global pool

    with _pool_lock:
        if pool is not None:
            return True

        for attempt in range(1, max_retries + 1):
            logger.info(f"Opening connection pool to {_describe_target()} (attempt {attempt}/{max_retries})")
            try:
                pool = _open_pool()
                return True
            except psycopg.Error as e:
                logger.error(f"Connection pool failed to open: {e}")
                if attempt < max_retries:
                    time.sleep(retry_delay * attempt)

        logger.error("Giving up on the connection pool")
        return False


def close_connection_pool():
    if not USE_POOLING:
        return

    global pool

    with _pool_lock:
        if pool is None:
            return
        try:
            pool.close()
            logger.info("Connection pool closed")
        except psycopg.Error as e:
            logger.error(f"Error closing connection pool: {e}")
        pool = None


def reset_connection_pool():
    """Drop the pool after the server went away; the next request reopens it"""
    logger.warning("Resetting connection pool")
    close_connection_pool()
    return init_connection_pool()


def get_pool_stats():
    """Size / available / waiting counts, or None outside pooled mode"""
    if not USE_POOLING or pool is None:
        return None

    stats = pool.get_stats()
    return {
        'pool_size': stats.get('pool_size', 0),
        'pool_available': stats.get('pool_available', 0),
        'requests_waiting': stats.get('requests_waiting', 0),
    }


def _keepalive_loop():
    while not _keepalive_stop.wait(KEEPALIVE_INTERVAL_SECONDS):
        if pool is None:
            continue
        try:
            with pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            logger.debug(f"Keepalive ok, pool stats: {get_pool_stats()}")
        except psycopg.Error as e:
            logger.warning(f"Keepalive ping failed: {e}")


def start_keepalive_thread():
    if not USE_POOLING:
        return

    global _keepalive_thread

    if _keepalive_thread is not None and _keepalive_thread.is_alive():
        return
    _keepalive_stop.clear()
    _keepalive_thread = threading.Thread(target=_keepalive_loop, name='db-keepalive', daemon=True)
    _keepalive_thread.start()
    logger.info("Database keepalive thread started")


def stop_keepalive_thread():
    if not USE_POOLING or _keepalive_thread is None:
        return

    _keepalive_stop.set()
    _keepalive_thread.join(timeout=5)
    logger.info("Database keepalive thread stopped")


# ============================================================================
# CONNECTIONS
# ============================================================================

@contextmanager
def _pooled_connection():
    if pool is None and not init_connection_pool():
        raise RuntimeError("Database connection pool is unavailable")

    try:
        with pool.connection() as conn:
            yield conn
    except psycopg.OperationalError as e:
        logger.error(f"Database operational error: {e}")
        if 'server closed the connection unexpectedly' in str(e).lower():
            reset_connection_pool()
        raise


@contextmanager
def _simple_connection():
    try:
        conn = psycopg.connect(DATABASE_URL, **CONNECTION_KWARGS)
    except psycopg.OperationalError as e:
        logger.error(f"Failed to connect to {_describe_target()}: {e}")
        raise

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_db_connection():
    """
    Context manager yielding a connection with dict rows

    Usage:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
            conn.commit()

    In pooled mode the pool rolls back anything left uncommitted when the
    connection is returned, so callers commit explicitly.
    """
    return _pooled_connection() if USE_POOLING else _simple_connection()


# ============================================================================
# HELPERS
# ============================================================================

def execute_query(query, params=None, fetch_one=False):
    """
    Run a read-only query

    Returns:
        One row (fetch_one) or the list of rows
    """
    started = time.time()
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, params)
            result = cur.fetchone() if fetch_one else cur.fetchall()
    logger.debug(f"Query executed in {time.time() - started:.3f}s")
    return result


def apply_schema(schema_path=SCHEMA_PATH):
    """
    Run every statement of the schema file

    Statements are split on ';', so the file must not contain function
    bodies. Every statement is IF NOT EXISTS.

    Returns:
        Number of statements executed
    """
    sql = Path(schema_path).read_text(encoding='utf-8')
    statements = [s.strip() for s in sql.split(';') if s.strip()]

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            for statement in statements:
                cur.execute(statement)
        conn.commit()

    logger.info(f"Applied {len(statements)} schema statements from {schema_path}")
    return len(statements)


def test_connection():
    """
    Log which database we are talking to

    Returns:
        bool: True when a query succeeded
    """
    logger.info(f"Connecting to {_describe_target()} ({'pooled' if USE_POOLING else 'simple'} mode)")
    try:
        row = execute_query("SELECT current_database() AS db, current_user AS usr, version() AS version",
                            fetch_one=True)
    except (psycopg.Error, RuntimeError) as e:
        logger.error(f"Connection test failed: {e}")
        return False

    logger.info(f"Connected to {row['db']} as {row['usr']} ({row['version'].split(',')[0]})")
    return True
