"""
Request-scoped dependencies for the API.

``create_app()`` stores its collaborators on ``app.state`` (database path,
config, Elasticsearch search backend, ingest pipeline factory); the
dependencies below hand them to routes, so tests substitute any of them by
passing arguments to ``create_app()`` instead of patching globals.
"""

import sqlite3
from collections.abc import Generator
from pathlib import Path

from fastapi import Depends, HTTPException, Request

from search.query import QueryEngine
from utils.config import AppConfig
from utils.database import connect, migrate


def get_db_path(request: Request) -> Path:
    """Return the configured database path."""
    return request.app.state.db_path


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def _open(db_path: Path) -> sqlite3.Connection:
    conn = connect(db_path, check_same_thread=False)
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def get_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency: yield a SQLite connection, close on exit.

    Raises HTTP 503 with a friendly message if the database file is missing,
    instead of letting SQLite create an empty one.

    Usage in a route::

        @router.get("/example")
        def example(conn=Depends(get_db)):
            ...
    """
    db_path = get_db_path(request)
    if not db_path.exists():
        raise HTTPException(
            status_code=503,
            detail=(
                f"Database not found at '{db_path}'. "
                "Run 'python run_ingest.py latest' to build it."
            ),
        )
    conn = _open(db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_write_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    """Like ``get_db`` but creates the database and schema when absent."""
    db_path = get_db_path(request)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _open(db_path)
    try:
        migrate(conn)
        yield conn
    finally:
        conn.close()


def get_engine(
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
    config: AppConfig = Depends(get_config),
) -> QueryEngine:
    """Query engine bound to the request's connection."""
    return QueryEngine(conn, config, external=request.app.state.es_search)
