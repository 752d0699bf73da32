#!/usr/bin/env python3
"""
Start the PBS Search API with uvicorn.

Usage:
    python main.py                       # http://127.0.0.1:8000
    python main.py --host 0.0.0.0 --port 9000
    python main.py --db data/pbs_search.sqlite
    python main.py --reload              # development: restart on code changes

Host, port and database default to APP_HOST, APP_PORT and APP_DB_PATH.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn

from api.app import configure_logging
from utils.config import AppConfig


def _parse_args(config: AppConfig, argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve PBS schedule search over HTTP.")
    parser.add_argument("--host", default=config.api_host,
                        help=f"Bind address (default: {config.api_host})")
    parser.add_argument("--port", type=int, default=config.api_port,
                        help=f"Listen port (default: {config.api_port})")
    parser.add_argument("--db", type=Path, default=None,
                        help=f"SQLite database (default: {config.db_path})")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server when source files change")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    config = AppConfig.from_env()
    args = _parse_args(config, argv)

    # uvicorn builds the app in its own worker; hand the path over via the env
    db_path = args.db or config.db_path
    os.environ["APP_DB_PATH"] = str(db_path)
    if not db_path.exists():
        print(f"No database at {db_path} yet.")
        print("  Build one with 'python run_ingest.py latest' (search returns 503 until then).\n")

    configure_logging(config.log_format)
    print(f"PBS Search API on http://{args.host}:{args.port}  (database: {db_path})\n")
    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
