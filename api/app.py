"""
FastAPI application factory for PBS search.

Usage:
    python -m api.app                          # dev server, reload on
    APP_DB_PATH=/data/pbs.sqlite python -m api.app

Collaborators live on ``app.state`` and are injected through ``create_app()``;
tests build one app per case with a temp database, a config object and fake
backends.

    app.state.db_path         SQLite file the read routes open per request
    app.state.config          AppConfig (limits, tokens, backend selector)
    app.state.es_search       ElasticsearchSearch or None
    app.state.ingest_factory  (conn, config) -> IngestPipeline

Request lines are logged as text, or as JSON objects when APP_LOG_FORMAT=json.
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import doc, ingest, schedules, search
from pipeline.ingest import IngestPipeline
from search.elasticsearch import ElasticsearchSearch
from utils.config import AppConfig
from utils.database import connect, get_table_count

_logger = logging.getLogger("pbs_search_api")

API_PREFIX = "/api"
SLOW_REQUEST_MS = 500
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "client_ip", "request_id")

DESCRIPTION = """\
Search the monthly Pharmaceutical Benefits Scheme schedule by drug, brand,
condition or restriction wording.

* **Schedule**: one monthly publication (`YYYY-MM`); searches default to the latest.
* **Document**: one drug under one restriction, with every PBS item code, brand
  and form that shares it.
* **Ranking** falls through external engine, full-text, prefix, then fuzzy
  matching; each result names its `stage`.
* Clinical abbreviations (`RA`, `PsA`, `GCA`, ...) are expanded before matching.
"""

OPENAPI_TAGS = [
    {"name": "search", "description": "Tiered hybrid search."},
    {"name": "documents", "description": "Composed documents with provenance."},
    {"name": "schedules", "description": "Ingested schedules and the latest one."},
    {"name": "admin", "description": "Token-protected ingest trigger."},
    {"name": "meta", "description": "Health check."},
]


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, request fields included when present."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update({k: getattr(record, k) for k in REQUEST_FIELDS if hasattr(record, k)})
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data)


def configure_logging(log_format: str = "text") -> None:
    """Route the root logger to stderr as text or JSON lines."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        _JsonFormatter() if log_format == "json"
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    logging.basicConfig(handlers=[handler], level=logging.INFO, force=True)


def _default_ingest_factory(conn, config: AppConfig) -> IngestPipeline:
    return IngestPipeline(conn, config)


def health_payload(db_path: Path) -> tuple[int, dict[str, Any]]:
    """Status code and body for the health routes."""
    if not db_path.exists():
        return 503, {"status": "no_database", "database": str(db_path)}
    try:
        conn = connect(db_path)
        try:
            documents = get_table_count(conn, "pbs_doc")
        finally:
            conn.close()
    except Exception as exc:  # unreadable file, missing schema, ...
        return 503, {"status": "degraded", "database": str(db_path), "error": str(exc)}
    return 200, {"status": "ok", "database": str(db_path), "documents": documents}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not app.state.db_path.exists():
        _logger.warning("No database at %s yet; run 'python run_ingest.py latest'.",
                        app.state.db_path)
    yield
    if app.state.es_search is not None:
        app.state.es_search.client.close()


def _install_request_logging(app: FastAPI, log_format: str) -> None:
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = uuid.uuid4().hex[:8]
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        fields = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 1),
            "client_ip": request.client.host if request.client else "unknown",
            "request_id": request_id,
        }
        if log_format == "json":
            _logger.info("request", extra=fields)
        else:
            _logger.info(" ".join(f"{k}={v}" for k, v in fields.items()))
        if duration_ms > SLOW_REQUEST_MS:
            _logger.warning("slow request %s %s took %.0f ms",
                            request.method, request.url.path, duration_ms)
        return response


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError):
        return JSONResponse(status_code=400,
                            content={"error": "Bad request", "detail": str(exc)})

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        _logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500,
                            content={"error": "Internal server error", "detail": str(exc)})


def create_app(
    db_path: Path | None = None,
    config: AppConfig | None = None,
    es_search: ElasticsearchSearch | None = None,
    ingest_factory: Callable | None = None,
) -> FastAPI:
    """Build the API.

    Args:
        db_path: Database file (default: ``config.db_path``).
        config: Application config (default: read from the environment).
        es_search: External search backend; built from config when omitted
            and ``SEARCH_BACKEND=elasticsearch``.
        ingest_factory: ``(conn, config) -> pipeline`` used by the admin endpoint.
    """
    cfg = config or AppConfig.from_env()
    if es_search is None and cfg.uses_external_engine:
        es_search = ElasticsearchSearch.from_config(cfg)

    app = FastAPI(
        title="PBS Search API",
        summary="Free-text search over Pharmaceutical Benefits Scheme restrictions.",
        description=DESCRIPTION,
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.config = cfg
    app.state.db_path = Path(db_path) if db_path is not None else cfg.db_path
    app.state.es_search = es_search
    app.state.ingest_factory = ingest_factory or _default_ingest_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    _install_request_logging(app, cfg.log_format)
    _install_error_handlers(app)

    @app.get("/health", tags=["meta"], summary="Database reachability and document count")
    def health():
        status, body = health_payload(app.state.db_path)
        return JSONResponse(status_code=status, content=body)

    app.add_api_route(f"{API_PREFIX}/health", health, methods=["GET"],
                      include_in_schema=False)
    for module in (search, doc, schedules, ingest):
        app.include_router(module.router, prefix=API_PREFIX)

    return app


if __name__ == "__main__":
    import uvicorn

    _cfg = AppConfig.from_env()
    configure_logging(_cfg.log_format)
    uvicorn.run("api.app:create_app", factory=True, host=_cfg.api_host,
                port=_cfg.api_port, reload=True, log_level="info")
