"""Configuration management utilities for the PBS search tools.

Provides:
- A small ``Config`` base class with dict/JSON round-tripping
- ``AppConfig``: every recognised environment variable in one place

──────────────────────────────────────────────────────────────────────────────
Recognised environment variables
──────────────────────────────────────────────────────────────────────────────

    APP_DB_PATH            SQLite database file (default: pbs_search.sqlite)
    APP_HOST / APP_PORT    API bind address (default: 127.0.0.1:8000)
    APP_LOG_FORMAT         "text" or "json" (default: text)
    APP_CORS_ORIGINS       Comma-separated allowed origins (default: *)
    ADMIN_INGEST_TOKEN     Shared secret for POST /api/admin/ingest (unset = open)
    PBS_DOWNLOAD_BASE      Base URL the archive filename templates hang off
    PBS_DOWNLOAD_PAGE      HTML downloads page scraped as a fallback
    PBS_DOWNLOAD_MARKER    Link text/title marker identifying the CSV archive
    PBS_LOOKBACK_MONTHS    Months to probe backwards (default: 6)
    PBS_HTTP_TIMEOUT       Per-request timeout in seconds (default: 15)
    PBS_INSERT_CHUNK_SIZE  Rows per multi-row INSERT (default: derived)
    SEARCH_BACKEND         "sqlite" or "elasticsearch" (default: sqlite)
    SEARCH_DEFAULT_LIMIT   Results when the caller gives no limit (default: 20)
    SEARCH_MAX_LIMIT       Hard cap on results per request (default: 200)
    SEARCH_MIN_SIMILARITY  Similarity floor for the fuzzy stage (default: 0.0)
    ELASTICSEARCH_URL      External engine node URL (unset = disabled)
    ELASTICSEARCH_API_KEY  API key sent as "Authorization: ApiKey ..."
    ELASTICSEARCH_INDEX    Index base name (default: pbs-docs)
    EMBEDDINGS_PROVIDER    Embedding provider for the (stubbed) vector hook
"""

import json
import os
from pathlib import Path
from typing import Any, Dict


DEFAULT_DOWNLOAD_BASE = "https://www.pbs.gov.au/downloads"
DEFAULT_DOWNLOAD_PAGE = "https://www.pbs.gov.au/info/browse/download"
DEFAULT_DOWNLOAD_MARKER = "API CSV"

USER_AGENT = "pbs-search/1.0 (+https://www.pbs.gov.au)"

SEARCH_BACKENDS = ("sqlite", "elasticsearch")


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    """Read an integer env var, falling back to *default* when unparsable."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Config:
    """Base configuration class for organizing application settings."""

    # Attributes written as "***" by save_json
    SECRET_FIELDS: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary of all config attributes
        """
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary.

        Values not present in *data* keep their defaults.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance with values from dictionary
        """
        config = cls()
        for key, value in data.items():
            setattr(config, key, value)
        return config

    def save_json(self, path: Path) -> None:
        """Save configuration to JSON file, secrets masked."""
        data = {
            k: ("***" if k in self.SECRET_FIELDS and v else v)
            for k, v in self.to_dict().items()
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)


class AppConfig(Config):
    """Application-level configuration loaded from environment variables.

    All env vars have defaults so the application works out of the box
    against the public PBS download site and a local SQLite file.
    """

    SECRET_FIELDS = ("admin_token", "es_api_key")

    def __init__(self) -> None:
        super().__init__()
        # Storage / API
        self.db_path = Path(os.getenv("APP_DB_PATH", "pbs_search.sqlite"))
        self.api_host = os.getenv("APP_HOST", "127.0.0.1")
        self.api_port = _env_int("APP_PORT", 8000)
        self.log_format = os.getenv("APP_LOG_FORMAT", "text")
        raw_origins = os.getenv("APP_CORS_ORIGINS", "*")
        self.cors_origins: list[str] = (
            ["*"] if raw_origins == "*"
            else [o.strip() for o in raw_origins.split(",") if o.strip()]
        )
        self.admin_token: str | None = os.getenv("ADMIN_INGEST_TOKEN") or None

        # Schedule resolution / download
        self.download_base = os.getenv("PBS_DOWNLOAD_BASE", DEFAULT_DOWNLOAD_BASE).rstrip("/")
        self.download_page = os.getenv("PBS_DOWNLOAD_PAGE", DEFAULT_DOWNLOAD_PAGE)
        self.download_marker = os.getenv("PBS_DOWNLOAD_MARKER", DEFAULT_DOWNLOAD_MARKER)
        self.lookback_months = _env_int("PBS_LOOKBACK_MONTHS", 6, minimum=0)
        self.http_timeout = _env_float("PBS_HTTP_TIMEOUT", 15.0)
        self.insert_chunk_size = _env_int("PBS_INSERT_CHUNK_SIZE", 0, minimum=0) or None

        # Search
        backend = os.getenv("SEARCH_BACKEND", "sqlite").strip().lower()
        self.search_backend = backend if backend in SEARCH_BACKENDS else "sqlite"
        self.search_default_limit = _env_int("SEARCH_DEFAULT_LIMIT", 20, minimum=1)
        self.search_max_limit = _env_int("SEARCH_MAX_LIMIT", 200, minimum=1)
        self.min_similarity = _env_float("SEARCH_MIN_SIMILARITY", 0.0)

        # External search engine
        self.es_url: str | None = (os.getenv("ELASTICSEARCH_URL") or "").rstrip("/") or None
        self.es_api_key: str | None = os.getenv("ELASTICSEARCH_API_KEY") or None
        self.es_index = os.getenv("ELASTICSEARCH_INDEX", "pbs-docs")

        # Semantic hook
        self.embeddings_provider: str | None = os.getenv("EMBEDDINGS_PROVIDER") or None

    @property
    def es_alias(self) -> str:
        """Stable alias that queries target."""
        return f"{self.es_index}-current"

    @property
    def uses_external_engine(self) -> bool:
        return self.search_backend == "elasticsearch" and bool(self.es_url)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create an AppConfig instance populated from environment variables."""
        return cls()
