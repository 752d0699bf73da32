"""
Pytest fixtures for the PBS search tests.

Provides reusable fixtures: a small schedule (items, restrictions, link
table) as CSV text, a zip archive builder, an in-memory migrated database,
an isolated ``AppConfig`` and a database pre-loaded with composed documents.

Fixture schedule (2024-07):

    items          10227Y Adalimumab/Humira, 11616J Adalimumab/Amgevita,
                   2622B Methotrexate/Methoblastin
    restrictions   R14470  rheumatoid arthritis, streamlined, initial treatment
                   R5000   no text in any field          -> empty_restriction skip
                   R9999   giant cell arteritis, no authority/phase -> title fallback
    links          R14470->10227Y, R14470->11616J          -> one document
                   R9999->2622B                            -> one document
                   R5000->2622B                            -> skipped (empty text)
                   R14470->99999X, R7777->2622B            -> skipped (dangling)
"""

import io
import sys
import zipfile
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from downloader.resolver import ResolvedSchedule  # noqa: E402
from pipeline.compose import build_docs_from_tables  # noqa: E402
from pipeline.parse import parse_csv_table  # noqa: E402
from pipeline.upsert import upsert_schedule_and_docs  # noqa: E402
from utils.config import AppConfig  # noqa: E402
from utils.database import connect, migrate  # noqa: E402

SCHEDULE_CODE = "2024-07"
SCHEDULE_URL = "https://example.test/downloads/2024/07/2024-07-01-PBS-API-CSV.zip"

ITEMS_CSV = """\
pbs_code,drug_name,brand_name,li_form,program_code,hospital_type
10227Y,Adalimumab,Humira,Injection 40 mg in 0.4 mL pre-filled pen,GE,
11616J,Adalimumab,Amgevita,Injection 40 mg in 0.8 mL pre-filled syringe,GE,
2622B,Methotrexate,Methoblastin,Tablet 10 mg,GE,null
"""

RESTRICTIONS_CSV = """\
res_code,restriction_number,li_html_text,schedule_html_text,authority_method,treatment_phase
R14470,14470,"<p>Severe active <b>rheumatoid arthritis</b> in a patient who has failed methotrexate</p>",,Authority Required (STREAMLINED),Initial treatment
R5000,5000,,   ,Authority Required,Continuing treatment
R9999,9999,,"<p>Giant&nbsp;cell arteritis</p>",,
"""

LINKS_CSV = """\
res_code,pbs_code
R14470,10227Y
R14470,11616J
R9999,2622B
R5000,2622B
R14470,99999X
R7777,2622B
"""

# At least one env var per AppConfig attribute a test could depend on
_CONFIG_ENV_VARS = (
    "APP_DB_PATH", "APP_HOST", "APP_PORT", "APP_LOG_FORMAT", "APP_CORS_ORIGINS",
    "ADMIN_INGEST_TOKEN", "PBS_DOWNLOAD_BASE", "PBS_DOWNLOAD_PAGE",
    "PBS_DOWNLOAD_MARKER", "PBS_LOOKBACK_MONTHS", "PBS_HTTP_TIMEOUT",
    "PBS_INSERT_CHUNK_SIZE", "SEARCH_BACKEND", "SEARCH_DEFAULT_LIMIT",
    "SEARCH_MAX_LIMIT", "SEARCH_MIN_SIMILARITY", "ELASTICSEARCH_URL",
    "ELASTICSEARCH_API_KEY", "ELASTICSEARCH_INDEX", "EMBEDDINGS_PROVIDER",
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def build_zip(entries: dict[str, str | bytes]) -> bytes:
    """Zip *entries* (archive path -> text or bytes) in memory."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, contents in entries.items():
            zf.writestr(name, contents)
    return buf.getvalue()


def fixture_tables(items: str = ITEMS_CSV, restrictions: str = RESTRICTIONS_CSV,
                   links: str = LINKS_CSV) -> list:
    """Parsed tables named the way the archive names them."""
    return [
        parse_csv_table(items, "tables/items.csv"),
        parse_csv_table(restrictions, "tables/restrictions.csv"),
        parse_csv_table(links, "tables/item_restriction_relationships.csv"),
    ]


def fixture_archive(**overrides: str) -> bytes:
    entries = {
        "tables/items.csv": ITEMS_CSV,
        "tables/restrictions.csv": RESTRICTIONS_CSV,
        "tables/item_restriction_relationships.csv": LINKS_CSV,
        "README.txt": "not a table",
    }
    entries.update(overrides)
    return build_zip(entries)


def resolved(code: str = SCHEDULE_CODE, url: str = SCHEDULE_URL) -> ResolvedSchedule:
    year, month = code.split("-")
    return ResolvedSchedule(code, date(int(year), int(month), 1), url)


def make_config(**overrides) -> AppConfig:
    """AppConfig from defaults plus *overrides* (env is cleared by ``clean_env``)."""
    return AppConfig.from_dict(overrides)


def load_schedule(conn, code: str = SCHEDULE_CODE) -> list:
    """Compose the fixture tables for *code* and persist them; returns the docs."""
    docs = build_docs_from_tables(fixture_tables(), code)
    upsert_schedule_and_docs(conn, resolved(code), docs)
    return docs


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of every AppConfig."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def config():
    return make_config(download_base="https://example.test/downloads",
                       download_page="https://example.test/info/browse/download")


@pytest.fixture()
def db():
    """In-memory database with the schema applied."""
    conn = connect(":memory:")
    migrate(conn)
    yield conn
    conn.close()


@pytest.fixture()
def loaded_db(db):
    """``db`` with the fixture schedule composed and persisted."""
    load_schedule(db)
    return db


@pytest.fixture()
def db_file(tmp_path):
    """On-disk database with the fixture schedule, for the API tests."""
    path = tmp_path / "pbs_search.sqlite"
    conn = connect(path)
    migrate(conn)
    load_schedule(conn)
    conn.close()
    return path
