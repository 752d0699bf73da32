"""
Ingest orchestration: resolve → download → extract → parse → compose →
persist → index → embed, for one schedule.

Every collaborator is injected so tests (and the admin endpoint) can swap in
fakes; defaults are built from ``AppConfig``. Each stage runs inside a
``StepReport``; when a ``PipelineLogger`` is supplied the stage also gets its
own log file under the run directory.

The relational write commits before the Elasticsearch write starts. An index
failure therefore propagates to the caller while the SQLite documents stay
in place; the two stores are not transactionally coupled.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator

import requests

from downloader.archive import extract_csv_entries
from downloader.resolver import ResolvedSchedule, ScheduleResolver, download_schedule
from pipeline.compose import build_docs_from_tables
from pipeline.embed import embed_missing_docs
from pipeline.logging import PipelineLogger, StepReport
from pipeline.parse import parse_csv_table
from pipeline.upsert import upsert_schedule_and_docs
from search.elasticsearch import ElasticsearchIndexWriter
from utils.config import AppConfig
from utils.http import SessionManager

logger = logging.getLogger(__name__)

STEPS = ("resolve", "download", "extract", "parse", "compose", "persist", "index", "embed")


@dataclass
class IngestResult:
    schedule_code: str
    docs: int
    source_url: str = ""
    index_name: str | None = None

    def to_dict(self) -> dict:
        return {"scheduleCode": self.schedule_code, "docs": self.docs}


class IngestPipeline:
    """Run one ingest for a target month."""

    def __init__(self, conn: sqlite3.Connection, config: AppConfig | None = None,
                 resolver: ScheduleResolver | None = None,
                 index_writer: ElasticsearchIndexWriter | None = None,
                 session: requests.Session | None = None,
                 pipeline_logger: PipelineLogger | None = None):
        self.conn = conn
        self.config = config or AppConfig.from_env()
        self._session_manager = None
        if session is None:
            self._session_manager = SessionManager()
            session = self._session_manager.session
        self.session = session
        # Collaborators built here are closed by close(); injected ones are not
        self._owned: list = []
        if resolver is None:
            resolver = ScheduleResolver(self.config)
            self._owned.append(resolver)
        if index_writer is None:
            index_writer = ElasticsearchIndexWriter.from_config(self.config)
            self._owned.append(index_writer)
        self.resolver = resolver
        self.index_writer = index_writer
        self.pipeline_logger = pipeline_logger
        self.reports: dict[str, StepReport] = {}

    def close(self) -> None:
        for collaborator in self._owned:
            collaborator.close()
        self._owned.clear()
        if self._session_manager is not None:
            self._session_manager.close()

    @contextmanager
    def _step(self, name: str) -> Iterator[StepReport]:
        if self.pipeline_logger is not None:
            report = self.pipeline_logger.start_step(name)
        else:
            report = StepReport(step_name=name, status="started")
        self.reports[name] = report
        try:
            yield report
        except Exception as exc:
            report.status = "failed"
            report.add_error(str(exc))
            raise
        finally:
            if self.pipeline_logger is not None:
                self.pipeline_logger.finish_step(name, report)
            elif report.status == "started":
                report.status = "completed"

    def run(self, target_date: date | None = None,
            lookback_months: int | None = None) -> IngestResult:
        """Ingest the schedule nearest to *target_date* (default: latest published).

        Raises:
            ScheduleResolutionError, ScheduleDownloadError, ArchiveError,
            TableParseError, MissingTableError, PersistenceError, IndexWriteError
        """
        with self._step("resolve") as report:
            resolved: ResolvedSchedule = self.resolver.resolve(
                target_date, lookback_months, prefer_scrape=target_date is None,
            )
            report.items_processed = 1
            report.detail = f"{resolved.schedule_code} <- {resolved.url}"

        code = resolved.schedule_code

        with self._step("download") as report:
            archive = download_schedule(resolved.url, self.session, self.config.http_timeout)
            report.items_processed = 1
            report.metrics["bytes"] = len(archive)

        with self._step("extract") as report:
            entries = extract_csv_entries(archive)
            report.items_processed = len(entries)

        with self._step("parse") as report:
            tables = []
            for entry in entries:
                table = parse_csv_table(entry.contents, entry.path)
                tables.append(table)
                report.metrics[table.stem] = len(table.rows)
            report.items_processed = len(tables)

        with self._step("compose") as report:
            docs = build_docs_from_tables(tables, code, report=report)

        with self._step("persist") as report:
            persisted = upsert_schedule_and_docs(
                self.conn, resolved, docs, chunk_size=self.config.insert_chunk_size,
            )
            report.items_processed = persisted

        with self._step("index") as report:
            index_name = self.index_writer.index_schedule(docs, code)
            if index_name is None:
                report.status = "skipped"
                report.add_skip("config_skip", "ELASTICSEARCH_URL not set")
            else:
                report.items_processed = len(docs)
                report.detail = index_name

        with self._step("embed") as report:
            report.items_processed = embed_missing_docs(
                self.conn, code, self.config.embeddings_provider,
            )

        logger.info("Ingested schedule %s: %d documents", code, persisted)
        return IngestResult(code, persisted, source_url=resolved.url, index_name=index_name)
