"""
Ingest run logging: one directory per run, one log file per ingest step.

``PipelineLogger`` owns ``<logs_dir>/<run_id>/``. While a step is open its
file handler sits on the root logger, so everything the resolver, composer
or upserter logs during that step lands in ``<step>.log``; closing the step
appends a short footer and records the ``StepReport``. Backfill runs call
``begin_schedule`` before each month so reports and files are keyed
``2024-06/persist`` / ``2024-06_persist.log``.

Skip categories used by the ingest steps:

    missing_key         source row lacks its key or drug name
    dangling_reference  link row names an absent item or restriction
    empty_restriction   restriction has no text once markup is stripped
    config_skip         step disabled by configuration (no ELASTICSEARCH_URL)
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Skip events kept verbatim per step; skip_counts still covers all of them
MAX_SKIP_RECORDS = 200

# Error lines repeated in a step footer
FOOTER_ERROR_LINES = 20


@dataclass(frozen=True)
class SkipRecord:
    category: str
    detail: str
    item: str = ""   # "R14470/10227Y", a table stem, ...

    def to_dict(self) -> dict[str, str]:
        data = {"category": self.category, "detail": self.detail}
        if self.item:
            data["item"] = self.item
        return data


@dataclass
class StepReport:
    """What one ingest step did for one schedule.

    ``items_processed`` is step-specific (links folded, rows persisted,
    documents indexed); skips and errors are tallied by ``add_skip`` and
    ``add_error``.
    """

    step_name: str
    status: str = "pending"        # started | completed | failed | skipped
    items_processed: int = 0
    elapsed_seconds: float = 0.0
    skip_counts: Counter = field(default_factory=Counter)
    skips: list[SkipRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    detail: str = ""

    @property
    def items_skipped(self) -> int:
        return sum(self.skip_counts.values())

    @property
    def items_errored(self) -> int:
        return len(self.errors)

    def add_skip(self, category: str, detail: str, item: str = "") -> None:
        self.skip_counts[category] += 1
        if len(self.skips) < MAX_SKIP_RECORDS:
            self.skips.append(SkipRecord(category, detail, item))

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def skip_counts_by_category(self) -> dict[str, int]:
        return dict(sorted(self.skip_counts.items()))

    def console_summary(self) -> str:
        """e.g. ``"412 processed, 3 skipped (dangling reference: 3)"``."""
        pieces = []
        if self.items_processed:
            pieces.append(f"{self.items_processed:,} processed")
        if self.skip_counts:
            by_category = ", ".join(
                f"{category.replace('_', ' ')}: {count}"
                for category, count in self.skip_counts_by_category().items()
            )
            pieces.append(f"{self.items_skipped:,} skipped ({by_category})")
        if self.errors:
            pieces.append(f"{self.items_errored:,} error(s)")
        if self.detail:
            pieces.append(self.detail)
        return ", ".join(pieces) or "idle"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_name": self.step_name,
            "status": self.status,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "items_processed": self.items_processed,
            "items_skipped": self.items_skipped,
            "items_errored": self.items_errored,
            "metrics": self.metrics,
        }
        if self.detail:
            data["detail"] = self.detail
        if self.skip_counts:
            data["skip_counts"] = self.skip_counts_by_category()
            data["skips"] = [record.to_dict() for record in self.skips]
            dropped = self.items_skipped - len(self.skips)
            if dropped:
                data["skips_truncated"] = dropped
        if self.errors:
            data["errors"] = list(self.errors)
        return data

    def footer_lines(self, key: str) -> list[str]:
        lines = [
            f"-- {key}: {self.status} in {self.elapsed_seconds:.1f}s --",
            f"   processed={self.items_processed} skipped={self.items_skipped} "
            f"errors={self.items_errored}",
        ]
        lines += [f"   skip {category}={count}"
                  for category, count in self.skip_counts_by_category().items()]
        lines += [f"   error: {message}" for message in self.errors[:FOOTER_ERROR_LINES]]
        hidden = len(self.errors) - FOOTER_ERROR_LINES
        if hidden > 0:
            lines.append(f"   ({hidden} more errors not shown)")
        return lines


class PipelineLogger:
    """Per-run log directory for ingest runs.

    Layout::

        logs/ingest/2024-07-03T02-00-00/
            resolve.log  download.log  ...  embed.log
            summary.json
        logs/ingest/ledger.jsonl          (see pipeline.run_ledger)
    """

    LOG_FORMAT = "%(asctime)s  %(levelname)-7s  %(name)s  %(message)s"

    def __init__(self, logs_dir: Path | str = "logs/ingest") -> None:
        self.logs_root = Path(logs_dir)
        self.run_id = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        self.run_dir = self.logs_root / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.pipeline_start = time.monotonic()
        self.args_dict: dict[str, Any] = {}
        self.schedules: list[str] = []
        self._reports: dict[str, StepReport] = {}
        self._open: dict[str, tuple[logging.FileHandler, float]] = {}

    def begin_schedule(self, schedule_code: str) -> None:
        """Key the following steps under *schedule_code*."""
        self.schedules.append(schedule_code)

    def _key(self, step_name: str) -> str:
        return f"{self.schedules[-1]}/{step_name}" if self.schedules else step_name

    def start_step(self, step_name: str) -> StepReport:
        key = self._key(step_name)
        handler = logging.FileHandler(self.run_dir / f"{key.replace('/', '_')}.log",
                                      encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(self.LOG_FORMAT, datefmt="%H:%M:%S"))
        logging.getLogger().addHandler(handler)
        self._open[key] = (handler, time.monotonic())

        report = self._reports[key] = StepReport(step_name, status="started")
        return report

    def finish_step(self, step_name: str, report: StepReport | None = None) -> None:
        key = self._key(step_name)
        handler, started = self._open.pop(key, (None, self.pipeline_start))
        report = report or self._reports.get(key) or StepReport(step_name)
        report.elapsed_seconds = time.monotonic() - started
        if report.status == "started":
            report.status = "completed"
        self._reports[key] = report

        if report.skip_counts or report.errors:
            print(f"  [{key}] {report.console_summary()}", flush=True)

        if handler is not None:
            handler.stream.write("\n" + "\n".join(report.footer_lines(key)) + "\n")
            logging.getLogger().removeHandler(handler)
            handler.close()

    def get_reports(self) -> dict[str, StepReport]:
        return dict(self._reports)

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.json"

    def write_summary(self) -> Path:
        """Dump every step report of this run to ``summary.json``."""
        summary = {
            "run_id": self.run_id,
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "elapsed_seconds": round(time.monotonic() - self.pipeline_start, 2),
            "args": self.args_dict,
            "schedules": self.schedules,
            "steps": {key: report.to_dict() for key, report in self._reports.items()},
        }
        self.summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return self.summary_path
