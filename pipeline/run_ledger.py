"""
Cross-run ingest history.

``run_ingest.py`` appends one compact JSON object per run to
``<logs_dir>/ledger.jsonl``, failed runs included, so the schedules ingested
over time can be read back with ``jq`` or ``json.loads`` per line without
opening every run directory.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pipeline.logging import PipelineLogger, StepReport

LEDGER_NAME = "ledger.jsonl"


def _step_entry(report: StepReport) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "status": report.status,
        "elapsed": round(report.elapsed_seconds, 1),
        "processed": report.items_processed,
        "skipped": report.items_skipped,
        "errored": report.items_errored,
    }
    if report.skip_counts:
        entry["skip_categories"] = report.skip_counts_by_category()
    return entry


def append_to_ledger(
    pl: PipelineLogger,
    exit_code: int,
    ledger_path: Path | None = None,
    results: list[dict[str, Any]] | None = None,
    error: str | None = None,
) -> Path:
    """Append this run's record and return the ledger path.

    *results* holds one ``{"scheduleCode", "docs"}`` mapping per schedule
    ingested; *error* is the message of the exception that ended the run.
    """
    path = ledger_path or pl.logs_root / LEDGER_NAME
    record: dict[str, Any] = {
        "run_id": pl.run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_seconds": round(time.monotonic() - pl.pipeline_start, 1),
        "exit_code": exit_code,
        "args": pl.args_dict,
        "schedules": results or [],
        "steps": {key: _step_entry(report) for key, report in pl.get_reports().items()},
    }
    if error:
        record["error"] = error

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as ledger:
        ledger.write(json.dumps(record, separators=(",", ":")) + "\n")
    return path
