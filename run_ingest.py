"""
Ingest runner -- resolves, downloads and indexes PBS schedules.

Steps per schedule (see ``pipeline.ingest.STEPS``):
  resolve -> download -> extract -> parse -> compose -> persist -> index -> embed

Features:
  - Per-step log files under logs/ingest/<run-id>/ with skip accounting
  - Append-only JSONL ledger for cross-run history
  - Backfill walks months oldest first, so the search alias ends on the
    newest schedule

Usage:
    python run_ingest.py latest                   # newest published schedule
    python run_ingest.py month 2024-07-01         # schedule for July 2024
    python run_ingest.py month 2024-07-01 --lookback 3
    python run_ingest.py backfill --months 12     # last 12 monthly schedules
    python run_ingest.py migrate                  # create/upgrade the schema only
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from downloader.resolver import first_of_month, months_back, schedule_code_for
from pipeline.ingest import IngestPipeline, IngestResult
from pipeline.logging import PipelineLogger
from pipeline.run_ledger import append_to_ledger
from utils.config import AppConfig
from utils.database import connect, migrate
from utils.errors import PbsSearchError, ScheduleResolutionError

logger = logging.getLogger("run_ingest")


def _banner(text: str) -> None:
    bar = "=" * 60
    print(f"\n{bar}")
    print(f"  {text}")
    print(f"{bar}\n", flush=True)


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Ingest PBS schedules into SQLite (and Elasticsearch when configured).",
    )
    p.add_argument(
        "--db", default=None,
        help="Database path (default: APP_DB_PATH or pbs_search.sqlite)",
    )
    p.add_argument(
        "--logs-dir", default="logs/ingest",
        help="Root directory for per-run step logs (default: logs/ingest)",
    )
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("latest", help="Ingest the newest published schedule")

    month = sub.add_parser("month", help="Ingest the schedule for the month of DATE")
    month.add_argument("date", type=_iso_date, help="Any date in the target month (YYYY-MM-DD)")
    month.add_argument(
        "--lookback", type=int, default=None,
        help="Months to probe backwards when the target month is unpublished",
    )

    backfill = sub.add_parser("backfill", help="Ingest the last N monthly schedules")
    backfill.add_argument(
        "--months", type=int, required=True,
        help="Number of months to ingest, ending with the current month",
    )

    sub.add_parser("migrate", help="Create or upgrade the database schema and exit")
    return p.parse_args(argv)


def backfill_months(months: int, today: date | None = None) -> list[date]:
    """First-of-month dates for the last *months* months, oldest first."""
    if months < 1:
        raise ValueError("--months must be >= 1")
    start = first_of_month(today or date.today())
    return [months_back(start, offset) for offset in range(months - 1, -1, -1)]


def _finalize(pl: PipelineLogger, exit_code: int, results: list[IngestResult],
              error: str | None = None) -> None:
    """Write run summary JSON and append to the cross-run ledger."""
    summary_path = pl.write_summary()
    ledger_path = append_to_ledger(
        pl, exit_code, results=[r.to_dict() for r in results], error=error,
    )
    print(f"\n  Run logs : {pl.run_dir}", flush=True)
    print(f"  Summary  : {summary_path}", flush=True)
    print(f"  Ledger   : {ledger_path}", flush=True)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s", force=True)

    config = AppConfig.from_env()
    db_path = Path(args.db) if args.db else config.db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(db_path)
    try:
        applied = migrate(conn)
        if args.command == "migrate":
            print(f"Applied {applied} migration(s): {db_path}")
            return 0
        return _run(args, conn, config, db_path)
    finally:
        conn.close()


def _run(args: argparse.Namespace, conn, config: AppConfig, db_path: Path) -> int:
    pl = PipelineLogger(logs_dir=args.logs_dir)
    pl.args_dict = {
        k: (v.isoformat() if isinstance(v, date) else v)
        for k, v in vars(args).items()
        if v is not None
    }
    config.save_json(pl.run_dir / "config.json")

    print("\nPBS Ingest")
    print(f"  Database : {db_path}")
    print(f"  Command  : {args.command}")
    print(f"  Index    : {config.es_url or 'disabled'}")
    print(f"  Logs     : {pl.run_dir}")

    results: list[IngestResult] = []
    pipeline = IngestPipeline(conn, config, pipeline_logger=pl)
    try:
        if args.command == "latest":
            results.append(pipeline.run())
        elif args.command == "month":
            results.append(pipeline.run(args.date, args.lookback))
        else:
            for month in backfill_months(args.months):
                pl.begin_schedule(schedule_code_for(month))
                try:
                    results.append(pipeline.run(month, lookback_months=0))
                except ScheduleResolutionError as exc:
                    # Unpublished months are gaps, not failures
                    logger.warning("Skipping %s: %s", schedule_code_for(month), exc)
    except PbsSearchError as exc:
        logger.error("Ingest failed: %s", exc)
        _finalize(pl, 1, results, error=str(exc))
        return 1
    finally:
        pipeline.close()

    for result in results:
        print(f"  {result.schedule_code}: {result.docs:,} documents")
    _banner(f"Ingest complete -- {len(results)} schedule(s)")
    _finalize(pl, 0, results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
