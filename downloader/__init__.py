"""
PBS Schedule Downloader Package.

Resolves the monthly Pharmaceutical Benefits Scheme schedule archive for a
target month, downloads it and unpacks its CSV tables.
"""

from downloader.archive import ExtractedEntry, extract_csv_entries
from downloader.resolver import (
    ResolvedSchedule,
    ScheduleResolver,
    candidate_urls,
    download_schedule,
    find_archive_link,
    first_of_month,
    months_back,
    schedule_code_for,
)

__all__ = [
    "ExtractedEntry",
    "extract_csv_entries",
    "ResolvedSchedule",
    "ScheduleResolver",
    "candidate_urls",
    "download_schedule",
    "find_archive_link",
    "first_of_month",
    "months_back",
    "schedule_code_for",
]
