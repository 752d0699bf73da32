"""Schedule resolution: which remote archive holds the schedule for a month.

The PBS publishes one zip of CSV tables per month, but the filename layout
has changed over the years. Resolution therefore probes a fixed list of
filename templates with HEAD requests, walking backwards month by month from
the target, and falls back to scraping the downloads page for a link to the
current archive.
"""

import logging
from dataclasses import dataclass
from datetime import date
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from utils.config import AppConfig
from utils.errors import ScheduleDownloadError, ScheduleResolutionError
from utils.http import PROBE_RETRY, SessionManager, fetch_bytes
from utils.patterns import API_CSV_ARCHIVE, SCHEDULE_DATE_TOKEN
from utils.strings import PARSER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSchedule:
    schedule_code: str
    effective_date: date
    url: str


def first_of_month(d: date) -> date:
    return date(d.year, d.month, 1)


def schedule_code_for(d: date) -> str:
    """Format a date as its schedule code.

    Example:
        date(2024, 7, 15) -> "2024-07"
    """
    return f"{d.year:04d}-{d.month:02d}"


def months_back(d: date, offset: int) -> date:
    """First day of the month *offset* months before *d*'s month."""
    index = d.year * 12 + (d.month - 1) - offset
    return date(index // 12, index % 12 + 1, 1)


def candidate_urls(base: str, schedule_code: str) -> list[str]:
    """Ordered download URL templates for one schedule, highest priority first.

    Duplicate templates (``{YYYY-MM}`` and ``{YYYY}-{MM}`` coincide for
    zero-padded months) are probed once.
    """
    base = base.rstrip("/")
    year, month = schedule_code.split("-")
    urls = [
        f"{base}/{year}/{month}/{schedule_code}-01-PBS-API-CSV.zip",
        f"{base}/{schedule_code}.zip",
        f"{base}/{year}-{month}.zip",
        f"{base}/{year}{month}.zip",
        f"{base}/{year}/{month}/pbs-{year}-{month}.zip",
        f"{base}/pbs-{year}-{month}.zip",
    ]
    return list(dict.fromkeys(urls))


def sanitize_href(href: str) -> str:
    """Collapse the relative ``/../`` segment the PBS site puts in archive links."""
    return href.replace("/../", "/")


def find_archive_link(html: str, page_url: str, marker: str) -> ResolvedSchedule | None:
    """Locate the schedule archive link on a downloads page.

    An anchor qualifies when its visible text or ``title`` attribute contains
    *marker* (case-insensitive), or when its href names the canonical
    ``...-PBS-API-CSV.zip`` archive. The first qualifying anchor whose path
    carries a ``YYYY-MM-DD`` token wins.
    """
    soup = BeautifulSoup(html, PARSER)
    marker_lower = marker.lower()

    for link in soup.find_all("a", href=True):
        href = sanitize_href(link["href"].strip())
        text = link.get_text(" ", strip=True).lower()
        title = (link.get("title") or "").lower()

        if not (marker_lower in text or marker_lower in title
                or API_CSV_ARCHIVE.search(href)):
            continue

        full_url = urljoin(page_url, href)
        match = SCHEDULE_DATE_TOKEN.search(urlparse(full_url).path)
        if not match:
            continue

        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            continue
        effective = date(year, month, 1)
        return ResolvedSchedule(schedule_code_for(effective), effective, full_url)

    return None


class ScheduleResolver:
    """Resolve the nearest published schedule at or before a target month."""

    def __init__(self, config: AppConfig | None = None,
                 session: requests.Session | None = None):
        self.config = config or AppConfig.from_env()
        self._session_manager = None
        if session is None:
            self._session_manager = SessionManager(retry_strategy=PROBE_RETRY)
            session = self._session_manager.session
        self.session = session

    def close(self) -> None:
        if self._session_manager is not None:
            self._session_manager.close()

    def _head_ok(self, url: str) -> bool:
        try:
            resp = self.session.head(url, timeout=self.config.http_timeout,
                                     allow_redirects=True)
        except requests.RequestException as exc:
            logger.debug("HEAD %s failed: %s", url, exc)
            return False
        return resp.ok

    def probe(self, target: date, lookback_months: int) -> ResolvedSchedule | None:
        """Walk offsets 0..lookback_months, returning the first reachable URL."""
        start = first_of_month(target)
        for offset in range(lookback_months + 1):
            month = months_back(start, offset)
            code = schedule_code_for(month)
            for url in candidate_urls(self.config.download_base, code):
                if self._head_ok(url):
                    logger.info("Resolved schedule %s via probe: %s", code, url)
                    return ResolvedSchedule(code, month, url)
            logger.debug("No archive reachable for %s", code)
        return None

    def scrape(self) -> ResolvedSchedule | None:
        """Scrape the downloads page for the current archive link."""
        page_url = self.config.download_page
        try:
            resp = self.session.get(page_url, timeout=self.config.http_timeout)
        except requests.RequestException as exc:
            logger.warning("Failed to fetch downloads page %s: %s", page_url, exc)
            return None
        if not resp.ok:
            logger.warning("Downloads page %s returned HTTP %s", page_url, resp.status_code)
            return None

        resolved = find_archive_link(resp.text, page_url, self.config.download_marker)
        if resolved is None:
            logger.warning("No schedule archive link found on %s", page_url)
        else:
            logger.info("Resolved schedule %s via scrape: %s",
                        resolved.schedule_code, resolved.url)
        return resolved

    def resolve(self, target_date: date | None = None,
                lookback_months: int | None = None,
                prefer_scrape: bool = False) -> ResolvedSchedule:
        """Resolve the schedule archive for *target_date* (default: today).

        With an explicit *target_date* only schedules from the look-back
        window (``target - lookback_months`` .. target month) are accepted; a
        scraped link to any other month counts as not found.

        Raises:
            ScheduleResolutionError: neither probing nor scraping found an archive.
        """
        target = target_date or date.today()
        lookback = self.config.lookback_months if lookback_months is None else lookback_months
        if lookback < 0:
            raise ValueError("lookback_months must be >= 0")

        def scrape_in_window() -> ResolvedSchedule | None:
            resolved = self.scrape()
            if resolved is None or target_date is None:
                return resolved
            newest = first_of_month(target)
            oldest = months_back(newest, lookback)
            if not oldest <= resolved.effective_date <= newest:
                logger.warning(
                    "Scraped schedule %s is outside %s..%s; ignoring it",
                    resolved.schedule_code, schedule_code_for(oldest), schedule_code_for(newest),
                )
                return None
            return resolved

        attempts = [scrape_in_window, lambda: self.probe(target, lookback)]
        if not prefer_scrape:
            attempts.reverse()

        for attempt in attempts:
            resolved = attempt()
            if resolved is not None:
                return resolved

        raise ScheduleResolutionError(
            f"Unable to resolve PBS schedule URL for {schedule_code_for(target)} "
            f"after looking back {lookback} months"
        )


def download_schedule(url: str, session: requests.Session, timeout: float) -> bytes:
    """Download a resolved schedule archive.

    Raises:
        ScheduleDownloadError: on a non-2xx status or transport failure.
    """
    try:
        data = fetch_bytes(url, session, timeout=timeout)
    except requests.RequestException as exc:
        raise ScheduleDownloadError(f"Failed to download PBS schedule {url}: {exc}") from exc
    logger.info("Downloaded %s (%d bytes)", url, len(data))
    return data
