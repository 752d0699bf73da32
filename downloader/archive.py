"""Unpack a schedule archive into its CSV tables."""

import io
import logging
import zipfile
from dataclasses import dataclass

from utils.errors import ArchiveError
from utils.patterns import CSV_EXTENSION

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedEntry:
    path: str
    contents: str


def extract_csv_entries(zip_bytes: bytes) -> list[ExtractedEntry]:
    """Return every ``.csv`` entry of the archive, in archive order.

    Entries are decoded fully to text (UTF-8, a leading BOM is dropped).
    Directories and non-CSV files are skipped.

    Raises:
        ArchiveError: if *zip_bytes* is not a readable zip archive.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Not a valid zip archive: {exc}") from exc

    entries: list[ExtractedEntry] = []
    with zf:
        for info in zf.infolist():
            if info.is_dir() or not CSV_EXTENSION.search(info.filename):
                continue
            try:
                raw = zf.read(info)
            except (zipfile.BadZipFile, OSError) as exc:
                raise ArchiveError(f"Corrupt archive entry {info.filename}: {exc}") from exc
            entries.append(ExtractedEntry(info.filename, raw.decode("utf-8-sig", errors="replace")))

    logger.info("Extracted %d CSV entries", len(entries))
    return entries
