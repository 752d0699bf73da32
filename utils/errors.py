"""Exception hierarchy for the ingest and search pipeline.

Every fatal condition of an ingest run maps to one class here so callers
(the CLI, the admin endpoint) can tell a missing upstream artifact apart from
bad data or a storage failure.  Expected data noise (dangling join
references, blank restriction texts) is never raised; the composer records
it as a skip instead.
"""


class PbsSearchError(Exception):
    """Base class for all pipeline errors."""


class ScheduleResolutionError(PbsSearchError):
    """No reachable schedule archive was found by probing or scraping."""


class ScheduleDownloadError(PbsSearchError):
    """The resolved schedule archive could not be downloaded."""


class ArchiveError(PbsSearchError):
    """The downloaded archive is not a readable zip file."""


class TableParseError(PbsSearchError):
    """A CSV table violates CSV structural rules."""

    def __init__(self, table: str, diagnostics: list[str]):
        self.table = table
        self.diagnostics = list(diagnostics)
        super().__init__(
            f"Failed to parse CSV {table}: {'; '.join(self.diagnostics)}"
        )


class MissingTableError(PbsSearchError):
    """A table required by the composer is absent from the archive."""

    def __init__(self, missing: list[str], available: list[str]):
        self.missing = sorted(missing)
        self.available = sorted(available)
        super().__init__(
            f"Required table(s) missing: {', '.join(self.missing)} "
            f"(archive contains: {', '.join(self.available) or 'nothing'})"
        )


class PersistenceError(PbsSearchError):
    """The relational write failed and was rolled back."""


class IndexWriteError(PbsSearchError):
    """The external search engine rejected an index write."""
