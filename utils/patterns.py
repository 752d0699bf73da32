"""Pre-compiled regex patterns for the PBS search tools.

All patterns are compiled once at module import so the hot loops in the
composer and the query engine do not recompile them per row or per token.

Usage:
    from utils.patterns import SCHEDULE_DATE_TOKEN, WHITESPACE

    if SCHEDULE_DATE_TOKEN.search(href):
        ...
"""

import re

# Tabular entries inside a schedule archive
CSV_EXTENSION = re.compile(r'\.csv$', re.IGNORECASE)

# Year-month-day token inside a download URL path
# Examples: /downloads/2024/07/2024-07-01-PBS-API-CSV.zip
SCHEDULE_DATE_TOKEN = re.compile(r'(\d{4})-(\d{2})-(\d{2})')

# FTS5 special characters that need escaping in full-text search queries
FTS5_SPECIAL_CHARS = re.compile(r'[\"()*:^+]')

# Anything that is not a letter or digit in any script (prefix-query sanitising)
NON_ALNUM = re.compile(r'[\W_]+')

# Whitespace normalization: multiple spaces/tabs/newlines
WHITESPACE = re.compile(r'\s+')

# Authority methods that qualify for a streamlined authority code
STREAMLINED_MARKER = re.compile(r'stream', re.IGNORECASE)

# Canonical schedule archive filename on the downloads page
# Example: ../downloads/2024/07/2024-07-01-PBS-API-CSV.zip
API_CSV_ARCHIVE = re.compile(r'PBS-API-CSV\.zip$', re.IGNORECASE)
