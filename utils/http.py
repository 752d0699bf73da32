"""HTTP sessions for talking to the PBS website and Elasticsearch.

Every outbound call in the project goes through a ``requests.Session`` built
here: pooled connections, a urllib3 ``Retry`` policy for transient 429/5xx
answers and the project User-Agent. Callers always pass an explicit
``timeout``; sessions never carry one.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry as URLRetry

from utils.config import USER_AGENT

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class RetryStrategy:
    """Retry policy for idempotent requests (GET/HEAD).

    ``backoff_factor`` feeds urllib3's exponential backoff; non-retryable
    statuses are returned to the caller rather than raised.
    """

    max_retries: int = 3
    backoff_factor: float = 2.0
    status_forcelist: Tuple[int, ...] = TRANSIENT_STATUSES

    def get_retry_object(self) -> URLRetry:
        return URLRetry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=self.status_forcelist,
            allowed_methods=frozenset({"GET", "HEAD"}),
            raise_on_status=False,
        )


# Probing walks up to (lookback + 1) x patterns URLs; keep retries cheap there.
PROBE_RETRY = RetryStrategy(max_retries=1, backoff_factor=0.5)


class SessionManager:
    """Lazily built, pooled ``requests.Session``; usable as a context manager.

    Args:
        retry_strategy: Policy mounted on both schemes (default ``RetryStrategy()``).
        headers: Extra default headers, e.g. an Elasticsearch ``Authorization``.
        pool_size: Connections kept per host.
    """

    def __init__(self, retry_strategy: Optional[RetryStrategy] = None,
                 headers: Optional[Dict[str, str]] = None, pool_size: int = 10):
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self.pool_size = pool_size
        self._session: Optional[requests.Session] = None

    def _build(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(self.headers)
        adapter = HTTPAdapter(
            max_retries=self.retry_strategy.get_retry_object(),
            pool_connections=self.pool_size,
            pool_maxsize=self.pool_size,
        )
        for scheme in ("http://", "https://"):
            session.mount(scheme, adapter)
        return session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = self._build()
        return self._session

    def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def fetch_bytes(url: str, session: requests.Session, timeout: float = 30.0) -> bytes:
    """GET *url* and return the whole body.

    Raises:
        requests.HTTPError: on a non-2xx status.
        requests.RequestException: on transport failures.
    """
    response = session.get(url, timeout=timeout)
    response.raise_for_status()
    return response.content
