"""
Elasticsearch mirror of the composed documents.

Index layout:

    <base>-<scheduleCode>-<generation>   one physical index per ingest run
    <base>-current                       alias every query targets

An ingest run creates a fresh generation index, bulk-writes every document
with ``refresh=true`` and only then repoints the alias in a single
``update_aliases`` call (remove every old mapping, add the new one). Queries
against the alias therefore see either the whole previous generation or the
whole new one. A failed bulk write leaves the alias untouched. Older
generations of the same schedule are deleted afterwards on a best-effort
basis.

With no ``ELASTICSEARCH_URL`` configured the writer is a no-op.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from elasticsearch import ApiError, Elasticsearch, NotFoundError, TransportError

from pipeline.compose import ComposedDoc
from search.query import SearchResult
from search.snippet import DEFAULT_SNIPPET_LENGTH
from utils.config import AppConfig
from utils.errors import IndexWriteError

logger = logging.getLogger(__name__)

# Everything the client raises for a failed call: HTTP error answers and
# connection/timeout failures
CLIENT_ERRORS = (ApiError, TransportError)

INDEX_SETTINGS: dict[str, Any] = {
    "analysis": {"analyzer": {"default": {"type": "standard"}}},
}

INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        "title": {"type": "text"},
        "body": {"type": "text"},
        "pbsCode": {"type": "keyword"},
        "resCode": {"type": "keyword"},
        "scheduleCode": {"type": "keyword"},
        "drugName": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "brandName": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "formulation": {"type": "text"},
        "programCode": {"type": "keyword"},
        "hospitalType": {"type": "keyword"},
        "authorityMethod": {"type": "keyword"},
        "treatmentPhase": {"type": "text"},
        "streamlinedCode": {"type": "keyword"},
    }
}

SEARCH_FIELDS = ["title^2", "drugName^2", "brandName", "body", "treatmentPhase", "authorityMethod"]
HIGHLIGHT_FRAGMENT_SIZE = 280


def build_client(config: AppConfig) -> Elasticsearch | None:
    """Client for the configured node, or None when ``ELASTICSEARCH_URL`` is unset."""
    if not config.es_url:
        return None
    return Elasticsearch(
        config.es_url,
        api_key=config.es_api_key,
        request_timeout=config.http_timeout,
    )


def _generation_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")


class ElasticsearchIndexWriter:
    """Writes one schedule's documents into a new generation and swaps the alias."""

    def __init__(self, client: Elasticsearch | None, base_index: str = "pbs-docs",
                 clock: Callable[[], str] = _generation_stamp):
        self.client = client
        self.base_index = base_index.lower()
        self.clock = clock

    @classmethod
    def from_config(cls, config: AppConfig) -> "ElasticsearchIndexWriter":
        return cls(build_client(config), config.es_index)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    @property
    def alias(self) -> str:
        return f"{self.base_index}-current"

    def index_name(self, schedule_code: str, generation: str) -> str:
        return f"{self.base_index}-{schedule_code.lower()}-{generation}"

    def alias_targets(self) -> list[str]:
        """Indices the alias points at now (empty before the first swap)."""
        try:
            return sorted(self.client.indices.get_alias(name=self.alias))
        except NotFoundError:
            return []

    def index_schedule(self, docs: list[ComposedDoc], schedule_code: str) -> str | None:
        """Write *docs* to a new generation index and point the alias at it.

        Returns:
            The new index name, or None when no engine is configured.

        Raises:
            IndexWriteError: creation, bulk write or alias swap failed. The
                alias is unchanged unless the swap itself succeeded.
        """
        if self.client is None:
            logger.info("Elasticsearch not configured; skipping index write for %s", schedule_code)
            return None

        index = self.index_name(schedule_code, self.clock())
        try:
            self.client.indices.create(index=index, settings=INDEX_SETTINGS,
                                       mappings=INDEX_MAPPINGS)
        except CLIENT_ERRORS as exc:
            raise IndexWriteError(f"Failed to create index {index}: {exc}") from exc

        try:
            self._bulk_write(index, docs)
        except IndexWriteError:
            self._discard(index)
            raise

        try:
            previous = self.alias_targets()
            actions = [{"remove": {"index": old, "alias": self.alias}} for old in previous]
            actions.append({"add": {"index": index, "alias": self.alias}})
            self.client.indices.update_aliases(actions=actions)
        except CLIENT_ERRORS as exc:
            raise IndexWriteError(f"Failed to repoint alias {self.alias} to {index}: {exc}") from exc

        logger.info("Alias %s -> %s (%d documents, was %s)",
                    self.alias, index, len(docs), ", ".join(previous) or "unset")
        self._prune_generations(schedule_code, keep=index)
        return index

    def _bulk_write(self, index: str, docs: list[ComposedDoc]) -> None:
        if not docs:
            return
        operations: list[dict[str, Any]] = []
        for doc in docs:
            operations.append({"index": {"_index": index, "_id": doc.id}})
            operations.append(doc.to_search_document())
        try:
            result = self.client.bulk(operations=operations, refresh=True)
        except CLIENT_ERRORS as exc:
            raise IndexWriteError(f"Bulk write to {index} failed: {exc}") from exc

        if result["errors"]:
            failures = [item["index"]["error"] for item in result["items"]
                        if "error" in item.get("index", {})]
            first = failures[0] if failures else "unknown error"
            raise IndexWriteError(
                f"Bulk write to {index} rejected {len(failures)} document(s); first: {first}"
            )

    def _discard(self, index: str) -> None:
        try:
            self.client.indices.delete(index=index, ignore_unavailable=True)
        except CLIENT_ERRORS as exc:
            logger.warning("Could not delete failed generation %s: %s", index, exc)

    def _prune_generations(self, schedule_code: str, keep: str) -> None:
        pattern = f"{self.base_index}-{schedule_code.lower()}-*"
        try:
            stale = sorted(name for name in self.client.indices.get(index=pattern)
                           if name != keep)
        except CLIENT_ERRORS as exc:
            logger.warning("Could not list generations for %s: %s", schedule_code, exc)
            return
        for name in stale:
            try:
                self.client.indices.delete(index=name, ignore_unavailable=True)
                logger.info("Deleted stale generation %s", name)
            except CLIENT_ERRORS as exc:
                logger.warning("Could not delete stale generation %s: %s", name, exc)


class ElasticsearchSearch:
    """Query strategy against the alias, returning ``SearchResult`` rows."""

    def __init__(self, client: Elasticsearch, alias: str):
        self.client = client
        self.alias = alias

    @classmethod
    def from_config(cls, config: AppConfig) -> "ElasticsearchSearch | None":
        client = build_client(config)
        return cls(client, config.es_alias) if client is not None else None

    def build_query(self, query: str, schedule: str | None, limit: int) -> dict[str, Any]:
        filters = [{"term": {"scheduleCode": schedule}}] if schedule else []
        return {
            "size": limit,
            "query": {
                "bool": {
                    "must": [{
                        "multi_match": {
                            "query": query,
                            "fields": SEARCH_FIELDS,
                            "type": "best_fields",
                            "operator": "and",
                        }
                    }],
                    "filter": filters,
                }
            },
            "highlight": {
                "fields": {
                    "body": {"fragment_size": HIGHLIGHT_FRAGMENT_SIZE, "number_of_fragments": 1},
                }
            },
        }

    def search(self, query: str, schedule: str | None, limit: int) -> list[SearchResult]:
        response = self.client.search(index=self.alias, **self.build_query(query, schedule, limit))
        results = []
        for hit in response["hits"]["hits"]:
            source = hit.get("_source") or {}
            fragments = (hit.get("highlight") or {}).get("body") or []
            body = source.get("body") or ""
            results.append(SearchResult(
                id=hit.get("_id") or source.get("id", ""),
                title=source.get("title", ""),
                snippet=fragments[0] if fragments else body[:DEFAULT_SNIPPET_LENGTH],
                schedule_code=source.get("scheduleCode", ""),
                drug_name=source.get("drugName", ""),
                stage="external",
                score=float(hit.get("_score") or 0.0),
                pbs_code=source.get("pbsCode"),
                res_code=source.get("resCode"),
                brand_name=source.get("brandName"),
                formulation=source.get("formulation"),
                program_code=source.get("programCode"),
                hospital_type=source.get("hospitalType"),
                authority_method=source.get("authorityMethod"),
                treatment_phase=source.get("treatmentPhase"),
                streamlined_code=source.get("streamlinedCode"),
            ))
        return results
