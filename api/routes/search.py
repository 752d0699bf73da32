"""
GET /api/search endpoint.

Normalises the query (abbreviation expansion, stopwords) and runs the tiered
query engine against the requested schedule, defaulting to the latest one.
Each result records the ranking stage that produced it.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.database import get_engine
from api.models import SearchResponse, SearchResultOut
from search.query import QueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


def require_query(
    q: str | None = Query(None, description="Free-text query, e.g. 'RA flare' or 'adalimumab initial'"),
) -> str:
    """Reject a blank query before the database is opened."""
    if q is None or not q.strip():
        raise HTTPException(status_code=400, detail="Query parameter 'q' is required")
    return q


@router.get(
    "",
    response_model=SearchResponse,
    summary="Hybrid search over PBS restriction documents",
)
def search(
    q: str = Depends(require_query),
    schedule: str | None = Query(None, description="Schedule code (YYYY-MM); default: latest"),
    limit: int | None = Query(None, ge=1, description="Maximum results (capped by SEARCH_MAX_LIMIT)"),
    # Keep after q: a blank query is rejected before the database is opened
    engine: QueryEngine = Depends(get_engine),
) -> SearchResponse:
    results = engine.search(q, schedule=schedule, limit=limit)
    logger.info("search q=%r schedule=%s results=%d stage=%s", q, schedule, len(results),
                results[0].stage if results else "-")
    return SearchResponse(results=[SearchResultOut(**r.to_dict()) for r in results])
