"""GET /api/doc/{id} endpoint: one composed document with its provenance."""

import sqlite3

from fastapi import APIRouter, Depends, HTTPException

from api.database import get_db
from api.models import DocOut, DocResponse
from search.query import get_doc

router = APIRouter(prefix="/doc", tags=["documents"])


@router.get(
    "/{doc_id}",
    response_model=DocResponse,
    summary="Get a document by id",
)
def read_doc(
    doc_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> DocResponse:
    doc = get_doc(conn, doc_id)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {doc_id} not found")
    return DocResponse(doc=DocOut(**doc))
