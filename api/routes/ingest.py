"""
POST /api/admin/ingest endpoint.

Runs one ingest synchronously and returns the schedule code and document
count. When ADMIN_INGEST_TOKEN is set the caller must present it either as
``X-Admin-Token: <token>`` or ``Authorization: Bearer <token>``.
"""

import hmac
import logging
import sqlite3

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request

from api.database import get_config, get_write_db
from api.models import IngestRequest, IngestResponse
from utils.config import AppConfig
from utils.errors import PbsSearchError, ScheduleResolutionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _presented_token(x_admin_token: str | None, authorization: str | None) -> str | None:
    if x_admin_token:
        return x_admin_token.strip()
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return None


def require_admin_token(
    config: AppConfig = Depends(get_config),
    x_admin_token: str | None = Header(None),
    authorization: str | None = Header(None),
) -> None:
    """Reject the request with 401 unless it carries the configured token."""
    if not config.admin_token:
        return
    presented = _presented_token(x_admin_token, authorization)
    if presented is None or not hmac.compare_digest(presented, config.admin_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


@router.post(
    "/ingest",
    response_model=IngestResponse,
    summary="Ingest a PBS schedule",
    dependencies=[Depends(require_admin_token)],
)
def ingest(
    request: Request,
    body: IngestRequest | None = Body(None),
    conn: sqlite3.Connection = Depends(get_write_db),
    config: AppConfig = Depends(get_config),
) -> IngestResponse:
    body = body or IngestRequest()
    pipeline = request.app.state.ingest_factory(conn, config)
    try:
        result = pipeline.run(target_date=body.target_date, lookback_months=body.lookback_months)
    except ScheduleResolutionError as exc:
        logger.error("Ingest failed to resolve a schedule: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except PbsSearchError as exc:
        logger.error("Ingest failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        pipeline.close()

    logger.info("Ingested %s via admin endpoint (%d docs)", result.schedule_code, result.docs)
    return IngestResponse(schedule_code=result.schedule_code, docs=result.docs)
