"""GET /api/schedules and GET /api/meta endpoints."""

import sqlite3

from fastapi import APIRouter, Depends

from api.database import get_db
from api.models import MetaResponse, ScheduleOut, SchedulesResponse
from search.query import latest_schedule, list_schedules

router = APIRouter(tags=["schedules"])


@router.get(
    "/schedules",
    response_model=SchedulesResponse,
    summary="All ingested schedules, newest first",
)
def get_schedules(conn: sqlite3.Connection = Depends(get_db)) -> SchedulesResponse:
    return SchedulesResponse(schedules=[ScheduleOut(**row) for row in list_schedules(conn)])


@router.get(
    "/meta",
    response_model=MetaResponse,
    summary="Latest schedule",
)
def get_meta(conn: sqlite3.Connection = Depends(get_db)) -> MetaResponse:
    latest = latest_schedule(conn)
    return MetaResponse(latest_schedule=ScheduleOut(**latest) if latest else None)
