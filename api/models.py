"""
Pydantic request/response models for the API.

Every model serialises with camelCase field names (``scheduleCode``,
``drugName``) while Python code uses snake_case; ``populate_by_name`` lets
routes build models from SQLite rows keyed by column name.

Optional fields default to None so that documents with absent enrichment
attributes still validate.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Schedules ─────────────────────────────────────────────────────────────────

class ScheduleOut(CamelModel):
    """One monthly PBS schedule."""
    schedule_code: str = Field(..., description="Year-month code", examples=["2024-07"])
    effective_date: str = Field(..., description="First day of the schedule month (ISO date)", examples=["2024-07-01"])
    source_url: str = Field(..., description="Archive the schedule was ingested from")
    ingested_at: str | None = Field(None, description="UTC timestamp of the last ingest")
    doc_count: int | None = Field(None, description="Documents persisted for this schedule", examples=[4213])


class SchedulesResponse(CamelModel):
    schedules: list[ScheduleOut]


class MetaResponse(CamelModel):
    latest_schedule: ScheduleOut | None = Field(None, description="Schedule with the latest effective date")


# ── Documents ─────────────────────────────────────────────────────────────────

class DocFields(CamelModel):
    """Attributes shared by search results and full documents."""
    id: str = Field(..., description="Opaque document id")
    title: str = Field(..., description="Drug, treatment phase and authority method", examples=["Adalimumab — Initial treatment — Authority Required (STREAMLINED)"])
    schedule_code: str = Field(..., description="Owning schedule", examples=["2024-07"])
    drug_name: str = Field(..., description="Generic drug name", examples=["Adalimumab"])
    pbs_code: str | None = Field(None, description="PBS item codes, comma-separated", examples=["10227Y, 11616J"])
    res_code: str | None = Field(None, description="Restriction code")
    brand_name: str | None = Field(None, description="Brand names, comma-separated", examples=["Humira"])
    formulation: str | None = Field(None, description="Forms and strengths, comma-separated")
    program_code: str | None = Field(None, description="PBS program codes", examples=["GE"])
    hospital_type: str | None = Field(None, description="Hospital supply type")
    authority_method: str | None = Field(None, description="Authority workflow", examples=["STREAMLINED"])
    treatment_phase: str | None = Field(None, description="Treatment phase", examples=["Initial treatment"])
    streamlined_code: str | None = Field(None, description="Streamlined authority code(s)", examples=["14470"])


class SearchResultOut(DocFields):
    """One ranked search hit."""
    snippet: str = Field(..., description="Excerpt of the body around the first matching term")
    stage: str = Field(..., description="Ranking stage that produced the hit", examples=["fulltext"])
    score: float = Field(..., description="Stage-dependent score; comparable only within one response")


class SearchResponse(CamelModel):
    results: list[SearchResultOut]


class DocOut(DocFields):
    """A full composed document."""
    body: str = Field(..., description="Full searchable text, one labelled line per attribute")
    source_json: Any = Field(None, description="Source rows the document was composed from")


class DocResponse(CamelModel):
    doc: DocOut


# ── Ingest ────────────────────────────────────────────────────────────────────

class IngestRequest(CamelModel):
    target_date: date | None = Field(None, description="Any date in the target month; default: latest published")
    lookback_months: int | None = Field(None, ge=0, le=60, description="Months to probe backwards")


class IngestResponse(CamelModel):
    schedule_code: str = Field(..., examples=["2024-07"])
    docs: int = Field(..., description="Documents persisted", examples=[4213])
