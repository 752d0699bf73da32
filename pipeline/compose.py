"""
Document composition: join the schedule's item, restriction and link tables
into one searchable document per (drug, restriction, authority, phase).

The PBS API CSV archive ships ~30 tables; three of them carry what a
prescriber searches for:

    items                            one row per PBS item (code, drug, brand, form)
    restrictions                     one row per restriction (code, text, authority)
    item-restriction-relationships   many-to-many links between the two

Several items (strengths, brands, pack sizes) usually share one restriction,
so links are folded into accumulators keyed by the normalised identity
``(schedule, res_code, drug_name, authority_method, treatment_phase)`` and
each accumulator becomes one ``ComposedDoc``. Every collection is sorted
before it is flattened so the same tables always produce the same documents.

Expected data noise never raises. A link whose item or restriction is absent,
a restriction whose text is empty after stripping markup, and a row missing
its key are counted as skips on the optional ``StepReport``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from pipeline.logging import StepReport
from pipeline.parse import ParsedTable
from utils.errors import MissingTableError
from utils.patterns import STREAMLINED_MARKER
from utils.strings import clean_cell, normalize_whitespace, strip_markup

logger = logging.getLogger(__name__)

ITEMS_TABLE = "items"
RESTRICTIONS_TABLE = "restrictions"
LINKS_TABLE = "item-restriction-relationships"
REQUIRED_TABLES = (ITEMS_TABLE, RESTRICTIONS_TABLE, LINKS_TABLE)

# First non-empty field wins
RESTRICTION_TEXT_FIELDS = ("li_html_text", "schedule_html_text", "restriction_text", "criteria_text")
FORMULATION_FIELDS = ("li_form", "schedule_form", "form", "formulation")

TITLE_SEPARATOR = " — "
LIST_SEPARATOR = ", "

# Namespace for name-based document ids
DOC_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://www.pbs.gov.au/pbs-search/doc")

# Skip categories recorded on the StepReport
SKIP_MISSING_KEY = "missing_key"
SKIP_DANGLING = "dangling_reference"
SKIP_EMPTY_RESTRICTION = "empty_restriction"


@dataclass
class ComposedDoc:
    """One searchable document: a drug under one restriction."""

    id: str
    schedule_code: str
    dedup_key: str
    res_code: str
    drug_name: str
    title: str
    body: str
    source_json: dict[str, Any]
    pbs_code: str | None = None
    brand_name: str | None = None
    formulation: str | None = None
    program_code: str | None = None
    hospital_type: str | None = None
    authority_method: str | None = None
    treatment_phase: str | None = None
    streamlined_code: str | None = None

    def to_search_document(self) -> dict[str, Any]:
        """camelCase payload for the external search engine."""
        return {
            "id": self.id,
            "scheduleCode": self.schedule_code,
            "pbsCode": self.pbs_code,
            "resCode": self.res_code,
            "drugName": self.drug_name,
            "brandName": self.brand_name,
            "formulation": self.formulation,
            "programCode": self.program_code,
            "hospitalType": self.hospital_type,
            "authorityMethod": self.authority_method,
            "treatmentPhase": self.treatment_phase,
            "streamlinedCode": self.streamlined_code,
            "title": self.title,
            "body": self.body,
        }


# ── Row helpers ───────────────────────────────────────────────────────────────


def normalize_row(row: dict[str, Any]) -> dict[str, str]:
    """Lower-case and trim keys, trim values, drop ``""``/``"null"`` cells."""
    out: dict[str, str] = {}
    for key, value in row.items():
        if key is None:
            continue
        cleaned = clean_cell(value)
        if cleaned is not None:
            out[key.strip().lower()] = cleaned
    return out


def _first(row: dict[str, str], fields: Iterable[str]) -> str | None:
    for name in fields:
        value = row.get(name)
        if value:
            return value
    return None


def _norm_key_part(value: str | None) -> str:
    return normalize_whitespace(value or "").lower()


def restriction_text(row: dict[str, str]) -> str:
    """Plain text of the first non-empty restriction text field, or ``""``."""
    for name in RESTRICTION_TEXT_FIELDS:
        text = strip_markup(row.get(name))
        if text:
            return text
    return ""


def dedup_key_for(schedule_code: str, res_code: str, drug_name: str,
                  authority_method: str | None, treatment_phase: str | None) -> str:
    """Aggregation key: normalised identity parts joined with ``|``."""
    return "|".join(
        _norm_key_part(part)
        for part in (schedule_code, res_code, drug_name, authority_method, treatment_phase)
    )


def doc_id_for(schedule_code: str, dedup_key: str) -> str:
    """Stable opaque id, unique within a schedule."""
    return str(uuid.uuid5(DOC_ID_NAMESPACE, f"{schedule_code}\n{dedup_key}"))


def _join(values: Iterable[str]) -> str | None:
    ordered = sorted(set(values))
    return LIST_SEPARATOR.join(ordered) if ordered else None


def index_tables(tables: Iterable[ParsedTable]) -> dict[str, ParsedTable]:
    """Map normalised table stems to tables; the first table per stem wins."""
    indexed: dict[str, ParsedTable] = {}
    for table in tables:
        indexed.setdefault(table.stem, table)
    return indexed


# ── Accumulator ───────────────────────────────────────────────────────────────


@dataclass
class DocAccumulator:
    """Everything folded into one aggregation key."""

    dedup_key: str
    res_code: str
    drug_name: str
    authority_method: str | None
    treatment_phase: str | None
    restriction: dict[str, str]
    text: str
    brand_names: set[str] = field(default_factory=set)
    formulations: set[str] = field(default_factory=set)
    pbs_codes: set[str] = field(default_factory=set)
    program_codes: set[str] = field(default_factory=set)
    hospital_types: set[str] = field(default_factory=set)
    streamlined_codes: set[str] = field(default_factory=set)
    items: list[dict[str, str]] = field(default_factory=list)
    links: list[dict[str, str]] = field(default_factory=list)

    def add(self, item: dict[str, str], link: dict[str, str]) -> None:
        self.pbs_codes.add(item["pbs_code"])
        if item.get("brand_name"):
            self.brand_names.add(item["brand_name"])
        formulation = _first(item, FORMULATION_FIELDS)
        if formulation:
            self.formulations.add(formulation)
        if item.get("program_code"):
            self.program_codes.add(item["program_code"])
        if item.get("hospital_type"):
            self.hospital_types.add(item["hospital_type"])
        if (self.authority_method and STREAMLINED_MARKER.search(self.authority_method)
                and self.restriction.get("restriction_number")):
            self.streamlined_codes.add(self.restriction["restriction_number"])
        if item not in self.items:
            self.items.append(item)
        if link not in self.links:
            self.links.append(link)

    def to_doc(self, schedule_code: str) -> ComposedDoc:
        brand_name = _join(self.brand_names)
        formulation = _join(self.formulations)
        pbs_code = _join(self.pbs_codes)
        program_code = _join(self.program_codes)
        hospital_type = _join(self.hospital_types)
        streamlined_code = _join(self.streamlined_codes)

        title_parts = [self.drug_name, self.treatment_phase, self.authority_method]
        title = TITLE_SEPARATOR.join(p for p in title_parts if p) or self.drug_name

        labelled = [
            ("Drug", self.drug_name),
            ("Brand(s)", brand_name),
            ("Form(s)", formulation),
            ("PBS code(s)", pbs_code),
            ("Authority", self.authority_method),
            ("Phase", self.treatment_phase),
            ("Restriction", self.text),
        ]
        body = "\n".join(f"{label}: {value}" for label, value in labelled if value)

        source_json = {
            "restriction": self.restriction,
            "items": sorted(self.items, key=lambda r: (r["pbs_code"], sorted(r.items()))),
            "links": sorted(self.links, key=lambda r: (r["res_code"], r["pbs_code"])),
            "aggregated": {
                "brandNames": sorted(self.brand_names),
                "formulations": sorted(self.formulations),
                "pbsCodes": sorted(self.pbs_codes),
                "programCodes": sorted(self.program_codes),
                "hospitalTypes": sorted(self.hospital_types),
                "streamlinedCodes": sorted(self.streamlined_codes),
            },
        }

        return ComposedDoc(
            id=doc_id_for(schedule_code, self.dedup_key),
            schedule_code=schedule_code,
            dedup_key=self.dedup_key,
            res_code=self.res_code,
            drug_name=self.drug_name,
            title=title,
            body=body,
            source_json=source_json,
            pbs_code=pbs_code,
            brand_name=brand_name,
            formulation=formulation,
            program_code=program_code,
            hospital_type=hospital_type,
            authority_method=self.authority_method,
            treatment_phase=self.treatment_phase,
            streamlined_code=streamlined_code,
        )


# ── Composer ──────────────────────────────────────────────────────────────────


def _build_lookup(table: ParsedTable, key: str, required: tuple[str, ...],
                  report: StepReport | None) -> dict[str, list[dict[str, str]]]:
    lookup: dict[str, list[dict[str, str]]] = {}
    for raw in table.rows:
        row = normalize_row(raw)
        missing = [name for name in (key, *required) if not row.get(name)]
        if missing:
            if report is not None:
                report.add_skip(SKIP_MISSING_KEY, f"{table.stem} row missing {', '.join(missing)}")
            continue
        lookup.setdefault(row[key], []).append(row)
    return lookup


def build_docs_from_tables(tables: Iterable[ParsedTable], schedule_code: str,
                           report: StepReport | None = None) -> list[ComposedDoc]:
    """Compose deduplicated documents for one schedule.

    Args:
        tables: Parsed CSV tables of the schedule archive.
        schedule_code: Owning schedule ("YYYY-MM").
        report: Optional step report receiving skip accounting.

    Returns:
        Documents sorted by dedup key.

    Raises:
        MissingTableError: if items, restrictions or the link table is absent.
    """
    indexed = index_tables(tables)
    missing = [name for name in REQUIRED_TABLES if name not in indexed]
    if missing:
        raise MissingTableError(missing, list(indexed))

    items = _build_lookup(indexed[ITEMS_TABLE], "pbs_code", ("drug_name",), report)
    restrictions = _build_lookup(indexed[RESTRICTIONS_TABLE], "res_code", (), report)

    links: list[dict[str, str]] = []
    seen_pairs: set[tuple[str, str]] = set()
    for raw in indexed[LINKS_TABLE].rows:
        link = normalize_row(raw)
        if not link.get("res_code") or not link.get("pbs_code"):
            if report is not None:
                report.add_skip(SKIP_MISSING_KEY, "link row missing res_code or pbs_code")
            continue
        pair = (link["res_code"], link["pbs_code"])
        if pair in seen_pairs:
            continue
        seen_pairs.add(pair)
        links.append(link)
    links.sort(key=lambda r: (r["res_code"], r["pbs_code"]))

    texts: dict[str, str] = {}
    accumulators: dict[str, DocAccumulator] = {}
    folded = 0

    for link in links:
        res_code, pbs_code = link["res_code"], link["pbs_code"]
        item_rows = items.get(pbs_code)
        restriction_rows = restrictions.get(res_code)
        if not item_rows or not restriction_rows:
            if report is not None:
                report.add_skip(SKIP_DANGLING, f"link {res_code}->{pbs_code} has no "
                                f"{'item' if not item_rows else 'restriction'}",
                                item=f"{res_code}/{pbs_code}")
            continue

        restriction = restriction_rows[0]
        if res_code not in texts:
            texts[res_code] = restriction_text(restriction)
        text = texts[res_code]
        if not text:
            if report is not None:
                report.add_skip(SKIP_EMPTY_RESTRICTION, f"restriction {res_code} has no text",
                                item=f"{res_code}/{pbs_code}")
            continue

        for item in item_rows:
            authority = restriction.get("authority_method") or item.get("authority_method")
            phase = restriction.get("treatment_phase") or item.get("treatment_phase")
            key = dedup_key_for(schedule_code, res_code, item["drug_name"], authority, phase)
            acc = accumulators.get(key)
            if acc is None:
                acc = DocAccumulator(
                    dedup_key=key,
                    res_code=res_code,
                    drug_name=item["drug_name"],
                    authority_method=authority,
                    treatment_phase=phase,
                    restriction=restriction,
                    text=text,
                )
                accumulators[key] = acc
            acc.add(item, link)
        folded += 1

    docs = [accumulators[key].to_doc(schedule_code) for key in sorted(accumulators)]

    if report is not None:
        report.items_processed = folded
        report.metrics["documents"] = len(docs)
        report.metrics["links"] = len(links)
    logger.info("Composed %d documents from %d links for %s", len(docs), folded, schedule_code)
    return docs
