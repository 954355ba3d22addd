"""
schemas.py
----------
Loop AI - Hospital Network Assistant - Pydantic Data Contracts
--------------------------------------------------------------
Pydantic v2 models shared by every layer of the assistant core: the
directory records, the tagged match results handed from the Match Engine
to the Disambiguation Policy, conversation turns, and the raw-row mapping
used when a hospital directory is (re)loaded.

Validation policy
-----------------
HospitalRecord is the single gate between raw directory rows and the
in-memory index.  A row that fails validation is logged and skipped - it
never reaches the index, and it never aborts the load.

  1. id and name are required; after sanitisation they must be non-empty.
  2. city / address / specialties are optional; blank values become None
     so "no city" has exactly one representation.
  3. Every string is stripped of ASCII control characters and surrounding
     whitespace (ASR transcripts and spreadsheet exports both leak them).
  4. Records are frozen - a reload replaces the whole index instead of
     mutating records in place.

Public API
----------
    HospitalRecord      Frozen directory record.
    Turn                One user-utterance / assistant-response pair.
    Found, FoundElsewhere, Ambiguous, NotFound
                        Variants of MatchResult (discriminated on ``kind``).
    ColumnMapping       Raw row key → record field mapping.
    LoadSummary         Counter returned by records_from_rows().
    records_from_rows() Convert raw row mappings into validated records.

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing_extensions import Annotated

logger = logging.getLogger(__name__)

# Bucket used when a record carries no city at all.
UNKNOWN_CITY = "Unknown"

# ---------------------------------------------------------------------------
# Sanitisation helpers
# ---------------------------------------------------------------------------

# ASCII control characters to strip: \x00–\x08, \x0b–\x0c, \x0e–\x1f, \x7f
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_MAX_STR_LEN = 500


def _sanitise_string(value: Any, *, max_len: int = _MAX_STR_LEN) -> str:
    """
    Coerce *value* to str, strip control characters and whitespace, and
    truncate to *max_len* characters.

    Args:
        value:   Raw value - may be None, int, float, or str.
        max_len: Maximum character length after sanitisation.

    Returns:
        Sanitised, stripped, truncated string.  Never raises.
    """
    if value is None:
        return ""
    cleaned = _CONTROL_CHAR_RE.sub("", str(value))
    return cleaned.strip()[:max_len]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# HospitalRecord
# ---------------------------------------------------------------------------

class HospitalRecord(BaseModel):
    """
    One hospital in the network directory.

    Fields
    ------
    id:          Stable identifier, unique within one loaded generation.
    name:        Hospital name as it appears in the source directory.
    city:        City as it appears in the source, or None.
    address:     Street address, or None.
    specialties: Free-text specialties column, or None.  Only consulted by
                 the keyword fallback search.
    extra:       Source columns that are not mapped to a field above.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id:          str
    name:        str
    city:        Optional[str] = None
    address:     Optional[str] = None
    specialties: Optional[str] = None
    extra:       Dict[str, str] = Field(default_factory=dict)

    # ── Validators ───────────────────────────────────────────────────────────

    @field_validator("id", "name", mode="before")
    @classmethod
    def require_text(cls, v: Any) -> str:
        """
        Sanitise a required text field.

        Raises:
            ValueError: if nothing is left after sanitisation.
        """
        cleaned = _sanitise_string(v)
        if not cleaned:
            raise ValueError("value must not be empty.")
        return cleaned

    @field_validator("city", "address", "specialties", mode="before")
    @classmethod
    def optional_text(cls, v: Any) -> Optional[str]:
        """Blank optional text collapses to None."""
        cleaned = _sanitise_string(v)
        return cleaned or None

    @field_validator("extra", mode="before")
    @classmethod
    def clean_extra(cls, v: Any) -> Dict[str, str]:
        """Keep only non-empty extra columns, keyed by their stripped header."""
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            raise ValueError("extra must be a mapping of column → value.")
        cleaned: Dict[str, str] = {}
        for key, value in v.items():
            text = _sanitise_string(value)
            header = _sanitise_string(key)
            if header and text:
                cleaned[header] = text
        return cleaned

    # ── Matching helpers ─────────────────────────────────────────────────────

    @property
    def display_city(self) -> str:
        return self.city or UNKNOWN_CITY

    def name_and_address(self) -> str:
        """Lowercased ``name + " " + address`` - the text name queries match against."""
        return f"{self.name} {self.address or ''}".lower()

    def keyword_text(self) -> str:
        """Lowercased name, city, address and specialties for the keyword fallback."""
        parts = [self.name, self.city or "", self.address or "", self.specialties or ""]
        return " ".join(parts).lower()

    def to_response_string(self) -> str:
        """
        Multi-line, emoji-free rendering of the record for the LLM.

        Example::

            Apollo Hospital
               City: Bengaluru
               Address: 154/11 Bannerghatta Road
        """
        lines = [self.name]
        if self.city:
            lines.append(f"   City: {self.city}")
        if self.address:
            lines.append(f"   Address: {self.address}")
        if self.specialties:
            lines.append(f"   Specialties: {self.specialties}")
        for key, value in self.extra.items():
            lines.append(f"   {key}: {value}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Conversation turn
# ---------------------------------------------------------------------------

class Turn(BaseModel):
    """One exchange stored in a user's session."""

    model_config = ConfigDict(frozen=True)

    human:     str
    ai:        str
    timestamp: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# MatchResult - tagged variants
# ---------------------------------------------------------------------------

class Found(BaseModel):
    """The name (and city, when given) resolved to one record."""

    model_config = ConfigDict(frozen=True)

    kind:   Literal["found"] = "found"
    record: HospitalRecord


class FoundElsewhere(BaseModel):
    """The name matched, but only in a city other than the one requested."""

    model_config = ConfigDict(frozen=True)

    kind:           Literal["found_elsewhere"] = "found_elsewhere"
    record:         HospitalRecord
    requested_city: str


class Ambiguous(BaseModel):
    """
    The name matched records in one or more cities and no city was given.

    ``by_city`` preserves directory iteration order: city keys appear in the
    order their first record was seen, records in index order.
    """

    model_config = ConfigDict(frozen=True)

    kind:    Literal["ambiguous"] = "ambiguous"
    by_city: Dict[str, List[HospitalRecord]]

    @property
    def cities(self) -> List[str]:
        return list(self.by_city.keys())


class NotFound(BaseModel):
    """Nothing in the directory matched the query."""

    model_config = ConfigDict(frozen=True)

    kind:  Literal["not_found"] = "not_found"
    query: str = ""


MatchResult = Annotated[
    Union[Found, FoundElsewhere, Ambiguous, NotFound],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Raw row → record mapping
# ---------------------------------------------------------------------------

class ColumnMapping(BaseModel):
    """
    Names of the raw row keys that hold each record field.

    Defaults match the network spreadsheet export ("HOSPITAL NAME",
    "Address", "CITY").  Header matching tries the exact key first, then a
    case- and whitespace-insensitive match.
    """

    model_config = ConfigDict(frozen=True)

    name_column:        str           = "HOSPITAL NAME"
    city_column:        str           = "CITY"
    address_column:     str           = "Address"
    id_column:          Optional[str] = None
    specialties_column: Optional[str] = None

    def mapped_headers(self) -> set:
        """Normalised headers consumed by a named field (everything else is extra)."""
        columns = [
            self.name_column, self.city_column, self.address_column,
            self.id_column, self.specialties_column,
        ]
        return {_normalise_header(c) for c in columns if c and c.strip()}


def _normalise_header(header: Any) -> str:
    return _sanitise_string(header).lower()


def _column_value(row: Mapping, column: Optional[str]) -> Any:
    """Look up *column* in *row*: exact key first, then normalised header."""
    if not column:
        return None
    if column in row:
        return row[column]
    wanted = _normalise_header(column)
    for key, value in row.items():
        if _normalise_header(key) == wanted:
            return value
    return None


class LoadSummary(BaseModel):
    """
    Counter returned by ``records_from_rows()``.

    Attributes:
        total:    Number of raw rows attempted.
        accepted: Rows that became records.
        rejected: Rows skipped as malformed or duplicate.
        rejection_reasons: Row id → first error message for each skipped row.
    """
    model_config = ConfigDict(frozen=True)

    total:             int
    accepted:          int
    rejected:          int
    rejection_reasons: Dict[str, str] = Field(default_factory=dict)


def records_from_rows(
    rows: Iterable[Any],
    mapping: Optional[ColumnMapping] = None,
) -> Tuple[List[HospitalRecord], LoadSummary]:
    """
    Convert an ordered sequence of raw rows into validated HospitalRecords.

    Each row is a mapping of column header → cell value.  The record id is
    the row's id column when one is configured and present, otherwise the
    1-based row number.  Malformed rows (non-mapping, blank name, duplicate
    id) are logged at WARNING level and skipped; the load itself never fails.

    Args:
        rows:    Raw rows in source order.
        mapping: Column mapping; defaults to ``ColumnMapping()``.

    Returns:
        Tuple of:
          * ``List[HospitalRecord]`` - accepted records in source order.
          * ``LoadSummary``          - counts and rejection reasons.

    Example::

        rows = [
            {"HOSPITAL NAME": "Apollo Hospital", "CITY": "Bangalore", "Address": "Bannerghatta Road"},
            {"HOSPITAL NAME": "", "CITY": "Pune"},   # rejected - blank name
        ]
        records, summary = records_from_rows(rows)
        # len(records) == 1; summary.rejected == 1
    """
    mapping = mapping or ColumnMapping()
    mapped = mapping.mapped_headers()

    accepted: List[HospitalRecord] = []
    rejection_reasons: Dict[str, str] = {}
    seen_ids: set = set()
    total = 0

    for row_number, row in enumerate(rows, start=1):
        total += 1
        row_id = str(row_number)
        if not isinstance(row, Mapping):
            rejection_reasons[row_id] = "row is not a mapping"
            logger.warning("schemas.records_from_rows: row %s skipped - not a mapping.", row_number)
            continue

        caller_id = _sanitise_string(_column_value(row, mapping.id_column))
        row_id = caller_id or row_id

        if row_id in seen_ids:
            rejection_reasons[row_id] = "duplicate id"
            logger.warning("schemas.records_from_rows: row %s skipped - duplicate id '%s'.", row_number, row_id)
            continue

        extra = {
            str(key): value
            for key, value in row.items()
            if _normalise_header(key) not in mapped
        }
        try:
            record = HospitalRecord(
                id=row_id,
                name=_column_value(row, mapping.name_column),
                city=_column_value(row, mapping.city_column),
                address=_column_value(row, mapping.address_column),
                specialties=_column_value(row, mapping.specialties_column),
                extra=extra,
            )
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            field = ".".join(str(p) for p in first.get("loc", ())) or "row"
            message = f"{field}: {first.get('msg', str(exc))}"
            rejection_reasons[row_id] = message
            logger.warning("schemas.records_from_rows: row %s skipped - %s", row_number, message)
            continue

        seen_ids.add(row_id)
        accepted.append(record)

    summary = LoadSummary(
        total=total,
        accepted=len(accepted),
        rejected=total - len(accepted),
        rejection_reasons=rejection_reasons,
    )
    return accepted, summary
