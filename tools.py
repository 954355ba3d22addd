"""
tools.py
--------
Loop AI - Hospital Network Assistant - Directory Lookup Tools
-------------------------------------------------------------
The lookup operations the LLM may call during a voice conversation.  Each
tool takes the MatchEngine to search, validates its arguments, runs the
deterministic match, and hands the result to the Disambiguation Policy so
every reply the caller hears comes from one decision table.

Tools:
    - get_hospital_details(name, city):        details, or a city question when ambiguous
    - confirm_hospital_in_network(name, city): "is X in my network?"
    - find_hospital_location(name):            which city X is in
    - get_hospitals_by_city(city):             list hospitals in a city
    - search_hospitals(query, city):           loose keyword fallback
    - get_emergency_info(city):                emergency numbers + nearby hospitals

Every tool returns a PolicyResponse and never raises.

Project: Loop AI - Hospital Network Assistant
"""

import logging
from typing import Any, List, Optional

from langsmith import traceable

from city_aliases import is_city_placeholder
from disambiguation import (
    PolicyResponse,
    QueryKind,
    ResponseIntent,
    decide,
    missing_argument,
)
from match_engine import DEFAULT_MAX_RESULTS, MatchEngine
from schemas import HospitalRecord

logger = logging.getLogger(__name__)

EMERGENCY_NUMBERS = "Emergency: 112 (India), 911 (US), Ambulance: 108."
EMERGENCY_HOSPITAL_LIMIT = 3

LOOKUP_ERROR_MESSAGE = (
    "I had trouble checking the hospital directory just now. "
    "Could you please repeat the hospital name?"
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _numbered(records: List[HospitalRecord]) -> str:
    return "; ".join(
        f"{i}. {r.name} - {r.address or r.display_city}"
        for i, r in enumerate(records, start=1)
    )


def _lookup_failed(tool_name: str, query: str) -> PolicyResponse:
    logger.exception("tools.%s: unexpected error for query %r.", tool_name, query)
    return PolicyResponse(intent=ResponseIntent.NOT_FOUND, message=LOOKUP_ERROR_MESSAGE, query=query)


def _resolve_and_decide(engine: MatchEngine, name: Any, city: Any, kind: QueryKind) -> PolicyResponse:
    result = engine.resolve_by_name_and_city(name, city)
    return decide(result, city_supplied=not is_city_placeholder(city), query_name=_text(name), kind=kind)


# ── Tool 1: Get Hospital Details ──────────────────────────────────────────────
@traceable
def get_hospital_details(engine: MatchEngine, hospital_name: Any, city: Any = None) -> PolicyResponse:
    """
    Look up one hospital by name, optionally within a city.

    Args:
        engine:        MatchEngine over the current directory.
        hospital_name: Name as spoken by the caller (e.g. "Apollo Sarjapur").
        city:          City as spoken, or None / a placeholder like "unknown".

    Returns:
        PolicyResponse: ANSWER, ANSWER_OTHER_CITY, ASK_FOR_CITY, NOT_FOUND,
            or CLARIFY when the name is empty.

    Raises:
        Never - failures return a safe NOT_FOUND response.
    """
    name = _text(hospital_name)
    if not name:
        return missing_argument("name")
    try:
        return _resolve_and_decide(engine, name, city, QueryKind.DETAILS)
    except Exception:
        return _lookup_failed("get_hospital_details", name)


# ── Tool 2: Confirm Hospital In Network ───────────────────────────────────────
@traceable
def confirm_hospital_in_network(engine: MatchEngine, hospital_name: Any, city: Any = None) -> PolicyResponse:
    """
    Answer "is X in my network?".  An entity absent from every city is
    reported as unknown instead of prompting for a city.
    """
    name = _text(hospital_name)
    if not name:
        return missing_argument("name")
    try:
        return _resolve_and_decide(engine, name, city, QueryKind.CONFIRM_NETWORK)
    except Exception:
        return _lookup_failed("confirm_hospital_in_network", name)


# ── Tool 3: Find Hospital Location ────────────────────────────────────────────
@traceable
def find_hospital_location(engine: MatchEngine, hospital_name: Any) -> PolicyResponse:
    """Which city a hospital is in; asks for the city when it exists in several."""
    name = _text(hospital_name)
    if not name:
        return missing_argument("name")
    try:
        return _resolve_and_decide(engine, name, None, QueryKind.LOCATION)
    except Exception:
        return _lookup_failed("find_hospital_location", name)


# ── Tool 4: Get Hospitals By City ─────────────────────────────────────────────
@traceable
def get_hospitals_by_city(engine: MatchEngine, city: Any, max_results: int = DEFAULT_MAX_RESULTS) -> PolicyResponse:
    """
    List hospitals in a city (alias-aware, e.g. "Bombay" finds Mumbai).

    Args:
        engine:      MatchEngine over the current directory.
        city:        City as spoken.  A placeholder counts as missing.
        max_results: Upper bound on hospitals listed.

    Returns:
        PolicyResponse: ANSWER with ``records`` populated, NOT_FOUND, or CLARIFY.
    """
    if is_city_placeholder(city):
        return missing_argument("city")
    requested = _text(city)
    try:
        records = engine.by_city(requested, max_results)
    except Exception:
        return _lookup_failed("get_hospitals_by_city", requested)
    if not records:
        return PolicyResponse(
            intent=ResponseIntent.NOT_FOUND,
            message=f"No hospitals found in '{requested}'.",
            query=requested,
        )
    return PolicyResponse(
        intent=ResponseIntent.ANSWER,
        message=f"Hospitals in {requested}: {_numbered(records)}",
        query=requested,
        records=records,
    )


# ── Tool 5: Search Hospitals ──────────────────────────────────────────────────
@traceable
def search_hospitals(
    engine: MatchEngine,
    query: Any,
    city: Optional[Any] = None,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> PolicyResponse:
    """
    Loose keyword search across name, city, address and specialties.

    Only for requests with no structured hospital name ("a cardiology
    hospital near Whitefield").  When a real city is supplied, results
    outside it are dropped.
    """
    text = _text(query)
    if not text:
        return missing_argument("query")
    try:
        records = engine.keyword_search(text, max_results, city)
    except Exception:
        return _lookup_failed("search_hospitals", text)

    if not records:
        return PolicyResponse(
            intent=ResponseIntent.NOT_FOUND,
            message=f"I dont have '{text}' in my database.",
            query=text,
        )
    return PolicyResponse(
        intent=ResponseIntent.ANSWER,
        message=f"Hospitals matching '{text}': {_numbered(records)}",
        query=text,
        records=records,
    )


# ── Tool 6: Get Emergency Info ────────────────────────────────────────────────
@traceable
def get_emergency_info(engine: MatchEngine, city: Any = None) -> PolicyResponse:
    """Emergency numbers, plus up to three network hospitals when a city is known."""
    message = EMERGENCY_NUMBERS
    records: List[HospitalRecord] = []
    requested = _text(city)
    if not is_city_placeholder(city):
        try:
            records = engine.by_city(requested, EMERGENCY_HOSPITAL_LIMIT)
        except Exception:
            logger.exception("tools.get_emergency_info: city lookup failed for %r.", requested)
            records = []
        if records:
            message += f" Hospitals in {requested}: {_numbered(records)}."
    message += " For emergencies, call 112 immediately."
    return PolicyResponse(
        intent=ResponseIntent.ANSWER,
        message=message,
        query=requested,
        records=records,
    )
