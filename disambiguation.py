"""
disambiguation.py
-----------------
Loop AI - Hospital Network Assistant - Disambiguation Policy
------------------------------------------------------------
Pure mapping from a MatchResult (plus whether the caller supplied a city)
to a response intent and the text the voice assistant speaks.  There is no
mutable state: the decision table below IS the policy.

    MatchResult            city supplied?   intent
    ---------------------  ---------------  -----------------
    Found(r)               yes / no         ANSWER
    FoundElsewhere(r, c)   yes / no         ANSWER_OTHER_CITY
    Ambiguous, 1 city      yes / no         ANSWER (first record of that city)
    Ambiguous, 2+ cities   yes / no         ASK_FOR_CITY (city names only)
    NotFound               yes / no         NOT_FOUND (names the queried entity)

The wording depends on the tool that asked (QueryKind), never the intent.
When a caller asks "is X in my network?" without a city and X exists
nowhere, the reply says X is unknown instead of asking which city.

Key functions:
    decide:           MatchResult → PolicyResponse.
    missing_argument: fixed clarifying question for an empty name/city.

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from schemas import Ambiguous, Found, FoundElsewhere, HospitalRecord, MatchResult, NotFound

_ADDRESS_UNAVAILABLE = "not available"


class ResponseIntent(str, Enum):
    ANSWER = "answer"
    ANSWER_OTHER_CITY = "answer_other_city"
    ASK_FOR_CITY = "ask_for_city"
    NOT_FOUND = "not_found"
    CLARIFY = "clarify"


class QueryKind(str, Enum):
    """Which tool is asking; selects the reply wording."""
    DETAILS = "details"
    CONFIRM_NETWORK = "confirm_network"
    LOCATION = "location"


class PolicyResponse(BaseModel):
    """
    Outcome of the policy for one lookup.

    Fields
    ------
    intent:   What the assistant is doing with this reply.
    message:  Text to hand back to the LLM / speak to the caller.
    query:    The hospital name or city that was asked about.
    record:   The record answered about (ANSWER / ANSWER_OTHER_CITY).
    cities:   City names offered to the caller (ASK_FOR_CITY).
    records:  Records listed by list-style tools (by city, keyword search).
    """

    model_config = ConfigDict(frozen=True)

    intent:  ResponseIntent
    message: str
    query:   str = ""
    record:  Optional[HospitalRecord] = None
    cities:  List[str] = Field(default_factory=list)
    records: List[HospitalRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Wording
# ---------------------------------------------------------------------------

def _address(record: HospitalRecord) -> str:
    return record.address or _ADDRESS_UNAVAILABLE


def _answer_text(record: HospitalRecord, kind: QueryKind) -> str:
    if kind is QueryKind.LOCATION:
        return f"{record.name} is located in {record.display_city}."
    return (
        f"Yes, {record.name} is in your network. Located in {record.display_city}. "
        f"The address is {_address(record)}."
    )


def _other_city_text(record: HospitalRecord, requested_city: str, kind: QueryKind) -> str:
    if kind is QueryKind.LOCATION or not requested_city:
        return _answer_text(record, kind)
    return (
        f"Yes, {record.name} is in your network but in {record.display_city}, "
        f"not {requested_city}. The address is {_address(record)}."
    )


def _ask_city_text(query: str, cities: List[str], kind: QueryKind) -> str:
    listed = ", ".join(cities)
    if kind is QueryKind.LOCATION:
        return f"'{query}' exists in multiple cities: {listed}. Which city do you need?"
    if kind is QueryKind.CONFIRM_NETWORK:
        return f"I found '{query}' in multiple cities: {listed}. Which city?"
    return f"'{query}' found in: {listed}. Which city?"


def _not_found_text(query: str, city_supplied: bool, kind: QueryKind) -> str:
    if city_supplied:
        return f"Sorry, '{query}' is not in the network database."
    if kind is QueryKind.DETAILS:
        return f"'{query}' is not in the database."
    # Asking for a city about an entity that exists nowhere wastes a turn.
    return f"I dont have '{query}' in my database."


# ---------------------------------------------------------------------------
# Decision table
# ---------------------------------------------------------------------------

_Handler = Callable[[MatchResult, bool, str, QueryKind], PolicyResponse]


def _on_found(result: Found, city_supplied: bool, query: str, kind: QueryKind) -> PolicyResponse:
    return PolicyResponse(
        intent=ResponseIntent.ANSWER,
        message=_answer_text(result.record, kind),
        query=query,
        record=result.record,
    )


def _on_found_elsewhere(result: FoundElsewhere, city_supplied: bool, query: str, kind: QueryKind) -> PolicyResponse:
    return PolicyResponse(
        intent=ResponseIntent.ANSWER_OTHER_CITY,
        message=_other_city_text(result.record, result.requested_city, kind),
        query=query,
        record=result.record,
    )


def _on_ambiguous(result: Ambiguous, city_supplied: bool, query: str, kind: QueryKind) -> PolicyResponse:
    populated = {city: records for city, records in result.by_city.items() if records}
    if not populated:
        return _on_not_found(NotFound(query=query), city_supplied, query, kind)
    if len(populated) == 1:
        only = next(iter(populated.values()))
        return _on_found(Found(record=only[0]), city_supplied, query, kind)
    cities = list(populated)
    return PolicyResponse(
        intent=ResponseIntent.ASK_FOR_CITY,
        message=_ask_city_text(query, cities, kind),
        query=query,
        cities=cities,
    )


def _on_not_found(result: NotFound, city_supplied: bool, query: str, kind: QueryKind) -> PolicyResponse:
    return PolicyResponse(
        intent=ResponseIntent.NOT_FOUND,
        message=_not_found_text(query, city_supplied, kind),
        query=query,
    )


_DECISION_TABLE: Dict[Tuple[str, bool], _Handler] = {
    ("found", True): _on_found,
    ("found", False): _on_found,
    ("found_elsewhere", True): _on_found_elsewhere,
    ("found_elsewhere", False): _on_found_elsewhere,
    ("ambiguous", True): _on_ambiguous,
    ("ambiguous", False): _on_ambiguous,
    ("not_found", True): _on_not_found,
    ("not_found", False): _on_not_found,
}


def decide(
    result: MatchResult,
    city_supplied: bool,
    query_name: str = "",
    kind: QueryKind = QueryKind.DETAILS,
) -> PolicyResponse:
    """
    Map a MatchResult to a PolicyResponse via the decision table.

    Args:
        result:        Output of ``MatchEngine.resolve_by_name_and_city``.
        city_supplied: Whether the caller named a real (non-placeholder) city.
        query_name:    The hospital name as asked; echoed in clarifications.
        kind:          Which tool asked; selects wording only.

    Returns:
        PolicyResponse: Never raises; an unrecognised result maps to NOT_FOUND.
    """
    query = (query_name or getattr(result, "query", "") or "").strip()
    handler = _DECISION_TABLE.get((getattr(result, "kind", ""), bool(city_supplied)))
    if handler is None:
        return _on_not_found(NotFound(query=query), bool(city_supplied), query, kind)
    return handler(result, bool(city_supplied), query, kind)


def missing_argument(field: str) -> PolicyResponse:
    """Fixed clarifying question for an empty or missing required argument."""
    if field == "city":
        message = "I need to know which city you're interested in. Could you please specify the city?"
    elif field == "query":
        message = "What kind of hospital or service are you looking for?"
    else:
        message = "I need the hospital name to get details. Which hospital are you interested in?"
    return PolicyResponse(intent=ResponseIntent.CLARIFY, message=message)
