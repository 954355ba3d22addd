"""
test_disambiguation.py
----------------------
Loop AI - Hospital Network Assistant - Tests for disambiguation.py
------------------------------------------------------------------
The decision table from MatchResult to response intent, the wording per
tool, and the fixed clarifying questions for missing arguments.

Run:
    pytest tests/test_disambiguation.py -v --tb=short

Project: Loop AI - Hospital Network Assistant
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from disambiguation import QueryKind, ResponseIntent, decide, missing_argument
from schemas import Ambiguous, Found, FoundElsewhere, HospitalRecord, NotFound

APOLLO = HospitalRecord(id="1", name="Apollo Hospital", city="Bangalore", address="Bannerghatta Road")
FORTIS_MUMBAI = HospitalRecord(id="5", name="Fortis Hospital", city="Mumbai", address="Mulund West")
FORTIS_GURGAON = HospitalRecord(id="6", name="Fortis Hospital", city="Gurgaon", address="Sector 44")
NO_ADDRESS = HospitalRecord(id="9", name="City Hospital", city="Chennai")


# ── Decision table ────────────────────────────────────────────────────────────

@pytest.mark.parametrize("city_supplied", [True, False])
def test_found_answers(city_supplied):
    response = decide(Found(record=APOLLO), city_supplied, "Apollo")
    assert response.intent is ResponseIntent.ANSWER
    assert response.record == APOLLO
    assert response.message == (
        "Yes, Apollo Hospital is in your network. Located in Bangalore. "
        "The address is Bannerghatta Road."
    )


def test_found_elsewhere_names_both_cities():
    response = decide(FoundElsewhere(record=APOLLO, requested_city="Pune"), True, "Apollo")
    assert response.intent is ResponseIntent.ANSWER_OTHER_CITY
    assert "in Bangalore, not Pune" in response.message
    assert "Bannerghatta Road" in response.message


def test_ambiguous_with_one_city_collapses_to_answer():
    response = decide(Ambiguous(by_city={"Mumbai": [FORTIS_MUMBAI]}), False, "Fortis")
    assert response.intent is ResponseIntent.ANSWER
    assert response.record == FORTIS_MUMBAI


@pytest.mark.parametrize("kind", list(QueryKind))
def test_ambiguous_asks_for_city_with_city_names_only(kind):
    result = Ambiguous(by_city={"Mumbai": [FORTIS_MUMBAI], "Gurgaon": [FORTIS_GURGAON]})
    response = decide(result, False, "Fortis", kind)
    assert response.intent is ResponseIntent.ASK_FOR_CITY
    assert response.cities == ["Mumbai", "Gurgaon"]
    assert "Mumbai, Gurgaon" in response.message
    assert "Mulund" not in response.message
    assert "Sector 44" not in response.message
    assert response.record is None


def test_ambiguous_with_no_records_is_not_found():
    response = decide(Ambiguous(by_city={}), False, "Fortis")
    assert response.intent is ResponseIntent.NOT_FOUND


def test_not_found_names_entity():
    response = decide(NotFound(query="Nonexistent Hospital Zzz"), False)
    assert response.intent is ResponseIntent.NOT_FOUND
    assert "Nonexistent Hospital Zzz" in response.message


def test_not_found_with_city():
    response = decide(NotFound(query="Zzz"), True, "Zzz", QueryKind.CONFIRM_NETWORK)
    assert response.message == "Sorry, 'Zzz' is not in the network database."


def test_confirm_without_city_reports_unknown_entity():
    response = decide(NotFound(query="Zzz"), False, "Zzz", QueryKind.CONFIRM_NETWORK)
    assert response.intent is ResponseIntent.NOT_FOUND
    assert response.message == "I dont have 'Zzz' in my database."
    assert "which city" not in response.message.lower()


# ── Wording per tool ──────────────────────────────────────────────────────────

def test_location_wording():
    response = decide(Found(record=APOLLO), False, "Apollo", QueryKind.LOCATION)
    assert response.message == "Apollo Hospital is located in Bangalore."


def test_ask_city_wording_per_kind():
    result = Ambiguous(by_city={"Mumbai": [FORTIS_MUMBAI], "Gurgaon": [FORTIS_GURGAON]})
    assert decide(result, False, "Fortis", QueryKind.DETAILS).message == \
        "'Fortis' found in: Mumbai, Gurgaon. Which city?"
    assert decide(result, False, "Fortis", QueryKind.CONFIRM_NETWORK).message == \
        "I found 'Fortis' in multiple cities: Mumbai, Gurgaon. Which city?"
    assert decide(result, False, "Fortis", QueryKind.LOCATION).message == \
        "'Fortis' exists in multiple cities: Mumbai, Gurgaon. Which city do you need?"


def test_missing_address_is_spoken_as_unavailable():
    response = decide(Found(record=NO_ADDRESS), False, "City Hospital")
    assert response.message.endswith("The address is not available.")


def test_unrecognised_result_maps_to_not_found():
    response = decide(object(), False, "Apollo")
    assert response.intent is ResponseIntent.NOT_FOUND
    assert "Apollo" in response.message


# ── missing_argument ──────────────────────────────────────────────────────────

def test_missing_name_question():
    response = missing_argument("name")
    assert response.intent is ResponseIntent.CLARIFY
    assert response.message == (
        "I need the hospital name to get details. Which hospital are you interested in?"
    )


def test_missing_city_question():
    response = missing_argument("city")
    assert response.intent is ResponseIntent.CLARIFY
    assert "which city" in response.message.lower()
