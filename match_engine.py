"""
match_engine.py
---------------
Loop AI - Hospital Network Assistant - Match Engine
---------------------------------------------------
Deterministic keyword matching of a free-text hospital name (and optional
city) against the Directory Index.  There is no relevance ranking: results
come back in directory iteration order, and a record is a candidate iff
EVERY query token of length > 2 is a substring of its name + address.

    "Apollo Sarjapur"  → tokens ["apollo", "sarjapur"]
                        → matches "Apollo Clinic, Sarjapur Road"
                        → does NOT match "Apollo Hospital, Bannerghatta Road"

Every operation reads exactly one directory generation, performs no I/O,
and never raises for any input string (including None).

Key functions:
    tokenize:                   query → lowercase tokens longer than 2 chars.
    MatchEngine.find_exact:     AND-of-tokens, optionally filtered by city.
    MatchEngine.find_one:       first candidate or None.
    MatchEngine.group_by_city:  all candidates ignoring city, grouped by city.
    MatchEngine.by_city:        every record in a city.
    MatchEngine.keyword_search: OR-of-tokens fallback over name/city/address/specialties.
    MatchEngine.resolve_by_name_and_city: structured MatchResult for the policy.

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional

from city_aliases import CityAliasResolver, is_city_placeholder
from directory_index import DirectoryIndex
from schemas import (
    UNKNOWN_CITY,
    Ambiguous,
    Found,
    FoundElsewhere,
    HospitalRecord,
    MatchResult,
    NotFound,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 5

# Tokens this short are too unselective to filter on.
_MIN_TOKEN_CHARS = 3

_TOKEN_SPLIT_RE = re.compile(r"[\s,]+")


def tokenize(text: Any) -> List[str]:
    """
    Split *text* on whitespace and commas into lowercase tokens, dropping
    tokens of length ≤ 2.

    Args:
        text: Raw query text; None and non-strings are tolerated.

    Returns:
        List[str]: Surviving tokens in query order (may be empty).
    """
    if text is None:
        return []
    return [t for t in _TOKEN_SPLIT_RE.split(str(text).lower()) if len(t) >= _MIN_TOKEN_CHARS]


def _matches_all_tokens(record: HospitalRecord, tokens: List[str]) -> bool:
    haystack = record.name_and_address()
    return all(token in haystack for token in tokens)


def _matches_any_token(record: HospitalRecord, tokens: List[str]) -> bool:
    haystack = record.keyword_text()
    return any(token in haystack for token in tokens)


class MatchEngine:
    """
    Keyword and alias matching over a DirectoryIndex.

    Args:
        index:               Directory to search.
        resolver:            City alias resolver (shares one alias table).
        default_max_results: Used whenever a caller passes max_results <= 0.
    """

    def __init__(
        self,
        index: DirectoryIndex,
        resolver: Optional[CityAliasResolver] = None,
        default_max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self.index = index
        self.resolver = resolver or CityAliasResolver()
        self.default_max_results = default_max_results if default_max_results > 0 else DEFAULT_MAX_RESULTS

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _limit(self, max_results: Any) -> int:
        try:
            value = int(max_results)
        except (TypeError, ValueError):
            return self.default_max_results
        return value if value > 0 else self.default_max_results

    def _in_city(self, record: HospitalRecord, city: str) -> bool:
        # A record with no city can never be confirmed in a specific city.
        return bool(record.city) and self.resolver.match(record.city, city)

    def _name_candidates(self, records: Iterable[HospitalRecord], name: Any) -> Iterator[HospitalRecord]:
        tokens = tokenize(name)
        if not tokens:
            return iter(())
        return (r for r in records if _matches_all_tokens(r, tokens))

    # ── Name lookups ─────────────────────────────────────────────────────────

    def find_exact(self, name: Any, city: Any = None, max_results: Any = DEFAULT_MAX_RESULTS) -> List[HospitalRecord]:
        """
        All records whose name + address contain every name token, in index
        order, optionally restricted to *city* (alias-aware).

        A placeholder city ("", "unknown", ...) applies no filter.
        """
        results = self._find(self.index.snapshot().records, name, city, self._limit(max_results))
        logger.debug("match_engine.find_exact: name=%r city=%r → %d result(s).", name, city, len(results))
        return results

    def find_one(self, name: Any, city: Any = None) -> Optional[HospitalRecord]:
        """First record satisfying ``find_exact``, or None."""
        found = self._find(self.index.snapshot().records, name, city, 1)
        return found[0] if found else None

    def group_by_city(self, name: Any) -> Dict[str, List[HospitalRecord]]:
        """
        Every name candidate regardless of city, grouped by the record's own
        city.  Records without a city fall under ``"Unknown"``.  Spellings of
        the same place ("Bangalore" / "Bengaluru", "mumbai" / "Mumbai") share
        the bucket keyed by the first spelling seen.

        Used for disambiguation only, never for a direct answer.
        """
        groups = self._group(self.index.snapshot().records, name)
        logger.debug("match_engine.group_by_city: name=%r → cities %s.", name, list(groups))
        return groups

    def _find(self, records: Iterable[HospitalRecord], name: Any, city: Any, limit: int) -> List[HospitalRecord]:
        results: List[HospitalRecord] = []
        use_city = not is_city_placeholder(city)
        for record in self._name_candidates(records, name):
            if use_city and not self._in_city(record, city):
                continue
            results.append(record)
            if len(results) >= limit:
                break
        return results

    def _group(self, records: Iterable[HospitalRecord], name: Any) -> Dict[str, List[HospitalRecord]]:
        groups: Dict[str, List[HospitalRecord]] = {}
        for record in self._name_candidates(records, name):
            key = self._bucket_for(record.city, groups)
            groups.setdefault(key, []).append(record)
        return groups

    def _bucket_for(self, city: Optional[str], groups: Dict[str, List[HospitalRecord]]) -> str:
        if not city:
            return UNKNOWN_CITY
        for existing in groups:
            if existing != UNKNOWN_CITY and self.resolver.same_place(existing, city):
                return existing
        return city

    # ── City / keyword lookups ───────────────────────────────────────────────

    def by_city(self, city: Any, max_results: Any = DEFAULT_MAX_RESULTS) -> List[HospitalRecord]:
        """Records located in *city* (alias-aware).  A placeholder city returns []."""
        if is_city_placeholder(city):
            return []
        limit = self._limit(max_results)
        results: List[HospitalRecord] = []
        for record in self.index.snapshot().records:
            if self._in_city(record, city):
                results.append(record)
                if len(results) >= limit:
                    break
        return results

    def keyword_search(self, text: Any, max_results: Any = DEFAULT_MAX_RESULTS, city: Any = None) -> List[HospitalRecord]:
        """
        Loose OR-of-tokens search across name, city, address and specialties.

        Only the fallback path when no structured name/city is available.
        A real *city* filters records before the result limit is applied.
        """
        tokens = tokenize(text)
        if not tokens:
            return []
        limit = self._limit(max_results)
        use_city = not is_city_placeholder(city)
        results: List[HospitalRecord] = []
        for record in self.index.snapshot().records:
            if use_city and not self._in_city(record, city):
                continue
            if _matches_any_token(record, tokens):
                results.append(record)
                if len(results) >= limit:
                    break
        return results

    # ── Structured resolution ────────────────────────────────────────────────

    def resolve_by_name_and_city(
        self,
        name: Any,
        city: Any = None,
        max_results: Any = DEFAULT_MAX_RESULTS,
    ) -> MatchResult:
        """
        Resolve a hospital name and optional city to a MatchResult.

        No city (or a placeholder):
            no candidate        → NotFound
            one city            → Found(first record of that city)
            several cities      → Ambiguous(city → records)
        Real city:
            candidate in city   → Found(first such record)
            candidate elsewhere → FoundElsewhere(first record of first city, city)
            no candidate        → NotFound

        Each city's record list in an Ambiguous result is capped at
        *max_results*.
        """
        query = "" if name is None else str(name).strip()
        if not tokenize(query):
            return NotFound(query=query)

        records = self.index.snapshot().records
        if is_city_placeholder(city):
            groups = self._group(records, query)
            if not groups:
                return NotFound(query=query)
            if len(groups) == 1:
                only = next(iter(groups.values()))
                return Found(record=only[0])
            limit = self._limit(max_results)
            return Ambiguous(by_city={c: matched[:limit] for c, matched in groups.items()})

        in_city = self._find(records, query, city, 1)
        if in_city:
            return Found(record=in_city[0])

        groups = self._group(records, query)
        if groups:
            first = next(iter(groups.values()))
            return FoundElsewhere(record=first[0], requested_city=str(city).strip())
        return NotFound(query=query)
