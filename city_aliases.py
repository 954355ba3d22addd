"""
city_aliases.py
---------------
Loop AI - Hospital Network Assistant - City Alias Resolver
----------------------------------------------------------
Decides whether two city strings denote the same place.  Callers speak
city names through a speech-to-text layer, so the same city arrives as
"Bangalore", "Bengaluru", "blr" or "Bangalore Urban".  Matching is
lenient: normalised containment in either direction, then
membership of both strings in the same alias group.

The alias table is an immutable value built once at startup and handed to
the resolver by reference.  There is no module-level mutable table.

Key objects:
    CityAliasGroup:      canonical city name → set of alias spellings.
    CityAliasTable:      ordered, frozen collection of groups.
    CityAliasResolver:   match(a, b) and canonical_for(city).
    is_city_placeholder: True for "", "unknown", "not specified", ...

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator, model_validator

logger = logging.getLogger(__name__)

# Shorter strings only match by equality or exact alias membership.
MIN_TOKEN_LENGTH = 3

# Values an upstream LLM fills in when the caller never named a city.
CITY_PLACEHOLDERS: FrozenSet[str] = frozenset({
    "",
    "unknown",
    "not specified",
    "not provided",
    "unspecified",
    "null",
    "none",
    "n/a",
})

_WHITESPACE_RE = re.compile(r"\s+")


def normalise_city(city: Any) -> str:
    """Trim, lowercase and collapse internal whitespace.  None → ""."""
    if city is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(city)).strip().lower()


def is_city_placeholder(city: Any) -> bool:
    """
    Return True when *city* carries no usable city.

    Placeholders are treated exactly like an absent city and must never be
    passed to the Match Engine as a real filter.
    """
    return normalise_city(city) in CITY_PLACEHOLDERS


def _contains_either_way(a: str, b: str) -> bool:
    """Equality, or containment either way when the shorter side is long enough."""
    if a == b:
        return True
    shorter = a if len(a) <= len(b) else b
    if len(shorter) < MIN_TOKEN_LENGTH:
        return False
    return a in b or b in a


# ---------------------------------------------------------------------------
# Alias table (immutable configuration)
# ---------------------------------------------------------------------------

class CityAliasGroup(BaseModel):
    """A canonical city name and every spelling that denotes it."""

    model_config = ConfigDict(frozen=True)

    canonical: str
    aliases:   FrozenSet[str]

    @field_validator("canonical", mode="before")
    @classmethod
    def clean_canonical(cls, v: Any) -> str:
        cleaned = normalise_city(v)
        if not cleaned:
            raise ValueError("canonical city must not be empty.")
        return cleaned

    @field_validator("aliases", mode="before")
    @classmethod
    def clean_aliases(cls, v: Any, info: ValidationInfo) -> FrozenSet[str]:
        """Normalise every alias; the canonical spelling is always one of them."""
        if isinstance(v, str):
            v = [v]
        aliases = {a for a in (normalise_city(x) for x in (v or ())) if a}
        canonical = info.data.get("canonical")
        if canonical:
            aliases.add(canonical)
        return frozenset(aliases)

    def matches(self, city: str) -> bool:
        """True when the normalised *city* hits any alias of this group."""
        return any(_contains_either_way(city, alias) for alias in self.aliases)


class CityAliasTable(BaseModel):
    """
    Ordered, frozen collection of alias groups.

    Alias sets are expected to be disjoint.  The table is hand-curated, so
    overlaps are detected and logged at construction rather than rejected;
    lookups resolve an overlap deterministically to the first-defined group.
    """

    model_config = ConfigDict(frozen=True)

    groups: Tuple[CityAliasGroup, ...] = ()

    @model_validator(mode="after")
    def warn_on_overlap(self) -> "CityAliasTable":
        overlaps = self.overlapping_aliases()
        if overlaps:
            logger.warning(
                "city_aliases: aliases shared by several groups (first group wins): %s",
                overlaps,
            )
        return self

    @classmethod
    def from_mapping(cls, table: Dict[str, Any]) -> "CityAliasTable":
        """Build a table from ``{canonical: [alias, ...]}`` preserving key order."""
        return cls(groups=tuple(
            CityAliasGroup(canonical=canonical, aliases=aliases)
            for canonical, aliases in table.items()
        ))

    def overlapping_aliases(self) -> Dict[str, List[str]]:
        """Alias → canonical names of every group that lists it, for aliases listed more than once."""
        owners: Dict[str, List[str]] = {}
        for group in self.groups:
            for alias in group.aliases:
                owners.setdefault(alias, []).append(group.canonical)
        return {alias: names for alias, names in sorted(owners.items()) if len(names) > 1}


def default_alias_table() -> CityAliasTable:
    """Alias table for the Indian metro network the directory currently covers."""
    return CityAliasTable.from_mapping({
        "bengaluru": ["bangalore", "bengaluru", "blr"],
        "mumbai":    ["mumbai", "bombay"],
        "chennai":   ["chennai", "madras"],
        "kolkata":   ["kolkata", "calcutta"],
        "delhi":     ["delhi", "new delhi", "newdelhi"],
        "pune":      ["pune", "poona"],
        "hyderabad": ["hyderabad", "hyd"],
        "gurugram":  ["gurugram", "gurgaon"],
        "ghaziabad": ["ghaziabad", "gzb"],
    })


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class CityAliasResolver:
    """
    Decides city equivalence against one alias table.

    ``match`` is symmetric: every rule it applies is symmetric in its two
    arguments.  An absent city (None or blank) on either side matches
    anything; callers decide whether absence means "no filter" before they
    call.
    """

    def __init__(self, table: Optional[CityAliasTable] = None) -> None:
        self.table = table if table is not None else default_alias_table()

    def match(self, city_a: Any, city_b: Any) -> bool:
        a = normalise_city(city_a)
        b = normalise_city(city_b)
        if not a or not b:
            return True
        if _contains_either_way(a, b):
            return True
        for group in self.table.groups:
            if group.matches(a) and group.matches(b):
                return True
        return False

    def canonical_for(self, city: Any) -> Optional[str]:
        """Canonical name of the first group *city* belongs to, or None."""
        normalised = normalise_city(city)
        if not normalised:
            return None
        for group in self.table.groups:
            if group.matches(normalised):
                return group.canonical
        return None

    def same_place(self, city_a: Any, city_b: Any) -> bool:
        """
        Stricter equivalence used for grouping: both cities present and
        either equal after normalisation or in the same first-matching group.
        """
        a = normalise_city(city_a)
        b = normalise_city(city_b)
        if not a or not b:
            return False
        if a == b:
            return True
        canonical = self.canonical_for(a)
        return canonical is not None and canonical == self.canonical_for(b)
