"""
directory_index.py
------------------
Loop AI - Hospital Network Assistant - Directory Index
------------------------------------------------------
Immutable, in-memory collection of hospital records keyed by stable id.
This is the ground truth for every lookup the assistant performs.

Generations
-----------
Each successful load produces a new ``DirectoryGeneration`` - a frozen
snapshot of the record tuple and its id map - and installs it with a single
reference swap under the writer lock.  Readers call ``snapshot()`` once per
operation and work on that generation only, so a reload running next to a
lookup can be observed as "old" or "new" but never as a mix.

Failure policy
--------------
An empty or failed load leaves the previous generation in place (or the
index empty if there never was one).  An empty index is not an error:
every lookup against it simply finds nothing.

Public API:
    DirectoryIndex.load(records)         - atomic replace; False when nothing was installed.
    DirectoryIndex.load_rows(rows, ...)  - validate raw rows, then load.
    DirectoryIndex.all() / by_id(id)     - read the current generation.
    DirectoryIndex.snapshot()            - the current DirectoryGeneration.
    DirectoryIndex.get_stats()           - counts for monitoring.

Project: Loop AI - Hospital Network Assistant
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from schemas import ColumnMapping, HospitalRecord, LoadSummary, records_from_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryGeneration:
    """One loaded, never-mutated version of the directory."""

    number:    int
    records:   Tuple[HospitalRecord, ...] = ()
    by_id:     Mapping[str, HospitalRecord] = field(default_factory=lambda: MappingProxyType({}))
    loaded_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.records)


_EMPTY_GENERATION = DirectoryGeneration(number=0)


class DirectoryIndex:
    """
    Holds the current directory generation and swaps it atomically on reload.

    Args:
        records: Optional initial records, loaded as generation 1.
    """

    def __init__(self, records: Optional[Iterable[HospitalRecord]] = None) -> None:
        self._write_lock = threading.Lock()
        self._current: DirectoryGeneration = _EMPTY_GENERATION
        self._failed_loads = 0
        if records is not None:
            self.load(records)

    # ── Writers ──────────────────────────────────────────────────────────────

    def load(self, records: Iterable[HospitalRecord]) -> bool:
        """
        Replace the whole index with *records*.

        Records with a duplicate id keep the first occurrence.  Non-record
        items are skipped.  When nothing usable remains, the previous
        generation stays installed.

        Returns:
            bool: True when a new generation was installed.
        """
        try:
            ordered: List[HospitalRecord] = []
            by_id: Dict[str, HospitalRecord] = {}
            for record in records:
                if not isinstance(record, HospitalRecord):
                    logger.warning("directory_index.load: skipped non-record item %r.", type(record).__name__)
                    continue
                if record.id in by_id:
                    logger.warning("directory_index.load: duplicate id '%s' skipped.", record.id)
                    continue
                by_id[record.id] = record
                ordered.append(record)
        except Exception:
            # The record source itself failed mid-iteration.
            logger.exception("directory_index.load: record source failed; keeping generation %s.", self._current.number)
            self._failed_loads += 1
            return False

        if not ordered:
            logger.warning(
                "directory_index.load: no records to load; keeping generation %s (%d records).",
                self._current.number, len(self._current),
            )
            self._failed_loads += 1
            return False

        with self._write_lock:
            generation = DirectoryGeneration(
                number=self._current.number + 1,
                records=tuple(ordered),
                by_id=MappingProxyType(by_id),
                loaded_at=datetime.now(timezone.utc),
            )
            self._current = generation

        logger.info(
            "directory_index: generation %s installed with %d hospitals.",
            generation.number, len(generation),
        )
        return True

    def load_rows(
        self,
        rows: Iterable[Any],
        mapping: Optional[ColumnMapping] = None,
    ) -> LoadSummary:
        """
        Validate raw directory rows and load the accepted records.

        Malformed rows are skipped (see ``schemas.records_from_rows``).

        Returns:
            LoadSummary: counts for the rows attempted.
        """
        records, summary = records_from_rows(rows, mapping)
        if summary.rejected:
            logger.warning(
                "directory_index.load_rows: %d of %d rows skipped as malformed.",
                summary.rejected, summary.total,
            )
        self.load(records)
        return summary

    # ── Readers ──────────────────────────────────────────────────────────────

    def snapshot(self) -> DirectoryGeneration:
        """The generation current at the time of the call."""
        return self._current

    def all(self) -> Tuple[HospitalRecord, ...]:
        return self._current.records

    def by_id(self, record_id: Any) -> Optional[HospitalRecord]:
        """Return the record with *record_id*, or None when not present."""
        if record_id is None:
            return None
        return self._current.by_id.get(str(record_id).strip())

    @property
    def generation(self) -> int:
        return self._current.number

    def size(self) -> int:
        return len(self._current)

    def is_empty(self) -> bool:
        return len(self._current) == 0

    def all_cities(self) -> List[str]:
        """Distinct non-empty city spellings, in first-seen order."""
        seen: Dict[str, None] = {}
        for record in self._current.records:
            if record.city and record.city not in seen:
                seen[record.city] = None
        return list(seen)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get index statistics.

        Returns:
            Dictionary with generation number, record count, city count,
            load time and failed load count.
        """
        current = self._current
        return {
            "generation": current.number,
            "record_count": len(current),
            "city_count": len(self.all_cities()),
            "loaded_at": current.loaded_at.isoformat() if current.loaded_at else None,
            "failed_loads": self._failed_loads,
        }
