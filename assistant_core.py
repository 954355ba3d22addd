"""
assistant_core.py
-----------------
Loop AI - Hospital Network Assistant - Core Facade
--------------------------------------------------
Single object the orchestrator talks to.  It owns one Directory Index, one
Match Engine over it, one Session Store and one Escalation Trigger, all
built from a single AssistantSettings value and a single alias table.

Request flow (one caller utterance):

    orchestrator → resolve_by_name_and_city / resolve_by_city / group_by_name
                 → (LLM composes the reply)
                 → finalize_response → EscalationTrigger
                 → session_append (only when not escalated)

Public API:
    AssistantCore.resolve_by_name_and_city(name, city, max_results)
    AssistantCore.resolve_by_city(city, max_results)
    AssistantCore.group_by_name(name)
    AssistantCore.session_append / session_clear / session_snapshot
    AssistantCore.reload(rows), finalize_response(...), start(), close()
    create_assistant_core(settings)

Project: Loop AI - Hospital Network Assistant
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from city_aliases import CityAliasResolver, CityAliasTable, default_alias_table
from config import AssistantSettings, configure_logging, load_settings
from directory_index import DirectoryIndex
from escalation import (
    EscalationNotifier,
    EscalationOutcome,
    EscalationTrigger,
    LoggingNotifier,
    WebhookHandoffNotifier,
)
from match_engine import MatchEngine
from schemas import ColumnMapping, HospitalRecord, LoadSummary, MatchResult, Turn
from session_store import SessionStore

logger = logging.getLogger(__name__)


class AssistantCore:
    """
    Wires the directory, matching, sessions and escalation together.

    Args:
        settings:    Runtime settings; defaults to ``AssistantSettings()``.
        alias_table: City alias table shared by every lookup.
        notifier:    Handoff notifier; chosen from settings when omitted.
        store:       Pre-built session store (tests inject one with a fake clock).
    """

    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        alias_table: Optional[CityAliasTable] = None,
        notifier: Optional[EscalationNotifier] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        self.settings = settings or AssistantSettings()
        self.resolver = CityAliasResolver(alias_table if alias_table is not None else default_alias_table())
        self.index = DirectoryIndex()
        self.engine = MatchEngine(self.index, self.resolver, self.settings.default_max_results)
        self.store = store or SessionStore(
            max_turns=self.settings.max_turns,
            max_sessions=self.settings.max_sessions,
            idle_timeout_s=self.settings.idle_timeout_s,
        )
        self.notifier = notifier if notifier is not None else _notifier_from_settings(self.settings)
        self.escalation = EscalationTrigger(
            self.store, self.notifier, notify_timeout_s=self.settings.handoff_timeout_s,
        )

    # ── Directory ────────────────────────────────────────────────────────────

    def reload(self, rows: Iterable[Any], mapping: Optional[ColumnMapping] = None) -> LoadSummary:
        """Validate raw rows and atomically install them as the new directory."""
        return self.index.load_rows(rows, mapping or self.settings.columns)

    def load_records(self, records: Iterable[HospitalRecord]) -> bool:
        return self.index.load(records)

    # ── Lookups ──────────────────────────────────────────────────────────────

    def resolve_by_name_and_city(self, name: Any, city: Any = None, max_results: Optional[int] = None) -> MatchResult:
        return self.engine.resolve_by_name_and_city(name, city, max_results or self.settings.default_max_results)

    def resolve_by_city(self, city: Any, max_results: Optional[int] = None) -> List[HospitalRecord]:
        return self.engine.by_city(city, max_results or self.settings.default_max_results)

    def group_by_name(self, name: Any) -> Dict[str, List[HospitalRecord]]:
        return self.engine.group_by_city(name)

    # ── Sessions ─────────────────────────────────────────────────────────────

    def session_append(self, user_id: Any, turn: Turn) -> None:
        self.store.append(user_id, turn)

    def session_clear(self, user_id: Any) -> bool:
        return self.store.clear(user_id)

    def session_snapshot(self, user_id: Any) -> List[Turn]:
        return self.store.snapshot(user_id)

    # ── Response finalisation ────────────────────────────────────────────────

    def finalize_response(self, user_id: Any, user_query: Any, response_text: Any) -> EscalationOutcome:
        """
        Run escalation on a generated reply, then record the turn.

        An escalated conversation is over: its session has been cleared and
        the turn is not stored.
        """
        outcome = self.escalation.process(user_id, response_text, user_query)
        if not outcome.escalated:
            query = "" if user_query is None else str(user_query)
            self.store.append(user_id, Turn(human=query, ai=outcome.text))
        return outcome

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        self.store.start_sweeper(self.settings.sweep_interval_s)

    def close(self) -> None:
        self.store.stop_sweeper()
        self.escalation.shutdown(wait=True)
        close = getattr(self.notifier, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "AssistantCore":
        self.start()
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        return {"directory": self.index.get_stats(), "sessions": self.store.stats()}


def _notifier_from_settings(settings: AssistantSettings) -> EscalationNotifier:
    if settings.handoff_enabled and settings.handoff_webhook_url:
        return WebhookHandoffNotifier(settings.handoff_webhook_url, timeout=settings.handoff_timeout_s)
    if settings.handoff_enabled:
        logger.warning("assistant_core: handoff enabled but LOOP_HANDOFF_WEBHOOK_URL is unset; logging only.")
    return LoggingNotifier()


def create_assistant_core(settings: Optional[AssistantSettings] = None, rows: Optional[Iterable[Any]] = None) -> AssistantCore:
    """
    Build a core from settings (read from the environment when omitted)
    and optionally load an initial directory.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    core = AssistantCore(settings)
    if rows is not None:
        summary = core.reload(rows)
        logger.info(
            "assistant_core: loaded %d of %d directory rows.", summary.accepted, summary.total,
        )
    return core
