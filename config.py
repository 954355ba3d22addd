"""
config.py
---------
Loop AI - Hospital Network Assistant - Runtime Settings
-------------------------------------------------------
Settings for the assistant core, read from ``LOOP_*`` environment variables
after ``load_dotenv()`` so a local ``.env`` works in development.

    LOOP_SESSION_IDLE_MINUTES   30
    LOOP_MAX_SESSIONS           1000
    LOOP_MAX_TURNS              10
    LOOP_SWEEP_INTERVAL_S       60
    LOOP_MAX_RESULTS            5
    LOOP_HANDOFF_ENABLED        false
    LOOP_HANDOFF_WEBHOOK_URL    (unset)
    LOOP_HANDOFF_TIMEOUT_S      10
    LOOP_LOG_LEVEL              INFO
    LOOP_NAME_COLUMN / LOOP_CITY_COLUMN / LOOP_ADDRESS_COLUMN / LOOP_ID_COLUMN

A malformed numeric value is logged and replaced by its default rather than
stopping the service.

Project: Loop AI - Hospital Network Assistant
"""

import logging
import math
import os
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from schemas import ColumnMapping

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class AssistantSettings(BaseModel):
    """Immutable settings for one assistant core instance."""

    model_config = ConfigDict(frozen=True)

    session_idle_minutes: float = Field(default=30.0, gt=0)
    max_sessions:         int   = Field(default=1000, ge=1)
    max_turns:            int   = Field(default=10, ge=1)
    sweep_interval_s:     float = Field(default=60.0, gt=0)
    default_max_results:  int   = Field(default=5, ge=1)

    handoff_enabled:      bool          = False
    handoff_webhook_url:  Optional[str] = None
    handoff_timeout_s:    float         = Field(default=10.0, gt=0)

    log_level:            str           = "INFO"
    columns:              ColumnMapping = Field(default_factory=ColumnMapping)

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> str:
        level = str(v or "INFO").strip().upper()
        return level if level in _LEVELS else "INFO"

    @field_validator("handoff_webhook_url", mode="before")
    @classmethod
    def blank_url_is_none(cls, v: Any) -> Optional[str]:
        text = str(v).strip() if v is not None else ""
        return text or None

    @property
    def idle_timeout_s(self) -> float:
        return self.session_idle_minutes * 60.0


def _env_number(name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("config: %s=%r is not a valid number; using default %s.", name, raw, default)
        return default
    if not (value > 0 and math.isfinite(value)):
        logger.warning("config: %s=%r must be a positive finite number; using default %s.", name, raw, default)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def load_settings(dotenv: bool = True) -> AssistantSettings:
    """
    Build AssistantSettings from the environment.

    Args:
        dotenv: Load a ``.env`` file first (without overriding real env vars).

    Returns:
        AssistantSettings: never raises for malformed values.
    """
    if dotenv:
        load_dotenv(override=False)

    defaults = ColumnMapping()
    columns = ColumnMapping(
        name_column=os.getenv("LOOP_NAME_COLUMN") or defaults.name_column,
        city_column=os.getenv("LOOP_CITY_COLUMN") or defaults.city_column,
        address_column=os.getenv("LOOP_ADDRESS_COLUMN") or defaults.address_column,
        id_column=os.getenv("LOOP_ID_COLUMN") or None,
        specialties_column=os.getenv("LOOP_SPECIALTIES_COLUMN") or None,
    )
    return AssistantSettings(
        session_idle_minutes=_env_number("LOOP_SESSION_IDLE_MINUTES", 30.0, float),
        max_sessions=_env_number("LOOP_MAX_SESSIONS", 1000, int),
        max_turns=_env_number("LOOP_MAX_TURNS", 10, int),
        sweep_interval_s=_env_number("LOOP_SWEEP_INTERVAL_S", 60.0, float),
        default_max_results=_env_number("LOOP_MAX_RESULTS", 5, int),
        handoff_enabled=_env_bool("LOOP_HANDOFF_ENABLED", False),
        handoff_webhook_url=os.getenv("LOOP_HANDOFF_WEBHOOK_URL"),
        handoff_timeout_s=_env_number("LOOP_HANDOFF_TIMEOUT_S", 10.0, float),
        log_level=os.getenv("LOOP_LOG_LEVEL", "INFO"),
        columns=columns,
    )


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup shared by every assistant module."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
