"""
conversation.py
---------------
Loop AI - Hospital Network Assistant - Multi-turn conversation handling
-----------------------------------------------------------------------
Runs one caller utterance through the external responder (the LLM agent)
with the caller's recent turns prepended, so follow-ups like "what about
the one in Mumbai?" resolve against the hospital discussed earlier.

The responder itself is outside this module: anything with ``invoke`` (a
LangChain runnable / agent executor) or a plain callable taking
``{"input": str}``.  History lives in the Session Store, keyed by user id,
so concurrent callers never see each other's turns.

Key functions:
    - chat: one turn in, one ChatReply out; never raises.

Project: Loop AI - Hospital Network Assistant
"""

import logging
from typing import Any, List

from langsmith import traceable
from pydantic import BaseModel, ConfigDict, Field

from assistant_core import AssistantCore
from schemas import Turn


logger = logging.getLogger(__name__)


# Empty or whitespace-only utterance (often an STT miss).
EMPTY_INPUT_MESSAGE = (
    "Sorry, I didn't catch that. You can ask me whether a hospital is in "
    "your network, or which hospitals we have in your city."
)

# Responder raised; no raw exception text is ever spoken.
AGENT_ERROR_MESSAGE = (
    "I'm having trouble answering right now. Please try again in a moment."
)

# No responder configured.
INVALID_AGENT_MESSAGE = (
    "The assistant is not available at the moment. Please try again later."
)


class ChatReply(BaseModel):
    """Result of one conversation turn."""

    model_config = ConfigDict(frozen=True)

    text:      str
    escalated: bool = False
    history:   List[Turn] = Field(default_factory=list)


def _normalize_output(raw_output: Any) -> str:
    """
    Convert responder output to a single string.

    Handles a plain string, a ``{"output": ...}`` dict, a message object
    with ``.content``, and lists of content blocks.
    """
    if raw_output is None:
        return ""
    if isinstance(raw_output, str):
        return raw_output
    if isinstance(raw_output, dict):
        return _normalize_output(raw_output.get("output", raw_output.get("text")))
    if isinstance(raw_output, list):
        parts = []
        for item in raw_output:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(_normalize_output(item))
        return " ".join(p for p in parts if p)
    content = getattr(raw_output, "content", None)
    if content is not None:
        return _normalize_output(content)
    return str(raw_output)


def _build_input(history: List[Turn], message: str) -> str:
    """
    Build the full prompt string from prior turns + the current message.

    Args:
        history: Turns from the Session Store, oldest first.
        message: Current utterance (already stripped).

    Returns:
        str: Context-prepended input string.
    """
    parts = [f"User: {turn.human}\nAssistant: {turn.ai}" for turn in history]
    parts.append(f"User: {message}")
    return "\n\n".join(parts)


def _invoke(responder: Any, payload: dict) -> Any:
    if hasattr(responder, "invoke"):
        return responder.invoke(payload)
    return responder(payload)


@traceable
def chat(core: AssistantCore, responder: Any, user_id: Any, message: Any) -> ChatReply:
    """
    Send one utterance to the responder with the caller's history; record
    the turn, or hand the caller off when the reply carries the sentinel.

    Args:
        core:      AssistantCore owning sessions and escalation.
        responder: LLM agent (``invoke``-able or callable), or None.
        user_id:   Caller identifier (e.g. phone number).
        message:   The caller's utterance.

    Returns:
        ChatReply: On failure, a safe fixed message with the session untouched.
    """
    if responder is None:
        return ChatReply(text=INVALID_AGENT_MESSAGE, history=core.session_snapshot(user_id))

    if not isinstance(message, str):
        message = str(message) if message is not None else ""
    stripped = message.strip()
    if not stripped:
        return ChatReply(text=EMPTY_INPUT_MESSAGE, history=core.session_snapshot(user_id))

    history = core.session_snapshot(user_id)
    try:
        raw = _invoke(responder, {"input": _build_input(history, stripped)})
        response_text = _normalize_output(raw)
    except Exception:
        logger.exception("conversation.chat: responder failed for user %s.", user_id)
        return ChatReply(text=AGENT_ERROR_MESSAGE, history=history)

    outcome = core.finalize_response(user_id, stripped, response_text)
    return ChatReply(
        text=outcome.text,
        escalated=outcome.escalated,
        history=core.session_snapshot(user_id),
    )
