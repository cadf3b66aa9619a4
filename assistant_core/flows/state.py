"""State definitions for the assistant turn graph."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, TypedDict

from assistant_core.domain.models import Message, ModelResponse, RetrievalContext


class LoopState(str, Enum):
    IDLE = "idle"
    ADMITTING = "admitting"
    RATE_BLOCKED = "rate_blocked"
    QUOTA_BLOCKED = "quota_blocked"
    REQUESTING = "requesting"
    TOOL_PENDING = "tool_pending"
    TERMINAL_TEXT = "terminal_text"
    TERMINAL_ERROR = "terminal_error"


BLOCKED_STATES = (LoopState.RATE_BLOCKED, LoopState.QUOTA_BLOCKED, LoopState.TERMINAL_ERROR)


class TurnState(TypedDict, total=False):
    """State shared across graph nodes for one user turn."""

    trace_id: str
    state: LoopState
    trail: List[LoopState]
    user_text: str
    # full history sent through the reducer; the new user message keeps its inline bytes here
    working: List[Message]
    new_messages: List[Message]
    system_prompt: str
    tools_enabled: bool
    web_search: Optional[str]
    tool_rounds: int
    pending: Optional[ModelResponse]
    final_text: Optional[str]
    error: Optional[BaseException]
    retrieval: Optional[RetrievalContext]


def transition(state: TurnState, target: LoopState) -> TurnState:
    state["state"] = target
    state.setdefault("trail", []).append(target)
    return state
