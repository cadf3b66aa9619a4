"""LangGraph construction and node implementations for one assistant turn.

admit -> prepare -> request -> (tools -> request)* -> finish | fail
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from assistant_core.agents.context import prune_outcome, relevant_history
from assistant_core.domain.conversation import ConversationStore, ScopeKey
from assistant_core.domain.exceptions import (
    AssistantError,
    BusinessError,
    ErrorKind,
    QuotaExceeded,
    RateLimitExceeded,
    TooManyIterations,
    classify_error,
)
from assistant_core.domain.models import Message
from assistant_core.flows.state import BLOCKED_STATES, LoopState, TurnState, transition
from assistant_core.guards.quota import QuotaGate
from assistant_core.guards.rate_limiter import SlidingWindowRateLimiter
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.output.sanitizer import sanitize
from assistant_core.providers.base import ModelClient
from assistant_core.retrieval.augmenter import RetrievalAugmenter
from assistant_core.tools.definitions import ToolCall, ToolDef, ToolResult
from assistant_core.tools.dispatcher import ToolDispatcher

FALLBACK_TEXT = "I've completed the action."
UPGRADE_HINT = "\n\nPlease upgrade your plan to continue using the AI assistant."


@dataclass
class LoopRuntime:
    """Per-scope collaborators the nodes operate on."""

    scope: ScopeKey
    model: ModelClient
    dispatcher: ToolDispatcher
    store: ConversationStore
    rate_limiter: SlidingWindowRateLimiter
    quota_gate: QuotaGate
    tools: List[ToolDef]
    max_tool_iterations: int
    history_window: int
    augmenter: Optional[RetrievalAugmenter] = None
    observers: List[Callable[[Message], Any]] = field(default_factory=list)


def _log_extra(state: TurnState, rt: LoopRuntime, **fields) -> Dict[str, Any]:
    return {"extra": {"trace_id": state.get("trace_id"), "scope": rt.scope.storage_key, **fields}}


def _append(state: TurnState, rt: LoopRuntime, message: Message) -> None:
    state["working"].append(message)
    state["new_messages"].append(message)
    rt.store.append(message)


def _deliver(
    state: TurnState, rt: LoopRuntime, message: Message, retrieval: Optional[Dict[str, Any]] = None
) -> None:
    """终态回复先交给调用方再持久化；写入失败只记录到 error，不产生第二条回复。"""

    state["working"].append(message)
    state["new_messages"].append(message)
    try:
        rt.store.append(message)
        if retrieval is not None:
            rt.store.attach_metadata({"retrieval": retrieval})
    except Exception as exc:
        logger.error("loop.persist_failed", extra=_log_extra(state, rt, error=str(exc)))
        if state.get("error") is None:
            state["error"] = exc


async def admit_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    transition(state, LoopState.ADMITTING)
    if state.get("error") is not None:
        # 附件存储或用户消息写入在进入图之前已失败
        return transition(state, LoopState.TERMINAL_ERROR)
    admission = rt.rate_limiter.admit()
    if not admission.allowed:
        state["error"] = RateLimitExceeded(admission.retry_after_seconds)
        logger.warning("loop.rate_blocked", extra=_log_extra(state, rt, retry_after=admission.retry_after_seconds))
        return transition(state, LoopState.RATE_BLOCKED)
    rt.rate_limiter.record()
    try:
        await rt.quota_gate.check(rt.scope.workspace_id)
    except QuotaExceeded as exc:
        state["error"] = exc
        logger.warning("loop.quota_blocked", extra=_log_extra(state, rt, usage=exc.usage, limit=exc.limit))
        return transition(state, LoopState.QUOTA_BLOCKED)
    return state


async def prepare_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    mode = state.get("web_search")
    if mode and rt.augmenter is not None:
        augmentation = await rt.augmenter.augment(state.get("user_text", ""), mode)
        if augmentation is not None:
            # only the prompt sent to the model changes; the stored user message does not
            state["system_prompt"] = f"{state['system_prompt']}\n\n{augmentation.prompt_text}"
            state["retrieval"] = augmentation.context
            logger.info("loop.retrieval", extra=_log_extra(state, rt, hits=augmentation.context.count))
    return state


async def request_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    transition(state, LoopState.REQUESTING)
    rounds = state.get("tool_rounds", 0)
    history = relevant_history(state["working"], rt.history_window)
    tools_enabled = bool(state.get("tools_enabled")) or rounds > 0
    try:
        response = await rt.model.respond(history, state["system_prompt"], tools_enabled, rt.tools)
    except Exception as exc:
        state["error"] = exc
        logger.error(
            "loop.model_failed",
            extra=_log_extra(state, rt, kind=classify_error(exc).value, error=str(exc)),
        )
        return transition(state, LoopState.TERMINAL_ERROR)
    if response.tool_calls:
        if rounds >= rt.max_tool_iterations:
            state["error"] = TooManyIterations(rt.max_tool_iterations)
            logger.error("loop.too_many_iterations", extra=_log_extra(state, rt, rounds=rounds))
            return transition(state, LoopState.TERMINAL_ERROR)
        state["pending"] = response
        return transition(state, LoopState.TOOL_PENDING)
    state["final_text"] = response.text
    return transition(state, LoopState.TERMINAL_TEXT)


async def tools_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    response = state["pending"]
    calls: List[ToolCall] = []
    seen = set()
    for call in response.tool_calls:
        if call.id not in seen:
            seen.add(call.id)
            calls.append(call)
    _append(state, rt, Message.assistant_calls(response.text, calls))
    logger.info(
        "loop.tool_round",
        extra=_log_extra(state, rt, round=state.get("tool_rounds", 0) + 1, tools=[c.name for c in calls]),
    )
    results = await rt.dispatcher.execute_batch(calls)
    pruned = [ToolResult(r.call_id, r.name, prune_outcome(r.outcome, r.name)) for r in results]
    _append(state, rt, Message.tool(pruned))
    state["tool_rounds"] = state.get("tool_rounds", 0) + 1
    state["pending"] = None
    return state


async def _notify(rt: LoopRuntime, state: TurnState, message: Message) -> None:
    for observer in rt.observers:
        try:
            result = observer(message)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("loop.observer_failed", extra=_log_extra(state, rt, error=str(exc)))


async def finish_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    text = sanitize(state.get("final_text")) or FALLBACK_TEXT
    message = Message.assistant(text)
    retrieval = state.get("retrieval")
    _deliver(state, rt, message, retrieval.to_dict() if retrieval is not None else None)
    if retrieval is not None:
        message.metadata["retrieval"] = retrieval.to_dict()
    await _notify(rt, state, message)
    logger.info(
        "loop.done",
        extra=_log_extra(state, rt, rounds=state.get("tool_rounds", 0), chars=len(text)),
    )
    return state


def error_message(error: BaseException) -> str:
    if isinstance(error, RateLimitExceeded):
        return f"⚠️ {error.message}"
    if isinstance(error, QuotaExceeded):
        return f"⚠️ {error.message}{UPGRADE_HINT}"
    if isinstance(error, BusinessError):
        return f"Error: {error.message}"
    return f"Error: {error}"


def error_metadata(error: BaseException) -> Dict[str, Any]:
    if isinstance(error, AssistantError):
        return error.metadata()
    if isinstance(error, BusinessError):
        return {"kind": ErrorKind.TRANSPORT.value, "code": error.code}
    return {"kind": ErrorKind.TRANSPORT.value, "code": "UNEXPECTED_ERROR", "type": type(error).__name__}


async def fail_node(state: TurnState, rt: LoopRuntime) -> TurnState:
    if state.get("state") != LoopState.TERMINAL_ERROR:
        transition(state, LoopState.TERMINAL_ERROR)
    error = state["error"]
    message = Message.assistant(error_message(error), metadata={"error": error_metadata(error)})
    _deliver(state, rt, message)
    await _notify(rt, state, message)
    return state


def route(state: TurnState) -> str:
    current = state.get("state")
    if current in BLOCKED_STATES:
        return "fail"
    if current == LoopState.TOOL_PENDING:
        return "tools"
    if current == LoopState.TERMINAL_TEXT:
        return "finish"
    return "next"


def route_step(state: TurnState) -> str:
    return "fail" if state.get("state") == LoopState.TERMINAL_ERROR else "next"


Node = Callable[[TurnState, LoopRuntime], Awaitable[TurnState]]


def _guarded(name: str, node: Node, rt: LoopRuntime) -> Callable[[TurnState], Awaitable[TurnState]]:
    """节点抛出的任何异常都转成 TERMINAL_ERROR，由 fail 节点产生唯一的错误回复。"""

    async def run(s: TurnState) -> TurnState:
        try:
            return await node(s, rt)
        except Exception as exc:
            s["error"] = exc
            logger.error(
                "loop.node_failed",
                extra=_log_extra(s, rt, node=name, kind=classify_error(exc).value, error=str(exc)),
            )
            return transition(s, LoopState.TERMINAL_ERROR)

    return run


def build_graph(rt: LoopRuntime) -> CompiledStateGraph:
    async def fail(s: TurnState) -> TurnState:
        return await fail_node(s, rt)

    graph = StateGraph(TurnState)
    graph.add_node("admit", _guarded("admit", admit_node, rt))
    graph.add_node("prepare", _guarded("prepare", prepare_node, rt))
    graph.add_node("request", _guarded("request", request_node, rt))
    graph.add_node("tools", _guarded("tools", tools_node, rt))
    graph.add_node("finish", _guarded("finish", finish_node, rt))
    graph.add_node("fail", fail)
    graph.set_entry_point("admit")
    graph.add_conditional_edges("admit", route, {"fail": "fail", "next": "prepare"})
    graph.add_conditional_edges("prepare", route_step, {"fail": "fail", "next": "request"})
    graph.add_conditional_edges("request", route, {"tools": "tools", "finish": "finish", "fail": "fail"})
    graph.add_conditional_edges("tools", route_step, {"fail": "fail", "next": "request"})
    graph.add_conditional_edges("finish", route_step, {"fail": "fail", "next": END})
    graph.add_edge("fail", END)
    return graph.compile()
