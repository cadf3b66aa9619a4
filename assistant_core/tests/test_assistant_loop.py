import asyncio

import pytest

from assistant_core.agents.assistant import ModuleAssistant, wants_action
from assistant_core.domain.conversation import ScopeKey
from assistant_core.domain.exceptions import BusinessError, ErrorKind, ModerationRejected, NetworkError
from assistant_core.domain.models import FILE_DATA_PLACEHOLDER, Attachment, ModelResponse, QuotaState, RetrievalHit
from assistant_core.flows.state import LoopState
from assistant_core.guards.quota import QuotaGate, StaticUsageBackend
from assistant_core.guards.rate_limiter import SlidingWindowRateLimiter
from assistant_core.infrastructure.storage.memory_store import InMemoryConversationStore
from assistant_core.retrieval.augmenter import RetrievalAugmenter
from assistant_core.retrieval.client import SearchResponse
from assistant_core.tools.actions import bind_actions
from assistant_core.tools.definitions import ToolCall
from assistant_core.tools.dispatcher import ToolDispatcher


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class ScriptedModel:
    """按顺序返回预设响应；响应为异常实例时直接抛出。"""

    name = "scripted"

    def __init__(self, *responses, default=None):
        self.responses = list(responses)
        self.default = default or ModelResponse(text="ok")
        self.calls = []

    async def respond(self, history, system_prompt, tools_enabled, tools=None):
        self.calls.append(
            {"history": list(history), "system_prompt": system_prompt, "tools_enabled": tools_enabled}
        )
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, BaseException):
            raise item
        return item


class LoopingModel:
    name = "looping"

    def __init__(self):
        self.calls = 0

    async def respond(self, history, system_prompt, tools_enabled, tools=None):
        self.calls += 1
        return ModelResponse(tool_calls=[ToolCall(id=f"c{self.calls}", name="createTask", arguments=TASK_ARGS)])


class TaskActions:
    def __init__(self):
        self.created = []

    async def create_task(self, category, text, priority, due_date=None, assigned_to=None):
        self.created.append(text)
        return {"success": True, "message": "Task created", "taskId": f"t-{len(self.created)}"}


class CountingFileStore:
    def __init__(self):
        self.stored = []

    async def store(self, name, mime_type, data):
        self.stored.append((name, mime_type, data))
        return f"f-{len(self.stored)}"


class FakeSearchClient:
    def __init__(self, hits=None, error=None):
        self.hits = hits or []
        self.error = error

    async def search(self, query, mode):
        if self.error:
            raise self.error
        return SearchResponse(hits=self.hits, metadata={"provider": "brave", "durationMs": 12})


TASK_ARGS = {"category": "platformTasks", "text": "Call Acme", "priority": "High"}


def _assistant(model, scope=None, usage=None, limiter=None, actions=None, store=None, **kwargs):
    scope = scope or ScopeKey("dashboard", "ws-1", "u-1")
    actions = actions or TaskActions()
    assistant = ModuleAssistant(
        scope=scope,
        model=model,
        dispatcher=ToolDispatcher(bind_actions(actions)),
        store=store or InMemoryConversationStore(scope),
        quota_gate=QuotaGate(StaticUsageBackend(usage or {})),
        system_prompt="You are the dashboard assistant.",
        rate_limiter=limiter or SlidingWindowRateLimiter(10, 60, clock=FakeClock()),
        **kwargs,
    )
    return assistant, actions


@pytest.mark.asyncio
async def test_create_task_turn_runs_one_tool_round():
    model = ScriptedModel(
        ModelResponse(tool_calls=[ToolCall(id="c1", name="createTask", arguments=TASK_ARGS)]),
        ModelResponse(text="Created the task **Call Acme**."),
    )
    assistant, actions = _assistant(model)

    outcome = await assistant.submit("create a task to call Acme, high priority")

    assert outcome.ok
    assert actions.created == ["Call Acme"]
    assert [m.role for m in outcome.messages] == ["user", "assistant", "tool", "assistant"]
    assert outcome.messages[1].tool_calls[0].id == "c1"
    assert outcome.messages[2].tool_results[0].call_id == "c1"
    assert outcome.text == "Created the task **Call Acme**."
    assert outcome.tool_rounds == 1
    assert outcome.trail == [
        LoopState.IDLE,
        LoopState.ADMITTING,
        LoopState.REQUESTING,
        LoopState.TOOL_PENDING,
        LoopState.REQUESTING,
        LoopState.TERMINAL_TEXT,
    ]
    assert model.calls[0]["tools_enabled"] is True
    assert model.calls[1]["history"][-1].role == "tool"
    assert [m.id for m in assistant.history()] == [m.id for m in outcome.messages]


@pytest.mark.asyncio
async def test_plain_question_does_not_send_tools():
    model = ScriptedModel(ModelResponse(text="You have 3 open tasks."))
    assistant, _ = _assistant(model)
    outcome = await assistant.submit("how many tasks are open?")
    assert outcome.ok
    assert model.calls[0]["tools_enabled"] is False
    assert [m.role for m in outcome.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_eleventh_message_is_rate_limited_without_model_call():
    clock = FakeClock(0.0)
    model = ScriptedModel()
    assistant, _ = _assistant(model, limiter=SlidingWindowRateLimiter(10, 60, clock=clock))
    for i in range(10):
        clock.now = i * 0.5
        assert (await assistant.submit(f"question {i}")).ok
    clock.now = 5.0

    outcome = await assistant.submit("one more")

    assert len(model.calls) == 10
    assert outcome.state == LoopState.TERMINAL_ERROR
    assert LoopState.RATE_BLOCKED in outcome.trail
    assert outcome.text == "⚠️ Rate limit exceeded. Please wait 55 seconds before sending another message."
    assert outcome.messages[-1].metadata["error"]["kind"] == ErrorKind.RATE_LIMIT_EXCEEDED.value
    assert outcome.messages[-1].metadata["error"]["retry_after_seconds"] == 55
    assert [m.role for m in outcome.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_quota_exhausted_blocks_before_model():
    model = ScriptedModel()
    usage = {"ws-1": QuotaState(plan_id="free", used=25, limit=25)}
    assistant, _ = _assistant(model, usage=usage)

    outcome = await assistant.submit("hello")

    assert model.calls == []
    assert LoopState.QUOTA_BLOCKED in outcome.trail
    assert "25/25" in outcome.text and "free" in outcome.text
    assert "upgrade" in outcome.text.lower()
    error = outcome.messages[-1].metadata["error"]
    assert (error["usage"], error["limit"], error["plan"]) == (25, 25, "free")


@pytest.mark.asyncio
async def test_endless_tool_calls_stop_at_iteration_cap():
    model = LoopingModel()
    assistant, actions = _assistant(model, max_tool_iterations=3)

    outcome = await assistant.submit("create tasks forever")

    assert outcome.state == LoopState.TERMINAL_ERROR
    assert outcome.tool_rounds == 3
    assert len(actions.created) == 3
    assert model.calls == 4
    assert outcome.messages[-1].metadata["error"]["kind"] == ErrorKind.TOO_MANY_ITERATIONS.value
    roles = [m.role for m in outcome.messages]
    assert roles == ["user"] + ["assistant", "tool"] * 3 + ["assistant"]


@pytest.mark.asyncio
async def test_transport_failure_becomes_single_error_message():
    model = ScriptedModel(NetworkError(code="NETWORK_ERROR", message="connection reset"))
    assistant, _ = _assistant(model)
    outcome = await assistant.submit("hello")
    assert outcome.text == "Error: connection reset"
    assert outcome.messages[-1].metadata["error"]["kind"] == "transport"
    assert isinstance(outcome.error, NetworkError)
    assert len(assistant.history()) == 2


@pytest.mark.asyncio
async def test_unexpected_exception_is_reported_as_transport():
    model = ScriptedModel(RuntimeError("boom"))
    assistant, _ = _assistant(model)
    outcome = await assistant.submit("hello")
    assert outcome.text == "Error: boom"
    assert outcome.messages[-1].metadata["error"]["code"] == "UNEXPECTED_ERROR"


@pytest.mark.asyncio
async def test_empty_input_is_ignored():
    model = ScriptedModel()
    assistant, _ = _assistant(model)
    assert await assistant.submit("   ") is None
    assert assistant.history() == []
    assert model.calls == []


@pytest.mark.asyncio
async def test_submit_while_busy_is_ignored():
    started = asyncio.Event()
    release = asyncio.Event()

    class SlowModel:
        name = "slow"

        async def respond(self, history, system_prompt, tools_enabled, tools=None):
            started.set()
            await release.wait()
            return ModelResponse(text="done")

    assistant, _ = _assistant(SlowModel())
    first = asyncio.create_task(assistant.submit("first"))
    await started.wait()
    assert assistant.busy
    assert await assistant.submit("second") is None
    release.set()
    outcome = await first
    assert outcome.ok
    assert not assistant.busy
    assert [m.text for m in assistant.history()] == ["first", "done"]


@pytest.mark.asyncio
async def test_attachment_is_stored_once_and_stripped_from_history():
    files = CountingFileStore()
    model = ScriptedModel(ModelResponse(text="The deck covers Q3."))
    assistant, _ = _assistant(model, file_store=files)
    attachment = Attachment(name="deck.pdf", mime_type="application/pdf", data=b"%PDF-1.4 ...")

    outcome = await assistant.submit("summarise this", attachment=attachment)

    assert len(files.stored) == 1
    sent = model.calls[0]["history"][-1]
    assert sent.text.startswith("[File Attached: deck.pdf]")
    assert sent.files[0].data != FILE_DATA_PLACEHOLDER
    stored = assistant.history()[0]
    assert stored.files[0].data == FILE_DATA_PLACEHOLDER
    assert stored.files[0].file_id == "f-1"
    assert outcome.ok


@pytest.mark.asyncio
async def test_retrieval_augments_prompt_and_tags_final_message():
    hit = RetrievalHit(title="Acme raises Series B", url="https://news.example/acme", snippets=["$40M round"])
    augmenter = RetrievalAugmenter(FakeSearchClient(hits=[hit]))
    model = ScriptedModel(ModelResponse(text="Acme raised $40M [1]."))
    assistant, _ = _assistant(model, augmenter=augmenter)

    outcome = await assistant.submit("latest news on Acme", web_search="text")

    prompt = model.calls[0]["system_prompt"]
    assert prompt.startswith("You are the dashboard assistant.")
    assert "WEB SEARCH RESULTS" in prompt and "https://news.example/acme" in prompt
    stored = assistant.history()
    assert stored[0].text == "latest news on Acme"
    assert stored[-1].metadata["retrieval"]["provider"] == "brave"
    assert outcome.messages[-1].metadata["retrieval"]["query"] == "latest news on Acme"
    assert "Sources: brave" in assistant.export_text()


@pytest.mark.asyncio
async def test_retrieval_failure_does_not_block_turn():
    augmenter = RetrievalAugmenter(FakeSearchClient(error=ConnectionError("search down")))
    model = ScriptedModel(ModelResponse(text="Here is what I know."))
    assistant, _ = _assistant(model, augmenter=augmenter)
    outcome = await assistant.submit("latest news on Acme", web_search="text")
    assert outcome.ok
    assert model.calls[0]["system_prompt"] == "You are the dashboard assistant."
    assert "retrieval" not in outcome.messages[-1].metadata


@pytest.mark.asyncio
async def test_observers_are_notified_and_failures_ignored():
    seen = []

    async def async_observer(message):
        seen.append(("async", message.text))

    def broken_observer(message):
        raise RuntimeError("observer bug")

    model = ScriptedModel(ModelResponse(text="hi"))
    assistant, _ = _assistant(model)
    assistant.on_new_message(broken_observer)
    assistant.on_new_message(async_observer)
    outcome = await assistant.submit("hello")
    assert outcome.ok
    assert seen == [("async", "hi")]


@pytest.mark.asyncio
async def test_empty_model_text_falls_back_and_report_disables_tools():
    model = ScriptedModel(ModelResponse(text="```chart\n{broken\n```"))
    assistant, _ = _assistant(model)
    outcome = await assistant.generate_report()
    assert outcome.text == "I've completed the action."
    assert model.calls[0]["tools_enabled"] is False


@pytest.mark.asyncio
async def test_reused_call_id_in_next_turn_still_runs_the_action():
    model = ScriptedModel(
        ModelResponse(tool_calls=[ToolCall(id="call_1", name="createTask", arguments=TASK_ARGS)]),
        ModelResponse(text="Created **Call Acme**."),
        ModelResponse(tool_calls=[ToolCall(id="call_1", name="createTask", arguments={**TASK_ARGS, "text": "Email Bob"})]),
        ModelResponse(text="Created **Email Bob**."),
    )
    assistant, actions = _assistant(model)

    first = await assistant.submit("create a task to call Acme")
    second = await assistant.submit("create a task to email Bob")

    assert first.ok and second.ok
    assert actions.created == ["Call Acme", "Email Bob"]
    assert second.messages[2].tool_results[0].outcome.payload["taskId"] == "t-2"


@pytest.mark.asyncio
async def test_output_moderation_after_tool_round_gives_one_error_message():
    model = ScriptedModel(
        ModelResponse(tool_calls=[ToolCall(id="c1", name="createTask", arguments=TASK_ARGS)]),
        ModerationRejected("output", ["violence"]),
    )
    assistant, actions = _assistant(model)

    outcome = await assistant.submit("create a task to call Acme")

    assert actions.created == ["Call Acme"]
    assert outcome.state == LoopState.TERMINAL_ERROR
    assert outcome.text == "Error: AI response blocked by safety filters."
    assert outcome.messages[-1].metadata["error"]["kind"] == ErrorKind.MODERATION_REJECTED.value
    assert outcome.messages[-1].metadata["error"]["categories"] == ["violence"]
    errors = [m for m in assistant.history() if "error" in m.metadata]
    assert len(errors) == 1
    assert [m.role for m in assistant.history()] == ["user", "assistant", "tool", "assistant"]


class FlakyStore(InMemoryConversationStore):
    """第 fail_on 次 append 抛出写入错误，其余照常。"""

    def __init__(self, scope, fail_on):
        super().__init__(scope)
        self.fail_on = fail_on
        self.appends = 0

    def append(self, message):
        self.appends += 1
        if self.appends == self.fail_on:
            raise BusinessError(code="STORE_WRITE_ERROR", message="disk full", http_status=500)
        super().append(message)


@pytest.mark.asyncio
async def test_store_failure_mid_turn_ends_with_error_message():
    scope = ScopeKey("dashboard", "ws-1", "u-1")
    model = ScriptedModel(
        ModelResponse(tool_calls=[ToolCall(id="c1", name="createTask", arguments=TASK_ARGS)]),
        ModelResponse(text="never reached"),
    )
    # 1: user, 2: assistant tool calls, 3: tool results
    assistant, actions = _assistant(model, scope=scope, store=FlakyStore(scope, fail_on=3))

    outcome = await assistant.submit("create a task to call Acme")

    assert outcome.state == LoopState.TERMINAL_ERROR
    assert outcome.text == "Error: disk full"
    assert outcome.messages[-1].metadata["error"] == {"kind": "transport", "code": "STORE_WRITE_ERROR"}
    assert len(model.calls) == 1
    assert actions.created == ["Call Acme"]
    assert len([m for m in outcome.messages if "error" in m.metadata]) == 1
    assert not assistant.busy


@pytest.mark.asyncio
async def test_user_message_write_failure_skips_model():
    scope = ScopeKey("dashboard", "ws-1", "u-1")
    model = ScriptedModel(ModelResponse(text="hi"))
    assistant, _ = _assistant(model, scope=scope, store=FlakyStore(scope, fail_on=1))

    outcome = await assistant.submit("hello")

    assert outcome.state == LoopState.TERMINAL_ERROR
    assert outcome.text == "Error: disk full"
    assert model.calls == []
    assert [m.role for m in outcome.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_attachment_store_failure_becomes_error_message():
    class BrokenFileStore:
        async def store(self, name, mime_type, data):
            raise OSError("disk unavailable")

    model = ScriptedModel(ModelResponse(text="never reached"))
    assistant, _ = _assistant(model, file_store=BrokenFileStore())
    attachment = Attachment(name="deck.pdf", mime_type="application/pdf", data=b"%PDF-1.4")

    outcome = await assistant.submit("summarise this", attachment=attachment)

    assert outcome.state == LoopState.TERMINAL_ERROR
    assert outcome.text == "Error: disk unavailable"
    assert outcome.trail == [LoopState.IDLE, LoopState.ADMITTING, LoopState.TERMINAL_ERROR]
    assert model.calls == []
    history = assistant.history()
    assert history[0].text.startswith("[File Attached: deck.pdf]")
    assert history[0].files[0].file_id is None
    assert history[-1].metadata["error"]["code"] == "UNEXPECTED_ERROR"


@pytest.mark.asyncio
async def test_malformed_search_metadata_falls_back_to_local_values():
    class OddSearchClient:
        async def search(self, query, mode):
            hit = RetrievalHit(title="Acme", url="https://news.example/acme")
            return SearchResponse(hits=[hit], metadata={"count": "many", "durationMs": "fast"})

    model = ScriptedModel(ModelResponse(text="Acme news [1]."))
    assistant, _ = _assistant(model, augmenter=RetrievalAugmenter(OddSearchClient()))

    outcome = await assistant.submit("latest news on Acme", web_search="text")

    assert outcome.ok
    retrieval = outcome.messages[-1].metadata["retrieval"]
    assert retrieval["count"] == 1
    assert isinstance(retrieval["duration_ms"], int)


@pytest.mark.asyncio
async def test_retrieval_formatting_failure_skips_augmentation(monkeypatch):
    def broken_format(hits):
        raise ValueError("bad hit")

    monkeypatch.setattr("assistant_core.retrieval.augmenter.format_text", broken_format)
    hit = RetrievalHit(title="Acme", url="https://news.example/acme")
    model = ScriptedModel(ModelResponse(text="Here is what I know."))
    assistant, _ = _assistant(model, augmenter=RetrievalAugmenter(FakeSearchClient(hits=[hit])))

    outcome = await assistant.submit("latest news on Acme", web_search="text")

    assert outcome.ok
    assert model.calls[0]["system_prompt"] == "You are the dashboard assistant."
    assert "retrieval" not in outcome.messages[-1].metadata


def test_action_intent_detection():
    assert wants_action("Please add a note to Acme")
    assert wants_action("LOG today's numbers")
    assert not wants_action("what is our MRR?")
