import json

import httpx
import pytest

from assistant_core.domain.exceptions import (
    ApiError,
    ConfigurationError,
    ModerationRejected,
    NetworkError,
    ProviderRateLimitError,
    QuotaExceeded,
)
from assistant_core.domain.models import Attachment, Message
from assistant_core.providers.groq_client import GroqClient
from assistant_core.providers.moderation import ModerationVerdict
from assistant_core.tools.definitions import ToolCall, ToolDef, ToolOutcome, ToolParam, ToolResult


class SettingsStub:
    groq_api_key = "gsk-test-key-123"
    http_timeout = 1.0
    groq_base_url = "https://api.groq.example/openai/v1"
    default_model = "assistant-chat"


class Resp:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.headers = headers or {}
        self.text = json.dumps(self._body)

    def json(self):
        return self._body


def _install(monkeypatch, resp, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, url, json=None, headers=None):
            if captured is not None:
                captured["url"] = url
                captured["json"] = json
                captured["headers"] = headers
            if isinstance(resp, Exception):
                raise resp
            return resp

    monkeypatch.setattr("httpx.AsyncClient", Client)


def _text_body(content="ok"):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4},
    }


TOOL = ToolDef(
    name="createTask",
    description="Create a task",
    params={"text": ToolParam(name="text", description="Task text", required=True, schema={"type": "string"})},
)


@pytest.mark.asyncio
async def test_parse_plain_text(monkeypatch):
    captured = {}
    _install(monkeypatch, Resp(body=_text_body("hello there")), captured)
    client = GroqClient(SettingsStub())
    res = await client.respond([Message.user("hi")], "Be brief.", tools_enabled=False, tools=[TOOL])
    assert res.text == "hello there"
    assert res.tool_calls == []
    assert res.usage.total_tokens == 4
    assert captured["url"] == "https://api.groq.example/openai/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer gsk-test-key-123"
    payload = captured["json"]
    assert payload["model"] == "llama-3.3-70b-versatile"
    assert "tools" not in payload
    assert payload["max_tokens"] == 2048
    assert payload["messages"][0]["role"] == "system"
    assert "Be brief." in payload["messages"][0]["content"]


@pytest.mark.asyncio
async def test_tools_sent_only_when_enabled_and_calls_parsed(monkeypatch):
    captured = {}
    body = {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "createTask", "arguments": "{\"text\": \"Call Acme\"}"},
                        },
                        {"id": "call_2", "type": "function", "function": {"name": "createTask", "arguments": "{oops"}},
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ]
    }
    _install(monkeypatch, Resp(body=body), captured)
    client = GroqClient(SettingsStub())
    res = await client.respond([Message.user("create a task")], "sys", tools_enabled=True, tools=[TOOL])

    payload = captured["json"]
    assert payload["tool_choice"] == "auto"
    fn = payload["tools"][0]["function"]
    assert fn["name"] == "createTask"
    assert fn["parameters"]["required"] == ["text"]
    assert payload["max_tokens"] == 4096
    assert res.text is None
    assert res.tool_calls == [
        ToolCall(id="call_1", name="createTask", arguments={"text": "Call Acme"}),
        ToolCall(id="call_2", name="createTask", arguments={"_raw": "{oops"}),
    ]


@pytest.mark.asyncio
async def test_history_conversion_emits_one_tool_message_per_result(monkeypatch):
    captured = {}
    _install(monkeypatch, Resp(body=_text_body()), captured)
    calls = [ToolCall("a", "createTask", {"text": "x"}), ToolCall("b", "launchRocket", {})]
    history = [
        Message.user("do two things"),
        Message.assistant_calls(None, calls),
        Message.tool(
            [
                ToolResult("a", "createTask", ToolOutcome.ok({"success": True, "id": "t1"})),
                ToolResult("b", "launchRocket", ToolOutcome.failure("Unknown function: launchRocket")),
            ]
        ),
        Message.assistant(""),
    ]
    await GroqClient(SettingsStub()).respond(history, "sys", tools_enabled=True, tools=[TOOL])

    msgs = captured["json"]["messages"][1:]
    assert [m["role"] for m in msgs] == ["user", "assistant", "tool", "tool"]
    assert [c["id"] for c in msgs[1]["tool_calls"]] == ["a", "b"]
    assert msgs[2]["tool_call_id"] == "a"
    assert json.loads(msgs[3]["content"])["success"] is False


@pytest.mark.asyncio
async def test_text_attachment_is_inlined_for_model(monkeypatch):
    captured = {}
    _install(monkeypatch, Resp(body=_text_body()), captured)
    part = Attachment(name="notes.txt", mime_type="text/plain", data=b"Q3 revenue up").to_part("f-1")
    await GroqClient(SettingsStub()).respond(
        [Message.user("[File Attached: notes.txt]", attachment=part)], "sys", tools_enabled=False
    )
    content = captured["json"]["messages"][1]["content"]
    assert "[File: notes.txt (text/plain), id f-1]" in content
    assert "Q3 revenue up" in content


@pytest.mark.asyncio
async def test_status_codes_map_to_errors(monkeypatch):
    client = GroqClient(SettingsStub())
    history = [Message.user("hi")]

    _install(monkeypatch, Resp(status_code=429, body={"error": "slow down"}, headers={"retry-after": "7"}))
    with pytest.raises(ProviderRateLimitError) as info:
        await client.respond(history, "sys", tools_enabled=False)
    assert info.value.extra["retry_after"] == "7"

    _install(monkeypatch, Resp(status_code=402, body={"usage": 25, "limit": 25, "planType": "free"}))
    with pytest.raises(QuotaExceeded) as quota:
        await client.respond(history, "sys", tools_enabled=False)
    assert (quota.value.usage, quota.value.limit, quota.value.plan) == (25, 25, "free")

    _install(monkeypatch, Resp(status_code=500, body={"error": "boom"}))
    with pytest.raises(ApiError):
        await client.respond(history, "sys", tools_enabled=False)

    _install(monkeypatch, httpx.ConnectError("no route"))
    with pytest.raises(NetworkError):
        await client.respond(history, "sys", tools_enabled=False)

    _install(monkeypatch, Resp(body={"choices": []}))
    with pytest.raises(ApiError):
        await client.respond(history, "sys", tools_enabled=False)


@pytest.mark.asyncio
async def test_missing_api_key():
    class NoKey(SettingsStub):
        groq_api_key = None

    with pytest.raises(ConfigurationError):
        await GroqClient(NoKey()).respond([Message.user("hi")], "sys", tools_enabled=False)


@pytest.mark.asyncio
async def test_moderation_blocks_input_and_output(monkeypatch):
    class Moderation:
        def __init__(self, blocked_direction):
            self.blocked_direction = blocked_direction
            self.checked = []

        async def check(self, text, direction):
            self.checked.append(direction)
            if direction == self.blocked_direction:
                return ModerationVerdict(allowed=False, categories=["violence"])
            return ModerationVerdict(allowed=True)

    captured = {}
    _install(monkeypatch, Resp(body=_text_body("bad words")), captured)
    with pytest.raises(ModerationRejected) as info:
        await GroqClient(SettingsStub(), moderation=Moderation("input")).respond(
            [Message.user("hi")], "sys", tools_enabled=False
        )
    assert info.value.direction == "input"
    assert captured == {}

    moderation = Moderation("output")
    with pytest.raises(ModerationRejected) as info:
        await GroqClient(SettingsStub(), moderation=moderation).respond(
            [Message.user("hi")], "sys", tools_enabled=False
        )
    assert info.value.direction == "output"
    assert info.value.categories == ["violence"]
    assert moderation.checked == ["input", "output"]


@pytest.mark.asyncio
async def test_input_is_moderated_only_on_first_request_of_turn(monkeypatch):
    class RecordingModeration:
        def __init__(self):
            self.checked = []

        async def check(self, text, direction):
            self.checked.append((direction, text))
            return ModerationVerdict(allowed=True)

    _install(monkeypatch, Resp(body=_text_body("Task created.")))
    moderation = RecordingModeration()
    call = ToolCall(id="call_1", name="createTask", arguments={"text": "Call Acme"})
    history = [
        Message.user("create a task to call Acme"),
        Message.assistant_calls(None, [call]),
        Message.tool([ToolResult("call_1", "createTask", ToolOutcome.ok({"taskId": "t-1"}))]),
    ]
    res = await GroqClient(SettingsStub(), moderation=moderation).respond(history, "sys", tools_enabled=True)
    assert res.text == "Task created."
    assert moderation.checked == [("output", "Task created.")]

    moderation.checked.clear()
    await GroqClient(SettingsStub(), moderation=moderation).respond(history[:1], "sys", tools_enabled=True)
    assert moderation.checked[0] == ("input", "create a task to call Acme")


@pytest.mark.asyncio
async def test_tool_calls_without_id_get_unique_ids(monkeypatch):
    call = {"type": "function", "function": {"name": "createTask", "arguments": "{}"}}
    body = {"choices": [{"message": {"role": "assistant", "content": None, "tool_calls": [call, dict(call)]}}]}
    _install(monkeypatch, Resp(body=body))
    client = GroqClient(SettingsStub())
    first = await client.respond([Message.user("add two tasks")], "sys", tools_enabled=True, tools=[TOOL])
    second = await client.respond([Message.user("add two tasks")], "sys", tools_enabled=True, tools=[TOOL])
    ids = [c.id for c in first.tool_calls + second.tool_calls]
    assert all(i.startswith("call_") for i in ids)
    assert len(set(ids)) == 4
