"""Unit tests for the engine module."""

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from chatwire import Chatwire
from chatwire.config import Settings
from chatwire.engine import Engine, Streaming
from chatwire.history import ConversationHistory
from chatwire.llm import LLM
from chatwire.models import (
    ASSISTANT_ROLE,
    TOOL_RESULT_ROLE,
    TOOL_USE_ROLE,
    USER_ROLE,
    ToolCall,
    ToolResult,
    Turn,
)
from chatwire.store import InMemory
from chatwire.tools import PythonTool, Tool


def reply(*blocks: Dict[str, Any], model: str = "served-model") -> Dict[str, Any]:
    return {
        "id": "msg_1",
        "role": ASSISTANT_ROLE,
        "model": model,
        "content": list(blocks),
        "stop_reason": "end_turn",
    }


def text(value: str) -> Dict[str, Any]:
    return {"type": "text", "text": value}


def tool_use(tool_id: str, name: str, tool_input: Optional[Dict[str, Any]] = None):
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input or {}}


class Scripted(LLM):
    """Returns queued messages in order and records what was sent."""

    def __init__(self, *replies: Optional[Dict[str, Any]], configured: bool = True):
        self.replies = list(replies)
        self.sent: List[Dict[str, Any]] = []
        self.configured = configured
        self.busy = False
        self.cancelled = 0

    async def send_message(self, model, messages, tools=None, system_prompt=None, max_tokens=4096):
        self.sent.append(
            {
                "model": model,
                "messages": messages,
                "tools": tools,
                "system_prompt": system_prompt,
                "max_tokens": max_tokens,
            }
        )
        await asyncio.sleep(0)
        return self.replies.pop(0)

    def cancel_request(self):
        self.cancelled += 1

    def is_configured(self):
        return self.configured

    def is_request_in_progress(self):
        return self.busy


def make_app(llm, recorder, tools=None, document=None, store=None):
    history = ConversationHistory(store=store or InMemory(), document=document)
    return Chatwire(
        llm=llm,
        history=history,
        tools=tools,
        listener=recorder,
        settings=Settings(api_key="sk-test", model="app-model", max_tokens=2048),
        system_prompt="You edit OpenSCAD files.",
    )


class TestEngineBase:
    """Test the abstract Engine base class."""

    def test_engine_is_abstract(self):
        with pytest.raises(TypeError, match="Can't instantiate abstract class"):
            Engine()

    def test_engine_with_app_reference(self):
        class ConcreteEngine(Engine):
            async def handle_message(self, user_input):
                return None

        mock_app = Mock()
        engine = ConcreteEngine(mock_app)
        assert engine.app is mock_app

        engine.cancel()
        mock_app.llm.cancel_request.assert_called_once()

    def test_engine_without_app_reference(self):
        """Engine can be created unbound and attached later."""

        class ConcreteEngine(Engine):
            async def handle_message(self, user_input):
                return None

        engine = ConcreteEngine()
        assert engine.app is None


class TestStreamingGuards:
    @pytest.mark.parametrize("user_input", ["", "   ", "\n\t", None])
    def test_blank_input_is_ignored(self, recorder, user_input):
        llm = Scripted()
        app = make_app(llm, recorder)
        assert asyncio.run(app.send(user_input)) is None
        assert llm.sent == []
        assert len(app.history) == 0
        assert recorder.events == []

    def test_not_configured(self, recorder):
        llm = Scripted(configured=False)
        app = make_app(llm, recorder)
        assert asyncio.run(app.send("hi")) is None
        assert recorder.events == [("error", "API key not configured")]
        assert len(app.history) == 0
        assert llm.sent == []

    def test_request_in_progress(self, recorder):
        llm = Scripted()
        llm.busy = True
        app = make_app(llm, recorder)
        assert asyncio.run(app.send("hi")) is None
        assert recorder.events == [("error", "Request already in progress")]
        assert len(app.history) == 0


class TestStreamingConversation:
    def test_plain_reply(self, recorder):
        llm = Scripted(reply(text("Hello "), text("there")))
        app = make_app(llm, recorder)

        message = asyncio.run(app.send("  hi  "))

        assert message["content"][0]["text"] == "Hello "
        turns = app.history.turns
        assert [(turn.role, turn.content) for turn in turns] == [
            (USER_ROLE, "hi"),
            (ASSISTANT_ROLE, "Hello there"),
        ]
        assert turns[1].model == "served-model"
        sent = llm.sent[0]
        assert sent["messages"] == [{"role": "user", "content": "hi"}]
        assert sent["model"] == "app-model"
        assert sent["max_tokens"] == 2048
        assert sent["system_prompt"] == "You edit OpenSCAD files."
        assert sent["tools"] == []

    def test_model_falls_back_to_app_model(self, recorder):
        app = make_app(Scripted(reply(text("x"), model="")), recorder)
        asyncio.run(app.send("hi"))
        assert app.history.turns[-1].model == "app-model"

    def test_history_saved_when_conversation_ends(self, recorder, document):
        store = InMemory()
        app = make_app(Scripted(reply(text("done"))), recorder, document=document, store=store)
        asyncio.run(app.send("hi"))
        saved = store.load(document)
        assert [record["content"] for record in saved["messages"]] == ["hi", "done"]

    def test_failed_send_keeps_only_user_turn(self, recorder):
        llm = Scripted(None)
        app = make_app(llm, recorder)
        assert asyncio.run(app.send("hi")) is None
        assert [turn.role for turn in app.history] == [USER_ROLE]


class TestToolLoop:
    @pytest.fixture
    def tools(self):
        tools = PythonTool()

        @tools.register_function
        def read_file() -> str:
            """Returns the current file."""
            return "cube(1);"

        @tools.register_function
        def write_file(content: str) -> str:
            """Replaces the current file."""
            return f"wrote {len(content)} bytes"

        return tools

    def test_tool_calls_are_executed_and_sent_back(self, recorder, tools):
        llm = Scripted(
            reply(text("Let me look."), tool_use("t1", "read_file")),
            reply(tool_use("t2", "write_file", {"content": "cube(2);"})),
            reply(text("Done.")),
        )
        app = make_app(llm, recorder, tools=tools)

        message = asyncio.run(app.send("Make it bigger"))

        assert message["content"] == [text("Done.")]
        assert len(llm.sent) == 3
        assert [t["name"] for t in llm.sent[0]["tools"]] == ["read_file", "write_file"]
        assert [turn.role for turn in app.history] == [
            USER_ROLE,
            ASSISTANT_ROLE,
            TOOL_USE_ROLE,
            TOOL_RESULT_ROLE,
            TOOL_USE_ROLE,
            TOOL_RESULT_ROLE,
            ASSISTANT_ROLE,
        ]
        second_request = llm.sent[1]["messages"]
        assert second_request[1] == {
            "role": "assistant",
            "content": [text("Let me look."), tool_use("t1", "read_file")],
        }
        assert second_request[2] == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "cube(1);"}],
        }
        assert recorder.of("tool_result") == [
            ("read_file", "cube(1);", False),
            ("write_file", "wrote 8 bytes", False),
        ]

    def test_parallel_tool_calls_pair_up(self, recorder, tools):
        llm = Scripted(
            reply(tool_use("a", "read_file"), tool_use("b", "read_file")),
            reply(text("ok")),
        )
        app = make_app(llm, recorder, tools=tools)
        asyncio.run(app.send("go"))

        messages = llm.sent[1]["messages"]
        assert len(messages) == 3
        assert [block["id"] for block in messages[1]["content"]] == ["a", "b"]
        assert [block["tool_use_id"] for block in messages[2]["content"]] == ["a", "b"]

    def test_unknown_tool_reports_error_result(self, recorder, tools):
        llm = Scripted(reply(tool_use("t1", "delete_everything")), reply(text("sorry")))
        app = make_app(llm, recorder, tools=tools)
        asyncio.run(app.send("go"))

        result = app.history.turns[2]
        assert result.role == TOOL_RESULT_ROLE
        assert result.is_error is True
        assert "not found" in result.content

    def test_crashing_tool_handler_still_records_result(self, recorder):
        class Broken(Tool):
            def get_tools(self):
                return [{"name": "boom", "description": "", "input_schema": {"type": "object"}}]

            def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
                raise RuntimeError("handler crashed")

        llm = Scripted(reply(tool_use("t1", "boom")), reply(text("ok")))
        app = make_app(llm, recorder, tools=Broken())
        asyncio.run(app.send("go"))

        result = app.history.turns[2]
        assert result.is_error is True
        assert result.content == "Error executing tool 'boom': handler crashed"
        assert recorder.of("tool_result") == [("boom", result.content, True)]

    def test_failure_mid_loop_stops(self, recorder, tools):
        llm = Scripted(reply(tool_use("t1", "read_file")), None)
        app = make_app(llm, recorder, tools=tools)
        assert asyncio.run(app.send("go")) is None
        assert len(llm.sent) == 2
        assert app.history.turns[-1].role == TOOL_RESULT_ROLE


class TestCancel:
    def test_cancel_notifies_and_aborts(self, recorder):
        llm = Scripted()
        llm.busy = True
        app = make_app(llm, recorder)
        app.cancel()
        assert llm.cancelled == 1
        assert recorder.events == [("stream_aborted",)]

    def test_cancel_when_idle_does_nothing(self, recorder):
        llm = Scripted()
        app = make_app(llm, recorder)
        app.cancel()
        assert llm.cancelled == 0
        assert recorder.events == []

    def test_run_resends_current_history(self, recorder):
        llm = Scripted(reply(text("again")))
        app = make_app(llm, recorder)
        app.history.add_turn(Turn(role=USER_ROLE, content="retry"))
        asyncio.run(Streaming(app).run())
        assert llm.sent[0]["messages"] == [{"role": "user", "content": "retry"}]
        assert len(app.history) == 2
