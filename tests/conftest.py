"""
Core pytest configuration and fixtures for Chatwire testing.

This module provides shared test fixtures, a recording listener, an in-memory
transport that replays canned server-sent event streams, and helpers for
building those streams.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pytest
from chatwire.errors import TransportError
from chatwire.listeners import Listener
from chatwire.models import (
    ASSISTANT_ROLE,
    TOOL_RESULT_ROLE,
    TOOL_USE_ROLE,
    USER_ROLE,
    Turn,
)
from chatwire.transport import Transport

# ===== SSE BUILDERS =====


def sse(event: str, data: Any) -> bytes:
    """Encodes one server-sent event frame."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n".encode("utf-8")


def message_start(message_id: str = "msg_1", model: str = "test-model") -> bytes:
    return sse(
        "message_start",
        {
            "type": "message_start",
            "message": {
                "id": message_id,
                "type": "message",
                "role": "assistant",
                "model": model,
                "content": [],
            },
        },
    )


def text_block(index: int, chunks: Sequence[str]) -> bytes:
    frames = [
        sse(
            "content_block_start",
            {"index": index, "content_block": {"type": "text", "text": ""}},
        )
    ]
    for chunk in chunks:
        frames.append(
            sse(
                "content_block_delta",
                {"index": index, "delta": {"type": "text_delta", "text": chunk}},
            )
        )
    frames.append(sse("content_block_stop", {"index": index}))
    return b"".join(frames)


def tool_block(index: int, tool_id: str, name: str, json_chunks: Sequence[str]) -> bytes:
    frames = [
        sse(
            "content_block_start",
            {
                "index": index,
                "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
            },
        )
    ]
    for chunk in json_chunks:
        frames.append(
            sse(
                "content_block_delta",
                {"index": index, "delta": {"type": "input_json_delta", "partial_json": chunk}},
            )
        )
    frames.append(sse("content_block_stop", {"index": index}))
    return b"".join(frames)


def message_end(stop_reason: str = "end_turn") -> bytes:
    return sse(
        "message_delta",
        {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": 12},
        },
    ) + sse("message_stop", {"type": "message_stop"})


def text_stream(*chunks: str) -> bytes:
    """A complete response containing a single text block."""
    return message_start() + text_block(0, chunks) + message_end()


def tool_stream(
    tool_id: str, name: str, tool_input: Dict[str, Any], text: Optional[str] = None
) -> bytes:
    """A complete response calling one tool, optionally preceded by text."""
    body = message_start()
    index = 0
    if text:
        body += text_block(index, [text])
        index += 1
    body += tool_block(index, tool_id, name, [json.dumps(tool_input)])
    return body + message_end("tool_use")


def chunked(data: bytes, size: int) -> List[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


# ===== TEST DOUBLES =====


class Recorder(Listener):
    """Listener that records every notification as ``(name, *args)``."""

    def __init__(self):
        self.events: List[tuple] = []
        self.hooks: Dict[str, Any] = {}

    def names(self) -> List[str]:
        return [event[0] for event in self.events]

    def of(self, name: str) -> List[tuple]:
        return [event[1:] for event in self.events if event[0] == name]

    def _record(self, name: str, *args: Any) -> None:
        self.events.append((name, *args))
        hook = self.hooks.get(name)
        if hook is not None:
            hook(*args)

    def on_stream_started(self):
        self._record("stream_started")

    def on_content_delta(self, text):
        self._record("content_delta", text)

    def on_tool_call_started(self, tool_id, tool_name):
        self._record("tool_call_started", tool_id, tool_name)

    def on_tool_input_delta(self, tool_id, partial_json):
        self._record("tool_input_delta", tool_id, partial_json)

    def on_tool_call_complete(self, tool_id, tool_name, tool_input):
        self._record("tool_call_complete", tool_id, tool_name, tool_input)

    def on_message_complete(self, message):
        self._record("message_complete", message)

    def on_error(self, message):
        self._record("error", message)

    def on_rate_limit_waiting(self, seconds):
        self._record("rate_limit_waiting", seconds)

    def on_stream_aborted(self):
        self._record("stream_aborted")

    def on_tool_result(self, tool_name, content, is_error):
        self._record("tool_result", tool_name, content, is_error)


Response = Union[bytes, List[bytes], TransportError]


class FakeTransport(Transport):
    """Replays queued responses; the last one repeats once the queue drains.

    A response is a byte string (sent as one chunk), a list of chunks, or a
    ``TransportError`` raised before any data is yielded.
    """

    def __init__(self, *responses: Response):
        self.responses: List[Response] = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def stream(self, url, headers, body):
        self.calls.append({"url": url, "headers": headers, "body": body})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, TransportError):
            raise response
        chunks = [response] if isinstance(response, bytes) else response
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk

    async def aclose(self):
        self.closed = True


class NoSleep:
    """Stand-in for ``asyncio.sleep`` that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


def rate_limited(retry_after: Optional[str] = None, body: bytes = b"") -> TransportError:
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return TransportError("HTTP error 429", status_code=429, headers=headers, body=body)


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_turns() -> List[Turn]:
    """A conversation that used one tool."""
    return [
        Turn(role=USER_ROLE, content="Make the cube bigger"),
        Turn(role=ASSISTANT_ROLE, content="ok, let me check", model="test-model"),
        Turn(role=TOOL_USE_ROLE, tool_id="t1", tool_name="read", tool_input={}),
        Turn(role=TOOL_RESULT_ROLE, tool_id="t1", content="cube(1);"),
        Turn(role=ASSISTANT_ROLE, content="Done.", model="test-model"),
    ]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def no_sleep() -> NoSleep:
    return NoSleep()


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def document(temp_dir) -> str:
    """Path of a source document whose history is stored beside it."""
    path = temp_dir / "model.scad"
    path.write_text("cube(1);")
    return str(path)


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
