"""Concrete implementations for stream listeners.

A listener is the sink for every notification the client and the engine
emit while a conversation runs. Notifications arrive in the order their
underlying events were decoded, on the thread running the event loop.
"""

import logging
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


class Listener:
    """Interface for receiving stream notifications.

    Every method is a no-op here, so implementations only override the
    notifications they care about.
    """

    def on_stream_started(self) -> None:
        """A request attempt was sent and its response is about to stream."""

    def on_content_delta(self, text: str) -> None:
        """An incremental piece of assistant text arrived."""

    def on_tool_call_started(self, tool_id: str, tool_name: str) -> None:
        pass

    def on_tool_input_delta(self, tool_id: str, partial_json: str) -> None:
        """An incremental piece of a tool call's JSON input arrived."""

    def on_tool_call_complete(
        self, tool_id: str, tool_name: str, tool_input: Dict[str, Any]
    ) -> None:
        pass

    def on_message_complete(self, message: Dict[str, Any]) -> None:
        """The response finished; ``message["content"]`` holds every block."""

    def on_error(self, message: str) -> None:
        pass

    def on_rate_limit_waiting(self, seconds: int) -> None:
        """The request was rate limited and will be resent after ``seconds``."""

    def on_stream_aborted(self) -> None:
        """The user cancelled the response that was streaming."""

    def on_tool_result(self, tool_name: str, content: str, is_error: bool) -> None:
        """A tool requested by the model finished executing."""


class Logging(Listener):
    """Writes every notification to a logger."""

    def __init__(self, log: logging.Logger = logger, level: int = logging.DEBUG):
        self.log = log
        self.level = level

    def on_stream_started(self):
        self.log.log(self.level, "Stream started")

    def on_content_delta(self, text):
        self.log.log(self.level, "Content delta: %r", text)

    def on_tool_call_started(self, tool_id, tool_name):
        self.log.log(self.level, "Tool call started: %s (%s)", tool_name, tool_id)

    def on_tool_input_delta(self, tool_id, partial_json):
        self.log.log(self.level, "Tool input delta for %s: %r", tool_id, partial_json)

    def on_tool_call_complete(self, tool_id, tool_name, tool_input):
        self.log.log(
            self.level,
            "Tool call complete: %s (%s) input keys: %s",
            tool_name,
            tool_id,
            sorted(tool_input),
        )

    def on_message_complete(self, message):
        self.log.log(
            self.level,
            "Message complete: stop_reason=%s blocks=%d",
            message.get("stop_reason"),
            len(message.get("content") or []),
        )

    def on_error(self, message):
        self.log.warning("Error: %s", message)

    def on_rate_limit_waiting(self, seconds):
        self.log.info("Rate limited - retrying in %ss", seconds)

    def on_stream_aborted(self):
        self.log.info("Stream aborted by user")

    def on_tool_result(self, tool_name, content, is_error):
        self.log.log(
            self.level, "Tool %s finished (error=%s): %.100s", tool_name, is_error, content
        )


class Fanout(Listener):
    """Forwards every notification to several listeners, in order."""

    def __init__(self, listeners: Iterable[Listener]):
        self.listeners = list(listeners)

    def _emit(self, name: str, *args: Any) -> None:
        for listener in self.listeners:
            getattr(listener, name)(*args)

    def on_stream_started(self):
        self._emit("on_stream_started")

    def on_content_delta(self, text):
        self._emit("on_content_delta", text)

    def on_tool_call_started(self, tool_id, tool_name):
        self._emit("on_tool_call_started", tool_id, tool_name)

    def on_tool_input_delta(self, tool_id, partial_json):
        self._emit("on_tool_input_delta", tool_id, partial_json)

    def on_tool_call_complete(self, tool_id, tool_name, tool_input):
        self._emit("on_tool_call_complete", tool_id, tool_name, tool_input)

    def on_message_complete(self, message):
        self._emit("on_message_complete", message)

    def on_error(self, message):
        self._emit("on_error", message)

    def on_rate_limit_waiting(self, seconds):
        self._emit("on_rate_limit_waiting", seconds)

    def on_stream_aborted(self):
        self._emit("on_stream_aborted")

    def on_tool_result(self, tool_name, content, is_error):
        self._emit("on_tool_result", tool_name, content, is_error)
