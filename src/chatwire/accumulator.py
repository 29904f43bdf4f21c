"""Stream state machine that turns decoded frames into content blocks."""

import enum
import json
import logging
from typing import Any, Dict, List, Optional, Union

from .listeners import Listener
from .models import TEXT_BLOCK, TOOL_USE_BLOCK, TextBlock, ToolUseBlock
from .sse import Frame

logger = logging.getLogger(__name__)


class OpenBlock(enum.Enum):
    NONE = "none"
    TEXT = "text"
    TOOL_USE = "tool_use"


class ContentAccumulator:
    """Builds one response message from its stream of events.

    An accumulator lives for exactly one request attempt: the client creates
    a fresh one every time it sends, including rate-limit resends, and drops
    it when the attempt ends or is cancelled.
    """

    def __init__(self, listener: Optional[Listener] = None):
        self.listener = listener or Listener()
        self.message: Dict[str, Any] = {}
        self.blocks: List[Union[TextBlock, ToolUseBlock]] = []
        self.open_block = OpenBlock.NONE
        self._text = ""
        self._tool_id = ""
        self._tool_name = ""
        self._tool_json = ""
        self._handlers = {
            "message_start": self._on_message_start,
            "content_block_start": self._on_block_start,
            "content_block_delta": self._on_block_delta,
            "content_block_stop": self._on_block_stop,
            "message_delta": self._on_message_delta,
            "message_stop": self._on_message_stop,
            "error": self._on_error,
        }

    def handle(self, frame: Frame) -> None:
        handler = self._handlers.get(frame.event)
        if handler is None:
            logger.debug("Ignoring unknown event type %r", frame.event)
            return
        handler(frame.data)

    def finish(self) -> Dict[str, Any]:
        """Attaches the finalized blocks and announces the complete message."""
        self.message["content"] = [block.model_dump() for block in self.blocks]
        self.listener.on_message_complete(self.message)
        return self.message

    def _on_message_start(self, data: Dict[str, Any]) -> None:
        message = data.get("message")
        self.message = dict(message) if isinstance(message, dict) else {}

    def _on_block_start(self, data: Dict[str, Any]) -> None:
        block = data.get("content_block")
        if not isinstance(block, dict):
            return
        block_type = block.get("type")
        if block_type == TEXT_BLOCK:
            self._text = ""
            self.open_block = OpenBlock.TEXT
        elif block_type == TOOL_USE_BLOCK:
            self._tool_id = str(block.get("id") or "")
            self._tool_name = str(block.get("name") or "")
            self._tool_json = ""
            self.open_block = OpenBlock.TOOL_USE
            logger.debug("Tool use started - %s id: %s", self._tool_name, self._tool_id)
            self.listener.on_tool_call_started(self._tool_id, self._tool_name)

    def _on_block_delta(self, data: Dict[str, Any]) -> None:
        delta = data.get("delta")
        if not isinstance(delta, dict):
            return
        delta_type = delta.get("type")
        if delta_type == "text_delta" and self.open_block is OpenBlock.TEXT:
            text = delta.get("text")
            if not isinstance(text, str):
                return
            self._text += text
            self.listener.on_content_delta(text)
        elif delta_type == "input_json_delta" and self.open_block is OpenBlock.TOOL_USE:
            partial = delta.get("partial_json")
            if not isinstance(partial, str):
                return
            self._tool_json += partial
            self.listener.on_tool_input_delta(self._tool_id, partial)

    def _on_block_stop(self, data: Dict[str, Any]) -> None:
        if self.open_block is OpenBlock.TOOL_USE:
            tool_input = self._parse_tool_input()
            self.blocks.append(
                ToolUseBlock(id=self._tool_id, name=self._tool_name, input=tool_input)
            )
            self.listener.on_tool_call_complete(self._tool_id, self._tool_name, tool_input)
            self._tool_id = ""
            self._tool_name = ""
            self._tool_json = ""
        elif self._text:
            self.blocks.append(TextBlock(text=self._text))
            self._text = ""
        self.open_block = OpenBlock.NONE

    def _parse_tool_input(self) -> Dict[str, Any]:
        # A malformed argument falls back to an empty input; the tool then
        # reports the problem when it runs.
        try:
            parsed = json.loads(self._tool_json)
        except ValueError as e:
            logger.warning(
                "Failed to parse tool input JSON for %s: %s. Raw JSON was: %.500s",
                self._tool_name,
                e,
                self._tool_json,
            )
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Tool input for %s is not an object", self._tool_name)
            return {}
        return parsed

    def _on_message_delta(self, data: Dict[str, Any]) -> None:
        delta = data.get("delta")
        if not isinstance(delta, dict):
            delta = {}
        for key in ("stop_reason", "stop_sequence"):
            if key in delta:
                self.message[key] = delta[key]
        if "usage" in data:
            self.message["usage"] = data["usage"]

    def _on_message_stop(self, data: Dict[str, Any]) -> None:
        # Completion is driven by the end of the transport stream.
        pass

    def _on_error(self, data: Dict[str, Any]) -> None:
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        self.listener.on_error(str(message or "Unknown streaming error"))
