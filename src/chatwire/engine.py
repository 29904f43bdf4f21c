"""Request orchestration: one user message through the full tool-use loop."""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .errors import NOT_CONFIGURED, REQUEST_IN_PROGRESS
from .models import (
    ASSISTANT_ROLE,
    TOOL_RESULT_ROLE,
    TOOL_USE_ROLE,
    USER_ROLE,
    TextBlock,
    ToolCall,
    ToolResult,
    Turn,
    content_blocks,
)

if TYPE_CHECKING:
    from . import Chatwire

logger = logging.getLogger(__name__)


class Engine(ABC):
    """Interface for driving conversations through the app's pillars."""

    def __init__(self, app: Optional["Chatwire"] = None):
        self.app = app

    @abstractmethod
    async def handle_message(self, user_input: str) -> Optional[Dict[str, Any]]:
        """Adds ``user_input`` to the history and runs the conversation.

        Returns the final assistant message, or ``None`` if nothing was
        sent, the send failed, or it was cancelled.
        """
        pass

    def cancel(self) -> None:
        """Stops the conversation in flight."""
        self.app.llm.cancel_request()


class Streaming(Engine):
    """Streams every response and loops until the model stops calling tools.

    Each cycle sends the whole history. Text blocks of the response become
    one assistant turn and each tool-use block a tool-call turn; when tool
    calls were made they are executed in order, their results appended, and
    the history is sent again without user involvement. History is saved
    when a cycle ends without tool calls.
    """

    async def handle_message(self, user_input):
        text = (user_input or "").strip()
        if not text:
            return None
        app = self.app
        if not app.llm.is_configured():
            app.listener.on_error(NOT_CONFIGURED)
            return None
        if app.llm.is_request_in_progress():
            app.listener.on_error(REQUEST_IN_PROGRESS)
            return None

        app.history.add_turn(Turn(role=USER_ROLE, content=text))
        return await self.run()

    async def run(self) -> Optional[Dict[str, Any]]:
        """Runs protocol cycles over the current history until one ends."""
        app = self.app
        while True:
            message = await app.llm.send_message(
                app.model,
                app.history.to_wire_messages(),
                app.tools.get_tools(),
                app.system_prompt,
                app.max_tokens,
            )
            if message is None:
                return None

            tool_calls = self._record_response(message)
            if not tool_calls:
                app.history.save()
                return message

            for tool_call in tool_calls:
                result = self._execute(tool_call)
                app.history.add_turn(
                    Turn(
                        role=TOOL_RESULT_ROLE,
                        content=result.content,
                        tool_id=tool_call.id,
                        is_error=result.is_error,
                    )
                )
                app.listener.on_tool_result(tool_call.name, result.content, result.is_error)
            logger.debug("Continuing conversation with %d tool results", len(tool_calls))

    def cancel(self):
        if not self.app.llm.is_request_in_progress():
            return
        self.app.llm.cancel_request()
        self.app.listener.on_stream_aborted()

    def _record_response(self, message: Dict[str, Any]) -> List[ToolCall]:
        blocks = content_blocks(message)
        text = "".join(block.text for block in blocks if isinstance(block, TextBlock))
        tool_calls = [
            ToolCall(id=block.id, name=block.name, input=block.input)
            for block in blocks
            if not isinstance(block, TextBlock)
        ]
        history = self.app.history
        if text:
            history.add_turn(
                Turn(
                    role=ASSISTANT_ROLE,
                    content=text,
                    model=message.get("model") or self.app.model,
                )
            )
        for tool_call in tool_calls:
            history.add_turn(
                Turn(
                    role=TOOL_USE_ROLE,
                    tool_id=tool_call.id,
                    tool_name=tool_call.name,
                    tool_input=tool_call.input,
                )
            )
        return tool_calls

    def _execute(self, tool_call: ToolCall) -> ToolResult:
        logger.debug("Processing tool %s with input keys: %s", tool_call.name, sorted(tool_call.input))
        try:
            result = self.app.tools.execute_tool_call(tool_call)
        except Exception as e:
            # Every tool call needs a result turn, even when the tool crashes.
            logger.exception("Tool %s failed", tool_call.name)
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Error executing tool '{tool_call.name}': {e}",
                is_error=True,
            )
        logger.debug("Tool %s finished, error: %s", tool_call.name, result.is_error)
        return result
