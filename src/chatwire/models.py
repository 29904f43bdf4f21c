"""
Defines the core Pydantic data models for the package.

These models serve as the formal data contract between the pillars: the turn
entity stored in history, the transient content blocks produced while
streaming, and the tool call/result pair exchanged with the tool pillar.
Field names follow the Anthropic Messages API wherever a model is serialized
onto the wire.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
TOOL_USE_ROLE = "tool_use"
TOOL_RESULT_ROLE = "tool_result"
Role = Literal[USER_ROLE, ASSISTANT_ROLE, TOOL_USE_ROLE, TOOL_RESULT_ROLE]

# Position in this tuple is the integer stored in history files.
ROLES = (USER_ROLE, ASSISTANT_ROLE, TOOL_USE_ROLE, TOOL_RESULT_ROLE)

TEXT_BLOCK = "text"
TOOL_USE_BLOCK = "tool_use"
TOOL_RESULT_BLOCK = "tool_result"


# --- Content blocks ---
class TextBlock(BaseModel):
    """A finalized run of assistant text."""

    type: Literal["text"] = TEXT_BLOCK
    text: str


class ToolUseBlock(BaseModel):
    """A finalized tool call requested by the model."""

    type: Literal["tool_use"] = TOOL_USE_BLOCK
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock], Field(discriminator="type")]
_content_blocks = TypeAdapter(List[ContentBlock])


def content_blocks(message: Dict[str, Any]) -> List[Union[TextBlock, ToolUseBlock]]:
    """Parses the content array of a completed message into typed blocks.

    Blocks of any other type (e.g. ``thinking``) are skipped.
    """
    raw = message.get("content") or []
    known = [
        block
        for block in raw
        if isinstance(block, dict) and block.get("type") in (TEXT_BLOCK, TOOL_USE_BLOCK)
    ]
    return _content_blocks.validate_python(known)


# --- Turns ---
class Turn(BaseModel):
    """One logical conversation event as stored in history."""

    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model: str = ""
    tool_id: str = ""
    tool_name: str = ""
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    is_error: bool = False

    def to_wire_format(self) -> Dict[str, Any]:
        """Serializes this turn as a standalone API message."""
        if self.role == TOOL_USE_ROLE:
            return {"role": ASSISTANT_ROLE, "content": [self.tool_use_block()]}
        if self.role == TOOL_RESULT_ROLE:
            return {"role": USER_ROLE, "content": [self.tool_result_block()]}
        return {"role": self.role, "content": self.content}

    def tool_use_block(self) -> Dict[str, Any]:
        return ToolUseBlock(
            id=self.tool_id, name=self.tool_name, input=self.tool_input
        ).model_dump()

    def tool_result_block(self) -> Dict[str, Any]:
        block = {
            "type": TOOL_RESULT_BLOCK,
            "tool_use_id": self.tool_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block

    def to_persisted_format(self) -> Dict[str, Any]:
        """Serializes this turn for the history file, omitting empty fields."""
        data: Dict[str, Any] = {
            "role": ROLES.index(self.role),
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.model:
            data["model"] = self.model
        if self.tool_id:
            data["tool_id"] = self.tool_id
        if self.tool_name:
            data["tool_name"] = self.tool_name
        if self.tool_input:
            data["tool_input"] = self.tool_input
        if self.is_error:
            data["is_error"] = True
        return data

    @classmethod
    def from_persisted_format(cls, data: Dict[str, Any]) -> "Turn":
        """Restores a turn written by :meth:`to_persisted_format`.

        Raises
        ------
        pydantic.ValidationError
            If the record does not describe a valid turn.
        """
        role = data.get("role", 0)
        if isinstance(role, int) and not isinstance(role, bool) and 0 <= role < len(ROLES):
            role = ROLES[role]
        fields = {
            "role": role,
            "content": data.get("content") or "",
            "model": data.get("model") or "",
            "tool_id": data.get("tool_id") or "",
            "tool_name": data.get("tool_name") or "",
            "tool_input": data.get("tool_input") or {},
            "is_error": bool(data.get("is_error", False)),
        }
        if data.get("timestamp"):
            fields["timestamp"] = data["timestamp"]
        return cls.model_validate(fields)


# --- Tool seam ---
class ToolCall(BaseModel):
    """A tool invocation handed to the tool pillar."""

    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """The textual outcome of executing a tool call."""

    tool_call_id: str
    content: str = ""
    is_error: bool = False


# --- Requests ---
class PendingRequest(BaseModel):
    """Parameters of the logical send in flight, kept for identical resends."""

    model: str
    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    max_tokens: int = 4096


class ModelInfo(BaseModel):
    id: str
    display_name: str
    context_window: int
    max_output_tokens: int


AVAILABLE_MODELS: List[ModelInfo] = [
    ModelInfo(
        id="claude-sonnet-4-20250514",
        display_name="Claude Sonnet 4",
        context_window=200000,
        max_output_tokens=16000,
    ),
    ModelInfo(
        id="claude-opus-4-20250514",
        display_name="Claude Opus 4",
        context_window=200000,
        max_output_tokens=32000,
    ),
    ModelInfo(
        id="claude-haiku-3-5-20241022",
        display_name="Claude 3.5 Haiku",
        context_window=200000,
        max_output_tokens=8192,
    ),
]
DEFAULT_MODEL = AVAILABLE_MODELS[0].id


def find_model(model_id: str) -> Optional[ModelInfo]:
    """Looks up a model in the static catalogue."""
    return next((info for info in AVAILABLE_MODELS if info.id == model_id), None)
