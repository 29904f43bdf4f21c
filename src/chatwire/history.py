"""Conversation history bound to one source document."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from .models import (
    ASSISTANT_ROLE,
    TOOL_RESULT_ROLE,
    TOOL_USE_ROLE,
    USER_ROLE,
    TEXT_BLOCK,
    Turn,
)
from .store import File, Store

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1


def to_wire_messages(turns: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Groups stored turns into the message array the API expects.

    History keeps every sentence, tool call and tool result as its own turn,
    while the API wants one message per model turn: an assistant message
    whose content lists its text and all of its tool calls, followed by one
    user message listing all of their results. Adjacent turns of the right
    kind are merged; no turn is ever dropped.
    """
    messages: List[Dict[str, Any]] = []
    i = 0
    while i < len(turns):
        turn = turns[i]
        if turn.role in (ASSISTANT_ROLE, TOOL_USE_ROLE):
            content: List[Dict[str, Any]] = []
            j = i
            if turn.role == ASSISTANT_ROLE:
                j = i + 1
                if j >= len(turns) or turns[j].role != TOOL_USE_ROLE:
                    messages.append(turn.to_wire_format())
                    i = j
                    continue
                if turn.content:
                    content.append({"type": TEXT_BLOCK, "text": turn.content})
            while j < len(turns) and turns[j].role == TOOL_USE_ROLE:
                content.append(turns[j].tool_use_block())
                j += 1
            messages.append({"role": ASSISTANT_ROLE, "content": content})
            i = j
        elif turn.role == TOOL_RESULT_ROLE:
            content = []
            j = i
            while j < len(turns) and turns[j].role == TOOL_RESULT_ROLE:
                content.append(turns[j].tool_result_block())
                j += 1
            messages.append({"role": USER_ROLE, "content": content})
            i = j
        else:
            messages.append(turn.to_wire_format())
            i += 1
    return messages


class ConversationHistory:
    """Ordered turns for one document, persisted through a :class:`Store`.

    Turns are only ever appended or cleared as a whole. Persistence is a
    convenience: I/O and decoding failures are logged and treated as "no
    history" on load or as a skipped save.
    """

    def __init__(self, store: Optional[Store] = None, document: Optional[str] = None):
        self.store = store if store is not None else File()
        self._document = ""
        self._turns: List[Turn] = []
        self._callbacks: List[Callable[[], None]] = []
        if document:
            self.set_document(document)

    @property
    def document(self) -> str:
        return self._document

    @property
    def turns(self) -> List[Turn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))

    def on_change(self, callback: Callable[[], None]) -> None:
        """Registers ``callback`` to run after every change to the turns."""
        self._callbacks.append(callback)

    def _changed(self) -> None:
        for callback in self._callbacks:
            callback()

    def set_document(self, document: Optional[str]) -> None:
        """Associates the history with another document.

        The current history is saved first when it is non-empty, then the new
        document's history is loaded if it has one.
        """
        document = str(document) if document else ""
        if document == self._document:
            return
        if self._document and self._turns:
            self.save()
        self._document = document
        self._turns = []
        if self._document:
            self.load()
        self._changed()

    def add_turn(self, turn: Turn) -> None:
        self._turns.append(turn)
        logger.debug("Added %s turn (%d total)", turn.role, len(self._turns))
        self._changed()

    def to_wire_messages(self) -> List[Dict[str, Any]]:
        return to_wire_messages(self._turns)

    def clear(self) -> None:
        """Drops every turn and deletes the stored history."""
        self._turns = []
        if self._document:
            try:
                self.store.delete(self._document)
            except OSError as e:
                logger.warning("Could not delete history for %s: %s", self._document, e)
        self._changed()

    def save(self) -> None:
        if not self._document:
            return
        data = {
            "version": HISTORY_VERSION,
            "source_file": Path(self._document).name,
            "messages": [turn.to_persisted_format() for turn in self._turns],
        }
        try:
            self.store.save(self._document, data)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not save history for %s: %s", self._document, e)

    def load(self) -> None:
        """Replaces the turns with the stored history, if it is usable."""
        if not self._document:
            return
        try:
            data = self.store.load(self._document)
        except (OSError, ValueError) as e:
            logger.warning("Could not read history for %s: %s", self._document, e)
            return
        if data is None:
            return
        version = data.get("version")
        if isinstance(version, bool) or version != HISTORY_VERSION:
            logger.info(
                "Ignoring history for %s with version %r (expected %d)",
                self._document,
                version,
                HISTORY_VERSION,
            )
            return
        records = data.get("messages") or []
        if not isinstance(records, list):
            logger.warning("Ignoring history for %s: messages is not a list", self._document)
            return
        try:
            turns = [Turn.from_persisted_format(record) for record in records]
        except (AttributeError, ValidationError) as e:
            logger.warning("Ignoring malformed history for %s: %s", self._document, e)
            return
        self._turns = turns
        logger.debug("Loaded %d turns for %s", len(turns), self._document)
