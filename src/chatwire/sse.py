"""Incremental parser for ``text/event-stream`` response bodies."""

import json
import logging
from typing import Any, Dict, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

FRAME_DELIMITER = b"\n\n"
EVENT_PREFIX = "event:"
DATA_PREFIX = "data:"


class Frame(NamedTuple):
    """One decoded server-sent event."""

    event: str
    data: Dict[str, Any]


def decode_frame(raw: bytes) -> Optional[Frame]:
    """Decodes one delimited frame, returning ``None`` for unusable frames.

    The ``event:`` value is trimmed, the ``data:`` payload is taken verbatim
    and must decode to a JSON object.
    """
    event = ""
    data = ""
    for line in raw.decode("utf-8", errors="replace").split("\n"):
        if line.startswith(EVENT_PREFIX):
            event = line[len(EVENT_PREFIX) :].strip()
        elif line.startswith(DATA_PREFIX):
            data = line[len(DATA_PREFIX) :]
    if not event or not data:
        return None
    try:
        payload = json.loads(data)
    except ValueError:
        logger.debug("Discarding %s frame with undecodable payload", event)
        return None
    if not isinstance(payload, dict):
        logger.debug("Discarding %s frame with non-object payload", event)
        return None
    return Frame(event, payload)


class FrameParser:
    """Splits an append-only byte buffer into frames on blank lines.

    Data is fed as it arrives; a trailing partial frame stays buffered until
    the next :meth:`feed` or the final :meth:`flush`.
    """

    def __init__(self):
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Frame]:
        self._buffer.extend(chunk)
        frames = []
        while True:
            end = self._buffer.find(FRAME_DELIMITER)
            if end == -1:
                break
            raw = bytes(self._buffer[:end])
            del self._buffer[: end + len(FRAME_DELIMITER)]
            frame = decode_frame(raw)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[Frame]:
        """Decodes whatever remains buffered as one last frame."""
        if not self._buffer:
            return []
        raw = bytes(self._buffer)
        self._buffer.clear()
        frame = decode_frame(raw)
        return [frame] if frame is not None else []

    def reset(self) -> None:
        self._buffer.clear()
