"""Concrete implementations for history storage backends."""

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .config import HISTORY_SUFFIX


class Store(ABC):
    """Interface for reading and writing one history document per source file.

    Stores move raw JSON-compatible documents; versioning and the turn format
    belong to the history layer. Implementations may raise ``OSError`` or
    ``ValueError`` on I/O or decoding failures.
    """

    @abstractmethod
    def load(self, document: str) -> Optional[Dict[str, Any]]:
        """Returns the stored document for ``document``, or ``None`` if absent."""
        pass

    @abstractmethod
    def save(self, document: str, data: Dict[str, Any]) -> None:
        """Stores ``data`` for ``document``, replacing any previous version."""
        pass

    @abstractmethod
    def delete(self, document: str) -> None:
        """Removes the stored document for ``document`` if one exists."""
        pass


class InMemory(Store):
    """Keeps history documents in a dictionary for the session only."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}

    def load(self, document: str) -> Optional[Dict[str, Any]]:
        data = self._documents.get(document)
        return copy.deepcopy(data) if data is not None else None

    def save(self, document: str, data: Dict[str, Any]) -> None:
        self._documents[document] = copy.deepcopy(data)

    def delete(self, document: str) -> None:
        self._documents.pop(document, None)


class File(Store):
    """Stores each history as a JSON side-car file next to its source file."""

    def __init__(self, suffix: str = HISTORY_SUFFIX):
        self.suffix = suffix

    def path_for(self, document: str) -> Path:
        """The side-car path for ``document``: its own path plus the suffix."""
        return Path(str(document) + self.suffix)

    def load(self, document: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(document)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not contain a JSON object")
        return data

    def save(self, document: str, data: Dict[str, Any]) -> None:
        path = self.path_for(document)
        path.write_text(json.dumps(data, indent=4, ensure_ascii=False), encoding="utf-8")

    def delete(self, document: str) -> None:
        self.path_for(document).unlink(missing_ok=True)
