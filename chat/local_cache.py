"""
Durable local cache for a visitor's session.

A handful of string keys that let a reload resume the same conversation.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)

CONVERSATION_ID_KEY = "chat.conversationId"
NAME_KEY = "chat.name"
EMAIL_KEY = "chat.email"
SUBMITTED_KEY = "chat.submitted"
LAST_READ_KEY = "chat.lastRead"

ALL_KEYS = (CONVERSATION_ID_KEY, NAME_KEY, EMAIL_KEY, SUBMITTED_KEY, LAST_READ_KEY)


@runtime_checkable
class LocalCache(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def clear(self, key: Optional[str] = None) -> None:
        """Clear one key, or every key when ``key`` is None."""
        ...


class MemoryLocalCache:
    """Cache that lives as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._data.clear()
        else:
            self._data.pop(key, None)


class JsonFileLocalCache:
    """Cache persisted to a small JSON file, rewritten on every change."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable local cache {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            self._data.clear()
        else:
            self._data.pop(key, None)
        self._flush()
