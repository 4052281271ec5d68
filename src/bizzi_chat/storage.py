"""Key-value storage used for caches and per-thread flags.

Values are JSON-serialisable. Keys are versioned informally by prefix
(``qp:v1:...``, ``bizzi:seed:...``), so no migrations are needed.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Union

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> Iterator[str]: ...

    def clear(self) -> None: ...


class MemoryStorage:
    """Process-local storage; one instance per session."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([key for key in self._data if key.startswith(prefix)])

    def clear(self) -> None:
        self._data.clear()


class JsonFileStorage(MemoryStorage):
    """Durable storage that writes the whole map to a JSON file on every change."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self._path = Path(path)
        self._lock = threading.Lock()
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable storage file %s: %s", self._path, exc)
            return
        if isinstance(raw, dict):
            self._data.update(raw)

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, default=str), encoding="utf-8")
        tmp.replace(self._path)

    def get(self, key: str, default: Any = None) -> Any:
        self._load()
        return super().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._load()
            super().set(key, value)
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            self._load()
            super().remove(key)
            self._flush()

    def keys(self, prefix: str = "") -> Iterator[str]:
        self._load()
        return super().keys(prefix)

    def clear(self) -> None:
        with self._lock:
            self._loaded = True
            super().clear()
            self._flush()
