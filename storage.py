import json
import logging
import os
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class LocalStorage:
    """
    String key/value storage with browser localStorage semantics.

    Values live in a single JSON object on disk and survive restarts until
    cleared. Without a path the store is memory-only.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._items: dict[str, str] = {}
        if self.path is not None and self.path.exists():
            self._items = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> dict[str, str]:
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Local storage file {path} does not hold an object")
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._items, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._items = {}
        self._flush()
        logger.info("local_storage_cleared: path=%s", self.path)

    def keys(self) -> list[str]:
        return list(self._items)
