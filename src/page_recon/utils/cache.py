"""
Page-keyed cache for per-page intermediates.

Values are JSON-serializable structures stored zlib-compressed, either in
memory or as files in a directory. Nothing is evicted automatically; the
caller removes an entry once the next stage has consumed it.
"""

import json
import logging
import zlib
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


def cache_key(page_number: int, stage: str) -> str:
    return f"page-{page_number}-{stage}"


class PageCache:
    """
    Explicit key-value store for page intermediates.

    Example:
        cache = PageCache()
        cache.put(3, "prepared", {"zones": [...]})
        data = cache.pop(3, "prepared")
    """

    def __init__(self, directory: Optional[Union[str, Path]] = None, compress_level: int = 6):
        self.directory = Path(directory) if directory else None
        self.compress_level = compress_level
        self._memory: Dict[str, bytes] = {}

        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json.z"

    def put(self, page_number: int, stage: str, value: Any):
        """Store a value, replacing any previous one under the same key."""
        key = cache_key(page_number, stage)
        blob = zlib.compress(json.dumps(value).encode("utf-8"), self.compress_level)

        if self.directory is not None:
            self._path(key).write_bytes(blob)
        else:
            self._memory[key] = blob
        logger.debug(f"Cached {key} ({len(blob)} bytes)")

    def get(self, page_number: int, stage: str) -> Any:
        """
        Load a value.

        Raises:
            KeyError: If nothing is stored under the key
        """
        key = cache_key(page_number, stage)
        if self.directory is not None:
            path = self._path(key)
            if not path.exists():
                raise KeyError(key)
            blob = path.read_bytes()
        else:
            if key not in self._memory:
                raise KeyError(key)
            blob = self._memory[key]

        return json.loads(zlib.decompress(blob).decode("utf-8"))

    def evict(self, page_number: int, stage: Optional[str] = None) -> int:
        """
        Remove one stage of a page, or every stage when ``stage`` is None.

        Returns:
            Number of entries removed
        """
        if stage is not None:
            keys = [cache_key(page_number, stage)]
        else:
            prefix = cache_key(page_number, "")
            keys = [k for k in self.keys() if k.startswith(prefix)]

        removed = 0
        for key in keys:
            if self.directory is not None:
                path = self._path(key)
                if path.exists():
                    path.unlink()
                    removed += 1
            elif self._memory.pop(key, None) is not None:
                removed += 1

        if removed:
            logger.debug(f"Evicted {removed} cache entr{'y' if removed == 1 else 'ies'} for page {page_number}")
        return removed

    def pop(self, page_number: int, stage: str) -> Any:
        """Load a value and evict it."""
        value = self.get(page_number, stage)
        self.evict(page_number, stage)
        return value

    def keys(self):
        if self.directory is not None:
            return sorted(p.name[:-len(".json.z")] for p in self.directory.glob("*.json.z"))
        return sorted(self._memory)

    def clear(self):
        for key in self.keys():
            if self.directory is not None:
                self._path(key).unlink()
        self._memory.clear()

    @property
    def nbytes(self) -> int:
        if self.directory is not None:
            return sum(p.stat().st_size for p in self.directory.glob("*.json.z"))
        return sum(len(blob) for blob in self._memory.values())

    def __contains__(self, key) -> bool:
        page_number, stage = key
        return cache_key(page_number, stage) in self.keys()

    def __len__(self) -> int:
        return len(self.keys())
