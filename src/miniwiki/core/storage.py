"""Durable storage for the wiki's serialized state.

State is kept as a handful of independent JSON blobs (documents, revisions,
visited times, pins, link index). Each one is rewritten in full whenever it
changes.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from miniwiki.core.exceptions import CorruptBlobError

logger = logging.getLogger(__name__)

DOCUMENTS_KEY = "documents"
REVISIONS_KEY = "revisions"
VISITED_KEY = "visited"
PINNED_KEY = "pinned"
LINKS_KEY = "links"


class BlobStore(ABC):
    """Abstract base class for keyed blob storage."""

    @abstractmethod
    def read(self, key: str) -> str | None:
        """Get the raw text of a blob. Returns None if not found."""
        ...

    @abstractmethod
    def write(self, key: str, text: str) -> None:
        """Replace the raw text of a blob. Creates it if it doesn't exist."""
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a blob exists."""
        ...

    def load(self, key: str) -> Any:
        """Load and decode a blob.

        Returns None if the blob does not exist. Raises CorruptBlobError if it
        exists but is not valid JSON.
        """
        try:
            raw = self.read(key)
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptBlobError(key, str(e)) from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptBlobError(key, str(e)) from e

    def save(self, key: str, data: Any) -> bool:
        """Encode and write a blob.

        Returns True on success. A failed write is logged and leaves the
        previous durable copy in place.
        """
        text = json.dumps(data, ensure_ascii=False, indent=2)
        try:
            self.write(key, text)
        except OSError as e:
            logger.warning("Failed to save blob '%s': %s", key, e)
            return False
        logger.debug("Saved blob '%s' (%d bytes)", key, len(text))
        return True


class FileBlobStore(BlobStore):
    """File-based storage implementation.

    Each blob is stored as ``<key>.json`` inside ``base_path``.
    """

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get full path for a blob."""
        return self.base_path / f"{key}.json"

    def read(self, key: str) -> str | None:
        path = self._get_path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, text: str) -> None:
        path = self._get_path(key)
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(path)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()


class MemoryBlobStore(BlobStore):
    """Keeps blobs in a dict; nothing survives the process."""

    def __init__(self, blobs: dict[str, str] | None = None):
        self.blobs: dict[str, str] = dict(blobs or {})

    def read(self, key: str) -> str | None:
        return self.blobs.get(key)

    def write(self, key: str, text: str) -> None:
        self.blobs[key] = text

    def exists(self, key: str) -> bool:
        return key in self.blobs
