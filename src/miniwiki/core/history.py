"""Revision log: a single capped history shared by all pages."""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Callable

from miniwiki.core.models import Revision, VersionEntry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevisionLog:
    """Append-only log of content snapshots, capped globally.

    When the cap is exceeded the oldest revisions are evicted regardless of
    which page they belong to. Revisions are addressed by their position in
    the log.
    """

    def __init__(
        self,
        entries: Iterable[Revision] = (),
        limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if limit < 1:
            raise ValueError("history limit must be positive")
        self.limit = limit
        self._clock = clock
        self._entries: list[Revision] = []
        self.replace(entries)

    def append(self, page: str, content: str) -> Revision:
        """Record a new revision and evict the oldest past the cap."""
        revision = Revision(page=page, time=self._clock(), content=content)
        self._entries.append(revision)
        self._truncate()
        return revision

    def replace(self, entries: Iterable[Revision]) -> None:
        """Swap in a whole new log (used by import and load)."""
        self._entries = list(entries)
        self._truncate()

    def _truncate(self) -> None:
        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
            logger.debug("Evicted %d oldest revision(s)", overflow)

    def get(self, index: int) -> Revision | None:
        """Return the revision at ``index`` or None if it no longer exists."""
        if 0 <= index < len(self._entries):
            return self._entries[index]
        return None

    def versions_for(self, page: str) -> list[VersionEntry]:
        """Revisions of ``page``, most recent first."""
        return [
            VersionEntry(timestamp=rev.time, content=rev.content, original_index=idx)
            for idx, rev in reversed(list(enumerate(self._entries)))
            if rev.page == page
        ]

    def restore(self, index: int) -> Revision | None:
        """Record the snapshot at ``index`` again as the newest revision.

        Returns the new revision, or None if ``index`` is out of range.
        """
        revision = self.get(index)
        if revision is None:
            logger.debug("Restore of missing revision %d ignored", index)
            return None
        return self.append(revision.page, revision.content)

    @property
    def entries(self) -> list[Revision]:
        return list(self._entries)

    def to_list(self) -> list[dict]:
        return [rev.model_dump(mode="json") for rev in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
