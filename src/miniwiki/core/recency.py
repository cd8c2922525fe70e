"""Last-visit tracking used for the "recent" page ordering."""

import time
from collections.abc import Iterable, Mapping
from typing import Callable


def now_millis() -> int:
    return int(time.time() * 1000)


class RecencyTracker:
    """Maps page names to the epoch-millis of their last display."""

    def __init__(
        self,
        visited: Mapping[str, int] | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._visited: dict[str, int] = dict(visited or {})
        self._clock = clock

    def touch(self, name: str) -> int:
        """Record a visit to ``name`` now.

        Stamps never go backwards, so the latest touch always sorts first.
        """
        latest = max(self._visited.values(), default=0)
        stamp = max(self._clock(), latest + 1)
        self._visited[name] = stamp
        return stamp

    def last_visit(self, name: str) -> int:
        return self._visited.get(name, 0)

    def recency_order(self, pages: Iterable[str]) -> list[str]:
        """Page names by last visit, most recent first; unseen pages last."""
        return sorted(pages, key=self.last_visit, reverse=True)

    def to_dict(self) -> dict[str, int]:
        return dict(self._visited)
