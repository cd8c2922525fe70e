"""Pinned pages: a user-ordered list of favorites."""

from collections.abc import Container, Iterable


class PinStore:
    """Ordered, duplicate-free list of pinned page names.

    Pins whose page does not exist are kept in storage but hidden from
    :meth:`visible_pins`, so a page recreated under the same name gets its
    pin and position back.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: list[str] = []
        self.reorder(names)

    def toggle(self, name: str) -> bool:
        """Pin ``name`` at the end, or unpin it. Returns the new pinned state."""
        if name in self._names:
            self._names.remove(name)
            return False
        self._names.append(name)
        return True

    def reorder(self, names: Iterable[str]) -> None:
        """Replace the stored order wholesale, dropping repeated names."""
        self._names = list(dict.fromkeys(names))

    def is_pinned(self, name: str) -> bool:
        return name in self._names

    def visible_pins(self, pages: Container[str]) -> list[str]:
        """Pins whose page exists, in stored order."""
        return [name for name in self._names if name in pages]

    @property
    def names(self) -> list[str]:
        return list(self._names)
