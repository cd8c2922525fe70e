"""Link graph index.

Keeps, for each page, the ordered list of page names its content references.
Backlinks are derived on demand by scanning every entry, so the index only
stores outgoing links and can always be rebuilt from page content.
"""

import logging
import unicodedata
from collections.abc import Mapping

from miniwiki.core.parser import parse_links

logger = logging.getLogger(__name__)


def collation_key(name: str) -> tuple[str, str]:
    """Sort key that orders names case- and accent-insensitively.

    Ties are broken by the raw name so ordering is total.
    """
    folded = unicodedata.normalize("NFKD", name).casefold()
    base = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return base, name


class LinkIndex:
    """Outgoing-link table for all pages."""

    def __init__(self, links: Mapping[str, list[str]] | None = None) -> None:
        self._links: dict[str, list[str]] = {
            name: list(targets) for name, targets in (links or {}).items()
        }

    def rebuild_all(self, pages: Mapping[str, str]) -> None:
        """Recompute the index from the content of every page."""
        self._links = {name: parse_links(content) for name, content in pages.items()}
        logger.info(
            "Link index rebuilt: %d pages, %d links",
            len(self._links),
            self.link_count(),
        )

    def update_one(self, name: str, content: str) -> list[str]:
        """Recompute the outgoing links of a single page."""
        links = parse_links(content)
        self._links[name] = links
        return links

    def outgoing(self, name: str) -> list[str]:
        """Pages referenced by ``name``, in order of first appearance."""
        return list(self._links.get(name, []))

    def backlinks_of(self, name: str) -> list[str]:
        """Pages other than ``name`` whose content links to it."""
        backlinks = [
            page
            for page, targets in self._links.items()
            if page != name and name in targets
        ]
        return sorted(backlinks, key=collation_key)

    def link_count(self) -> int:
        return sum(len(targets) for targets in self._links.values())

    def to_dict(self) -> dict[str, list[str]]:
        return {name: list(targets) for name, targets in self._links.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._links

    def __len__(self) -> int:
        return len(self._links)
