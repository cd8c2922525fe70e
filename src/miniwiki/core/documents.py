"""Document store: page name to current content."""

from collections.abc import Mapping

from miniwiki.core.exceptions import InvalidPageNameError

STUB_TEMPLATE = "# {name}\n\nThis page is empty. Write something here."

WELCOME_TEXT = "\n".join(
    [
        "# Home",
        "",
        "Welcome to your personal wiki.",
        "",
        "## Getting started",
        "",
        "Create a page by linking to it: [[First Note]], [[Ideas]]",
        "",
        "Type a page name in the command box and press Enter to open it,"
        " or create it if it doesn't exist. Type `All` to list every page.",
        "",
        "## Shortcuts",
        "",
        "- **Ctrl + E**: edit",
        "- **Ctrl + S**: save",
        "- **Esc**: cancel",
        "",
        "## Backups",
        "",
        "Everything is stored locally. Use **Export** regularly to keep a backup.",
    ]
)

RESET_TEXT = "# Home\n\nStored pages could not be read and were reset."


def stub_content(name: str) -> str:
    """Body given to a page that is created by being referenced."""
    return STUB_TEMPLATE.format(name=name)


def validate_page_name(name: str) -> str:
    if not name or not name.strip():
        raise InvalidPageNameError(name)
    return name


class DocumentStore:
    """Mapping of page names to Markdown content.

    Pages are created on first reference and never deleted.
    """

    def __init__(self, pages: Mapping[str, str] | None = None) -> None:
        self._pages: dict[str, str] = dict(pages or {})

    def get(self, name: str) -> str | None:
        return self._pages.get(name)

    def exists(self, name: str) -> bool:
        return name in self._pages

    def ensure(self, name: str) -> bool:
        """Create ``name`` with a stub body if missing. Returns True if created."""
        validate_page_name(name)
        if name in self._pages:
            return False
        self._pages[name] = stub_content(name)
        return True

    def commit(self, name: str, content: str) -> None:
        """Set the current content of a page, creating it if needed."""
        validate_page_name(name)
        self._pages[name] = content

    def replace_all(self, pages: Mapping[str, str]) -> None:
        self._pages = dict(pages)

    def names(self) -> list[str]:
        return list(self._pages)

    def to_dict(self) -> dict[str, str]:
        return dict(self._pages)

    def __contains__(self, name: object) -> bool:
        return name in self._pages

    def __len__(self) -> int:
        return len(self._pages)
