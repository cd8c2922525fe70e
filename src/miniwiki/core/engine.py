"""Wiki engine: owns all wiki state and implements the view state machine.

Every mutating operation writes the affected blobs back to the store before
returning. Operations that are not legal in the current mode are ignored and
leave the state untouched; callers can ask :meth:`WikiEngine.available_triggers`
which ones apply.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from miniwiki.config import Settings
from miniwiki.core.documents import (
    RESET_TEXT,
    WELCOME_TEXT,
    DocumentStore,
    validate_page_name,
)
from miniwiki.core.exceptions import CorruptBlobError, ImportRejectedError
from miniwiki.core.graph import LinkIndex, collation_key
from miniwiki.core.history import DEFAULT_HISTORY_LIMIT, RevisionLog, utcnow
from miniwiki.core.models import (
    DocumentsBlob,
    ExportBundle,
    Mode,
    Revision,
    VersionEntry,
    ViewState,
    WikiEvent,
)
from miniwiki.core.parser import resolve_link_target
from miniwiki.core.pins import PinStore
from miniwiki.core.recency import RecencyTracker, now_millis
from miniwiki.core.storage import (
    DOCUMENTS_KEY,
    LINKS_KEY,
    PINNED_KEY,
    REVISIONS_KEY,
    VISITED_KEY,
    BlobStore,
    FileBlobStore,
)

logger = logging.getLogger(__name__)

ALL_MODES = frozenset(Mode)

# Modes in which each trigger is legal.
TRIGGERS: dict[str, frozenset[Mode]] = {
    "navigate": ALL_MODES,
    "edit": frozenset({Mode.VIEW}),
    "save": frozenset({Mode.EDIT}),
    "cancel": frozenset({Mode.EDIT}),
    "list_all": ALL_MODES,
    "view_history": frozenset({Mode.VIEW, Mode.EDIT}),
    "open_version": frozenset({Mode.HISTORY_LIST}),
    "restore": frozenset({Mode.HISTORY_DETAIL}),
    "back": frozenset({Mode.HISTORY_LIST, Mode.HISTORY_DETAIL}),
    "escape": ALL_MODES - {Mode.VIEW},
    "update_buffer": frozenset({Mode.EDIT}),
    "run_command": ALL_MODES,
}

HISTORY_COMMAND = ":history"
LIST_COMMAND = "all"

_pages_adapter = TypeAdapter(dict[str, str])
_revisions_adapter = TypeAdapter(list[Revision])
_visited_adapter = TypeAdapter(dict[str, int])
_pinned_adapter = TypeAdapter(list[str])
_links_adapter = TypeAdapter(dict[str, list[str]])

Listener = Callable[[WikiEvent], None]


class WikiEngine:
    """A single wiki: pages, revisions, links, pins, recency and the view."""

    def __init__(
        self,
        store: BlobStore,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        home_page: str = "Home",
        clock: Callable[[], datetime] = utcnow,
        visit_clock: Callable[[], int] = now_millis,
    ) -> None:
        self.store = store
        self.home_page = home_page
        self._clock = clock
        self._visit_clock = visit_clock
        self.documents = DocumentStore()
        self.revisions = RevisionLog(limit=history_limit, clock=clock)
        self.recency = RecencyTracker(clock=visit_clock)
        self.pins = PinStore()
        self.links = LinkIndex()
        self.view = ViewState(current_page=home_page)
        self.buffer: str | None = None
        self._listeners: list[Listener] = []
        self._load()

    @classmethod
    def from_settings(cls, settings: Settings) -> "WikiEngine":
        """Open the wiki stored in ``settings.data_dir``."""
        return cls(
            FileBlobStore(settings.data_dir),
            history_limit=settings.history_limit,
            home_page=settings.home_page,
        )

    # ========== Loading ==========

    def _load(self) -> None:
        reset = self._load_documents()
        self._load_revisions()
        self._load_visited()
        self._load_pinned()
        self._load_links(force_rebuild=reset)
        self._repair_view()
        logger.info(
            "Wiki opened: %d pages, %d revisions, %d pins",
            len(self.documents),
            len(self.revisions),
            len(self.pins.names),
        )

    def _load_blob(self, key: str, adapter: TypeAdapter) -> Any:
        """Decode a blob, returning None when it is absent or unusable."""
        try:
            data = self.store.load(key)
        except CorruptBlobError as e:
            logger.warning("%s; resetting", e)
            return None
        if data is None:
            return None
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            logger.warning("Blob '%s' has an unexpected shape; resetting: %s", key, e)
            return None

    def _load_documents(self) -> bool:
        """Load pages and view state. Returns True if the blob had to be reset."""
        try:
            data = self.store.load(DOCUMENTS_KEY)
        except CorruptBlobError as e:
            logger.warning("%s; resetting pages", e)
            self._seed(RESET_TEXT)
            return True

        if data is None:
            self._seed(WELCOME_TEXT)
            return False

        try:
            blob = DocumentsBlob.model_validate(data)
        except ValidationError as e:
            logger.warning("Stored pages have an unexpected shape; resetting: %s", e)
            self._seed(RESET_TEXT)
            return True

        self.documents.replace_all(blob.pages)
        current = blob.current
        if not current or not current.strip():
            current = next(iter(blob.pages), self.home_page)
        self.view = ViewState(
            mode=blob.mode,
            current_page=current,
            history_page=blob.history_page,
            history_index=blob.history_index,
        )
        return False

    def _seed(self, home_text: str) -> None:
        self.documents.replace_all({self.home_page: home_text})
        self.view = ViewState(current_page=self.home_page)
        self._save_documents()

    def _repair_view(self) -> None:
        """Make a restored view state consistent with the loaded data.

        Runs after the link index is loaded so a recreated page gets an entry.
        """
        view = self.view
        if self._materialize(view.current_page):
            self._save_documents()
        if view.mode == Mode.EDIT:
            self.buffer = self.documents.get(view.current_page)
        if view.mode in (Mode.HISTORY_LIST, Mode.HISTORY_DETAIL):
            view.history_page = view.history_page or view.current_page
        if view.mode == Mode.HISTORY_DETAIL and view.history_index is None:
            view.mode = Mode.HISTORY_LIST

    def _load_revisions(self) -> None:
        entries = self._load_blob(REVISIONS_KEY, _revisions_adapter)
        self.revisions.replace(entries or [])

    def _load_visited(self) -> None:
        try:
            data = self.store.load(VISITED_KEY)
        except CorruptBlobError as e:
            logger.warning("%s; resetting", e)
            data = None

        if isinstance(data, list):
            # Older format: names only, most recent first.
            now = self._visit_clock()
            names = [name for name in data if isinstance(name, str)]
            visited = {name: now - idx * 1000 for idx, name in enumerate(names)}
            self.recency = RecencyTracker(visited, clock=self._visit_clock)
            self._save_visited()
            logger.info("Migrated %d visited entries to timestamps", len(visited))
            return

        visited = None
        if data is not None:
            try:
                visited = _visited_adapter.validate_python(data)
            except ValidationError as e:
                logger.warning("Blob 'visited' has an unexpected shape; resetting: %s", e)
        self.recency = RecencyTracker(visited, clock=self._visit_clock)

    def _load_pinned(self) -> None:
        self.pins.reorder(self._load_blob(PINNED_KEY, _pinned_adapter) or [])

    def _load_links(self, force_rebuild: bool = False) -> None:
        links = None if force_rebuild else self._load_blob(LINKS_KEY, _links_adapter)
        if links is None:
            self.links.rebuild_all(self.documents.to_dict())
            self._save_links()
        else:
            self.links = LinkIndex(links)

    # ========== Persistence ==========

    def _save_documents(self) -> None:
        blob = DocumentsBlob(
            current=self.view.current_page,
            pages=self.documents.to_dict(),
            mode=self.view.mode,
            history_page=self.view.history_page,
            history_index=self.view.history_index,
        )
        self.store.save(DOCUMENTS_KEY, blob.model_dump(mode="json", by_alias=True))

    def _save_revisions(self) -> None:
        self.store.save(REVISIONS_KEY, self.revisions.to_list())

    def _save_visited(self) -> None:
        self.store.save(VISITED_KEY, self.recency.to_dict())

    def _save_pins(self) -> None:
        self.store.save(PINNED_KEY, self.pins.names)

    def _save_links(self) -> None:
        self.store.save(LINKS_KEY, self.links.to_dict())

    # ========== Events ==========

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback for change events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, page: str | None = None) -> None:
        event = WikiEvent(type=event_type, page=page)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event_type)

    # ========== Queries ==========

    @property
    def state(self) -> ViewState:
        return self.view.model_copy()

    @property
    def current_page(self) -> str:
        return self.view.current_page

    def available_triggers(self) -> list[str]:
        """Triggers that are legal in the current mode."""
        return [name for name, modes in TRIGGERS.items() if self.view.mode in modes]

    def _allowed(self, trigger: str) -> bool:
        if self.view.mode in TRIGGERS[trigger]:
            return True
        logger.debug("Ignoring %s() in %s mode", trigger, self.view.mode.value)
        return False

    def page_content(self, name: str) -> str | None:
        return self.documents.get(name)

    def page_exists(self, name: str) -> bool:
        return self.documents.exists(name)

    def backlinks(self, name: str) -> list[str]:
        return self.links.backlinks_of(name)

    def versions(self, page: str | None = None) -> list[VersionEntry]:
        """Revisions of ``page`` (default: the page whose history is open)."""
        page = page or self.view.history_page or self.view.current_page
        return self.revisions.versions_for(page)

    def revision(self, index: int | None = None) -> Revision | None:
        """The revision at ``index`` (default: the one open in detail view).

        The open revision is None once it no longer belongs to the page whose
        history is shown, which happens when eviction shifts the log.
        """
        if index is not None:
            return self.revisions.get(index)
        if self.view.history_index is None:
            return None
        revision = self.revisions.get(self.view.history_index)
        if revision is None or revision.page != self.view.history_page:
            return None
        return revision

    def visible_pins(self) -> list[str]:
        return self.pins.visible_pins(self.documents)

    def is_pinned(self, name: str) -> bool:
        return self.pins.is_pinned(name)

    def list_pages(self, sort: str = "alpha", query: str = "") -> list[str]:
        """Page names sorted alphabetically or by recency, optionally filtered."""
        names = sorted(self.documents.names(), key=collation_key)
        query = query.strip().casefold()
        if query:
            names = [name for name in names if query in name.casefold()]
        if sort == "recent":
            names = self.recency.recency_order(names)
        elif sort != "alpha":
            raise ValueError(f"Unknown sort order: {sort!r}")
        return names

    # ========== Transitions ==========

    def _materialize(self, name: str) -> bool:
        """Create a stub page for ``name`` if it doesn't exist yet."""
        if not self.documents.ensure(name):
            return False
        self.links.update_one(name, self.documents.get(name) or "")
        self._save_links()
        logger.info("Created page '%s'", name)
        self._emit("page_created", name)
        return True

    def _commit(self, name: str, content: str) -> None:
        self.documents.commit(name, content)
        self.links.update_one(name, content)
        self._save_links()

    def _show(self, name: str) -> ViewState:
        """Display ``name`` in reading mode."""
        self._materialize(name)
        self.view = ViewState(mode=Mode.VIEW, current_page=name)
        self.buffer = None
        self.recency.touch(name)
        self._save_documents()
        self._save_visited()
        self._emit("state", name)
        return self.state

    def _set_mode(self, mode: Mode, **fields: Any) -> ViewState:
        self.view = self.view.model_copy(update={"mode": mode, **fields})
        if mode != Mode.EDIT:
            self.buffer = None
        self._save_documents()
        self._emit("state", self.view.current_page)
        return self.state

    def navigate(self, name: str) -> ViewState:
        """Open ``name`` in reading mode, creating the page if needed."""
        validate_page_name(name)
        return self._show(name)

    def follow_link(self, href: str) -> ViewState | None:
        """Navigate to the page a rendered link points at.

        Returns None (and does nothing) for external links and anchors.
        """
        target = resolve_link_target(href)
        if target is None:
            return None
        return self.navigate(target or self.home_page)

    def edit(self) -> ViewState:
        if not self._allowed("edit"):
            return self.state
        self.buffer = self.documents.get(self.current_page) or ""
        return self._set_mode(Mode.EDIT)

    def update_buffer(self, text: str) -> ViewState:
        if self._allowed("update_buffer"):
            self.buffer = text
        return self.state

    def save(self, content: str | None = None) -> ViewState:
        """Commit the edit buffer (or ``content``) as a new revision."""
        if not self._allowed("save"):
            return self.state
        name = self.current_page
        if content is None:
            content = self.buffer or ""
        self.revisions.append(name, content)
        self._save_revisions()
        self._commit(name, content)
        self._emit("page_saved", name)
        return self._show(name)

    def cancel(self) -> ViewState:
        if not self._allowed("cancel"):
            return self.state
        return self._show(self.current_page)

    def list_all(self) -> ViewState:
        return self._set_mode(Mode.LIST, history_page=None, history_index=None)

    def view_history(self, page: str | None = None) -> ViewState:
        if not self._allowed("view_history"):
            return self.state
        return self._open_history(page or self.current_page)

    def _open_history(self, page: str) -> ViewState:
        return self._set_mode(Mode.HISTORY_LIST, history_page=page, history_index=None)

    def open_version(self, index: int) -> ViewState:
        if not self._allowed("open_version"):
            return self.state
        revision = self.revisions.get(index)
        if revision is None:
            logger.debug("No revision at index %d", index)
            return self.state
        return self._set_mode(
            Mode.HISTORY_DETAIL, history_page=revision.page, history_index=index
        )

    def restore(self, index: int | None = None) -> ViewState:
        """Make an old revision current again, recording it as a new revision."""
        if not self._allowed("restore"):
            return self.state
        if index is None:
            index = self.view.history_index
            snapshot = self.revision()
        else:
            snapshot = self.revisions.get(index)
        if index is None or snapshot is None:
            return self.state
        if not snapshot.page.strip():
            logger.warning("Revision %d has no page name; not restoring", index)
            return self.state
        revision = self.revisions.restore(index)
        if revision is None:
            return self.state
        self._save_revisions()
        self._commit(revision.page, revision.content)
        logger.info("Restored revision %d of '%s'", index, revision.page)
        self._emit("page_saved", revision.page)
        return self._show(revision.page)

    def back(self) -> ViewState:
        if not self._allowed("back"):
            return self.state
        page = self.view.history_page or self.current_page
        if self.view.mode == Mode.HISTORY_DETAIL:
            return self._open_history(page)
        return self.navigate(page)

    def escape(self) -> ViewState:
        """Leave the current mode and return to reading the current page."""
        if not self._allowed("escape"):
            return self.state
        return self._show(self.current_page)

    def run_command(self, command: str) -> ViewState:
        """Interpret text typed into the command box.

        ``:history [name]`` opens a page's history, ``all`` lists every page,
        and anything else opens (or creates) the page of that name.
        """
        command = command.strip()
        if not command:
            return self.state

        if self.view.mode == Mode.EDIT and self.buffer is not None:
            # Keep the unsaved draft as the page content, without a revision.
            self._commit(self.current_page, self.buffer)
            self._save_documents()

        lowered = command.lower()
        if lowered.startswith(HISTORY_COMMAND):
            page = command[len(HISTORY_COMMAND) :].strip()
            return self._open_history(page or self.current_page)
        if lowered == LIST_COMMAND:
            return self.list_all()
        return self.navigate(command)

    # ========== Pins ==========

    def toggle_pin(self, name: str | None = None) -> bool:
        """Pin or unpin ``name`` (default: current page). Returns the new state."""
        name = name or self.current_page
        pinned = self.pins.toggle(name)
        self._save_pins()
        self._emit("pins", name)
        return pinned

    def reorder_pins(self, names: list[str]) -> list[str]:
        """Store a new pin order as produced by a drag-and-drop gesture."""
        self.pins.reorder(names)
        self._save_pins()
        self._emit("pins")
        return self.visible_pins()

    # ========== Import / export ==========

    def export_bundle(self) -> ExportBundle:
        return ExportBundle(
            pages=self.documents.to_dict(),
            history=self.revisions.entries,
            exported_at=self._clock(),
        )

    def export_data(self) -> dict[str, Any]:
        """Backup document in its JSON form."""
        return self.export_bundle().model_dump(mode="json", by_alias=True)

    def backup_filename(self) -> str:
        return f"mini-wiki-backup-{self._clock():%Y-%m-%d}.json"

    def import_data(self, data: Any) -> ViewState:
        """Replace all pages and revisions with the contents of a backup.

        Raises ImportRejectedError, without changing anything, if ``data`` is
        not a usable backup.
        """
        if not isinstance(data, dict):
            raise ImportRejectedError("Backup must be a JSON object")
        if not isinstance(data.get("pages"), dict):
            raise ImportRejectedError("Backup does not contain a pages mapping")

        try:
            pages = _pages_adapter.validate_python(data["pages"], strict=True)
        except ValidationError as e:
            raise ImportRejectedError(f"Backup pages are invalid: {e}") from e
        if any(not name.strip() for name in pages):
            raise ImportRejectedError("Backup contains a page with an empty name")

        history: list[Revision] = []
        if isinstance(data.get("history"), list):
            try:
                history = _revisions_adapter.validate_python(data["history"])
            except ValidationError as e:
                raise ImportRejectedError(f"Backup history is invalid: {e}") from e
            if any(not rev.page.strip() for rev in history):
                raise ImportRejectedError("Backup history has a revision without a page")

        self.documents.replace_all(pages)
        self.revisions.replace(history)
        current = self.current_page
        if current not in self.documents:
            current = next(iter(pages), self.home_page)
        self.documents.ensure(current)
        self.links.rebuild_all(self.documents.to_dict())

        self._save_revisions()
        self._save_links()
        logger.info("Imported %d pages, %d revisions", len(pages), len(history))
        self._emit("imported", current)
        return self._show(current)
