"""Data models for MiniWiki."""

from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Mode(str, Enum):
    """Active view of the wiki."""

    VIEW = "view"
    EDIT = "edit"
    LIST = "list"
    HISTORY_LIST = "history"
    HISTORY_DETAIL = "historyDetail"


class Revision(BaseModel):
    """Snapshot of a page's content at the time it was committed."""

    model_config = ConfigDict(frozen=True)

    page: str
    time: datetime
    content: str


class VersionEntry(BaseModel):
    """A revision of one page, addressed by its position in the global log."""

    timestamp: datetime
    content: str
    original_index: int


class ViewState(BaseModel):
    """Cursor into the wiki: what is displayed and for which page."""

    mode: Mode = Mode.VIEW
    current_page: str
    history_page: str | None = None
    history_index: int | None = None


class TocEntry(BaseModel):
    """A numbered heading in a page's table of contents."""

    number: str
    text: str
    level: int
    depth: int
    anchor: str


class ExportBundle(BaseModel):
    """Backup document holding all pages and the revision log."""

    model_config = ConfigDict(populate_by_name=True)

    pages: dict[str, str]
    history: list[Revision] = Field(default_factory=list)
    exported_at: datetime = Field(alias="exportedAt")


class WikiEvent(BaseModel):
    """Change notification sent to the presentation layer."""

    type: str
    page: str | None = None


class DocumentsBlob(BaseModel):
    """Persisted shape of the page set together with the view cursor."""

    model_config = ConfigDict(populate_by_name=True)

    current: str | None = None
    pages: dict[str, str]
    mode: Mode = Mode.VIEW
    history_page: str | None = Field(default=None, alias="historyPage")
    history_index: int | None = Field(
        default=None,
        validation_alias=AliasChoices("historyIndex", "historyIdx"),
        serialization_alias="historyIndex",
    )

    @field_validator("mode", mode="before")
    @classmethod
    def _unknown_mode_is_view(cls, value: object) -> object:
        if value not in [m.value for m in Mode]:
            return Mode.VIEW
        return value
