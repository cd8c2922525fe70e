"""Exceptions raised by the wiki engine."""


class WikiError(Exception):
    """Base exception for wiki operations."""


class InvalidPageNameError(WikiError):
    """Raised when a page name is empty."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid page name: {name!r}")


class ImportRejectedError(WikiError):
    """Raised when an import payload is not a valid backup.

    Nothing has been modified when this is raised.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class CorruptBlobError(WikiError):
    """Raised when a persisted blob exists but cannot be decoded."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Blob '{key}' is unreadable: {reason}")
