"""Shared exceptions for service layer operations."""


class InvalidStateError(Exception):
    """
    Raised when an operation is invalid for a resource's current state.

    Used when an operation cannot be performed on the given resources
    (e.g., merging a bookmark into itself).
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class DuplicateBookmarkError(Exception):
    """Raised when a user already has a bookmark with the same url and title."""

    def __init__(self, url: str, title: str) -> None:
        self.url = url
        self.title = title
        super().__init__(f"A bookmark with this url and title already exists: {url!r} {title!r}")


class RenderIntegrityError(Exception):
    """
    Raised when cached render state would be corrupted.

    Examples: a comment without a valid sibling index, a bookmark header that
    contains a newline, or a cached bookmark render whose first line is not the
    bookmark's header. These are programmer errors and are never handled.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
