"""Shared utility functions for service layer."""
import time

from sqlalchemy.exc import IntegrityError


def now_ms() -> float:
    """Current wall-clock time as whole epoch milliseconds."""
    return float(time.time_ns() // 1_000_000)


def is_unique_violation(error: IntegrityError, constraint: str | None = None) -> bool:
    """
    Check whether an IntegrityError is a SQLite UNIQUE constraint failure.

    Args:
        error: The error raised by the flush or execute.
        constraint: Optional column list fragment (e.g. "blob.sha256") that the
            failure message must mention.
    """
    message = str(error.orig) if error.orig is not None else str(error)
    if "UNIQUE constraint failed" not in message:
        return False
    return constraint is None or constraint in message


def quote_lines(text: str) -> str:
    """Prefix every line with '> ' (markdown blockquote)."""
    return "\n".join(f"> {line}" for line in text.split("\n"))
