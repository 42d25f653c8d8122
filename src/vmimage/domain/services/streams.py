"""Helpers for backend progress streams."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Optional

from vmimage.exceptions import BackendError

ProgressStream = Iterator[dict[str, Any]]


def empty_stream() -> ProgressStream:
    """Return a stream with no events."""
    return iter(())


def drain_stream(
    stream: Optional[Iterable[dict[str, Any]]],
    operation: str = "",
    image: str = "",
) -> int:
    """Consume a progress stream until it is exhausted.

    Blocks until the backend finishes. Events are discarded.

    Args:
        stream: Progress events, may be None.
        operation: Operation name used in error context.
        image: Image name used in error context.

    Returns:
        Number of events consumed.

    Raises:
        BackendError: If an event reports an error.
    """
    if stream is None:
        return 0
    count = 0
    try:
        for event in stream:
            count += 1
            if isinstance(event, dict) and event.get("error"):
                raise BackendError(
                    str(event["error"]),
                    operation=operation,
                    image=image,
                    details={"error_detail": event.get("errorDetail", {})},
                )
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()
    return count
