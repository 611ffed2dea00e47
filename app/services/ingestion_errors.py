from __future__ import annotations


class MalformedMessageError(ValueError):
    """Raised when a counts-topic message matches none of the known shapes.

    Malformed messages cannot succeed on redelivery, so the consumer logs
    and skips them instead of leaving them uncommitted.

    Args:
        message: High-level human-readable reason for logs.
        raw: Optional raw payload (truncated by the caller) for diagnostics.
    """

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw
