"""Custom exceptions for promstash."""

from typing import Any


class PromStashError(Exception):
    """Base exception for all promstash errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(PromStashError):
    """Configuration-related errors."""

    pass


class ParseError(PromStashError):
    """Malformed exposition text.

    Aborts the scrape the text belongs to; no partial family is emitted.
    """

    def __init__(self, message: str, line_number: int, token: str = "") -> None:
        super().__init__(
            f"line {line_number}: {message}" + (f" (near {token!r})" if token else ""),
            line_number=line_number,
            token=token,
        )
        self.reason = message
        self.line_number = line_number
        self.token = token


class FetchError(PromStashError):
    """A scrape fetch failed (transport error, timeout or bad status)."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            f"Fetch of {url} failed: {reason}",
            url=url,
            reason=reason,
            status_code=status_code,
        )
        self.url = url
        self.status_code = status_code


class StorageError(PromStashError):
    """Storage-related errors."""

    pass


class BufferClosedError(PromStashError):
    """Put attempted on a closed scrape buffer."""

    def __init__(self) -> None:
        super().__init__("Scrape buffer is closed")
