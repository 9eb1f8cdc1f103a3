from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class PreconditionError(RuntimeError):
    """Raised when caller input is rejected before any upstream call is made."""

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = int(status_code)


class InvalidQueryError(PreconditionError):
    """Raised when a request lacks a usable url, shortcode or text."""

    status_code = 400


class OriginNotAllowedError(PreconditionError):
    """Raised when a relay target host is not on the allow-list."""

    status_code = 403


class ProviderError(RuntimeError):
    """Raised when a single metadata provider attempt fails."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.reason = reason


class TranslationError(RuntimeError):
    """Raised when an upstream translation call fails or returns nothing usable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RelayError(RuntimeError):
    """
    Raised when the media relay cannot stream from the origin.

    status_code is the origin's non-2xx status, or None when no response arrived.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
