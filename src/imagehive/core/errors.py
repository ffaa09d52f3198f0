"""Exception hierarchy shared by the relay, prober and HTTP layer."""

from __future__ import annotations


class ImageHiveError(Exception):
    """Base class for all ImageHive errors."""


class BackendError(ImageHiveError):
    """The inference backend could not be reached or answered badly.

    Covers both transport failures (connection refused, timeout, dropped
    stream) and protocol violations (non-JSON body, missing fields).

    Attributes:
        status_code: HTTP status returned by the backend, if one was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(ImageHiveError):
    """A request cannot be attempted with the current configuration."""


class ImageGenerationError(ImageHiveError):
    """The image generation API rejected or failed a request."""
