from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Type


class FetchError(RuntimeError):
    """Base class for every error raised by mcfetch."""


class NetworkError(FetchError):
    """Transport or HTTP failure while talking to a registry."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(FetchError):
    """Malformed input, identifier, or wire encoding."""


class DownloadError(FetchError):
    """An artifact could not be transferred."""


class IntegrityError(DownloadError):
    """A downloaded artifact does not match its expected hash."""

    def __init__(self, message: str, expected: str, actual: str) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ResourceError(FetchError):
    """An expected file, directory, version or field is missing."""


class ConfigError(FetchError):
    """Raised when configuration cannot be loaded or required context is missing."""


class ErrorLevel(str, Enum):
    POPUP = "popup"
    NOTIFICATION = "notification"
    SILENT = "silent"
    IGNORE = "ignore"


PRESENTATION_POLICY: Dict[Type[BaseException], ErrorLevel] = {
    ConfigError: ErrorLevel.POPUP,
    ResourceError: ErrorLevel.NOTIFICATION,
    IntegrityError: ErrorLevel.NOTIFICATION,
    DownloadError: ErrorLevel.NOTIFICATION,
    NetworkError: ErrorLevel.NOTIFICATION,
    ValidationError: ErrorLevel.NOTIFICATION,
    FetchError: ErrorLevel.SILENT,
}


def presentation_for(exc: BaseException) -> ErrorLevel:
    """Look up how a front end should surface ``exc``.

    The most specific class in the exception's MRO wins; anything outside the
    mcfetch hierarchy is treated as a popup.
    """

    for klass in type(exc).__mro__:
        level = PRESENTATION_POLICY.get(klass)
        if level is not None:
            return level
    return ErrorLevel.POPUP
