# /backend/app/exceptions.py

from typing import Any, Optional


class MalformedInputError(Exception):
    """
    Extraction output could not be turned into charges/deductions.

    The raw text is kept so the caller can show it to the user for
    manual correction. Never retried.
    """

    def __init__(self, message: str, raw_text: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.raw_text = raw_text


class LookupUnavailableError(Exception):
    """The reference rate store could not be queried."""


class DifyServiceError(Exception):
    """Dify returned a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DifyConfigurationError(Exception):
    """Dify credentials are missing from the environment."""
