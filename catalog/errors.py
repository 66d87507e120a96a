"""
Chapterwatch - Catalog Errors
Exceptions raised by the catalog API client.
"""

from typing import Optional


class CatalogError(Exception):
    """
    Base class for catalog failures.

    Attributes:
        transient: True when retrying later may succeed (network trouble,
                   rate limits, 5xx, malformed payloads)
        status_code: HTTP status of the last response, if any
    """

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CatalogUnavailableError(CatalogError):
    """The catalog could not be reached within the retry budget."""

    transient = True


class CatalogResponseError(CatalogError):
    """A response came back but could not be used (bad status or invalid JSON)."""

    transient = True


class CatalogNotFoundError(CatalogError):
    """The requested work does not exist in the catalog (HTTP 404)."""


class InvalidWorkUrlError(CatalogError, ValueError):
    """A user supplied link does not point at a catalog title."""
