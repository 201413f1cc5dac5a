"""
Store Errors - Failure kinds raised by object stores.

Every layer of the kit propagates these unchanged; only the try-get paths
of the object access layer absorb NotFoundError.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for all object store failures."""

    def __init__(self, message: str, kind: Optional[str] = None, key=None):
        super().__init__(message)
        self.kind = kind
        self.key = key


class NotFoundError(StoreError):
    """The requested object does not exist."""


class ConflictError(StoreError):
    """The object's resource version is stale."""


class AlreadyExistsError(StoreError):
    """An object with the same kind and key already exists."""


class UnavailableError(StoreError):
    """The store could not be reached or failed to answer."""


class InvalidError(StoreError):
    """The store returned data, or was given data, of an unexpected shape."""
