"""Exception types raised by the reconciliation engine."""

from __future__ import annotations


class LongboxError(Exception):
    """Base class for all engine errors."""


class NotFoundError(LongboxError):
    """A referenced entity (library, series, file) does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidRootPathError(LongboxError):
    """The library root path is missing or is not a directory."""

    def __init__(self, path: str, reason: str = "not a directory") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid library root path {path}: {reason}")


class DuplicateIdentityError(LongboxError):
    """A series with the same identity key already exists.

    Stores raise this when a unique constraint on the series identity is
    violated, which happens when another writer created the series first.
    """

    def __init__(self, identity_key: str) -> None:
        self.identity_key = identity_key
        super().__init__(f"Series identity already exists: {identity_key}")


class FolderDefinitionError(LongboxError):
    """A series.json folder definition could not be parsed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"Invalid folder definition {path}: {message}")


class TransportError(LongboxError):
    """An external source could not be reached or returned a failure status."""

    def __init__(self, source: str, message: str, status_code: int | None = None) -> None:
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}")
