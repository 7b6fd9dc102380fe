"""
Error Types
===========
Exceptions raised by the service layer and mapped to HTTP statuses by the
server: ValidationFailed → 400, NotFound → 404, ReadOnlyMode → 403.
"""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for archive errors."""


class ValidationFailed(ArchiveError):
    """A request is missing a required field or carries an invalid value."""


class NotFound(ArchiveError):
    """The referenced row does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class ReadOnlyMode(ArchiveError):
    """A mutation was attempted while serving a static snapshot."""
