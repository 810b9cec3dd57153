"""Base exception types shared across roomsense."""

__all__ = ["RoomsenseError", "DuplicateEntityError"]


class RoomsenseError(Exception):
    """Base class for all roomsense errors."""


class DuplicateEntityError(RoomsenseError):
    """An entity with the same id is already registered."""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity with id {entity_id} already exists")
        self.entity_id = entity_id
