"""Exceptions for tkdmatch."""


class TkdMatchError(Exception):
    """Base exception for all tkdmatch errors."""

    pass


class NotFoundError(TkdMatchError):
    """Referenced match, event, pool, competitor or session does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidInputError(TkdMatchError):
    """Input rejected before any change was made."""

    pass


class ConflictStateError(TkdMatchError):
    """Operation rejected because of the current state; nothing was changed."""

    pass


class DuplicateEventError(TkdMatchError):
    """A re-delivered scoring event. Absorbed by the ingest, never surfaced."""

    pass


class ActionMappingError(InvalidInputError):
    """Device action code with no canonical mapping and no safe fallback."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"No canonical action for device code '{code}'")
