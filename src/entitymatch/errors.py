"""
Exceptions raised by the entity matching engine.

Every error derives from EntityMatchError so callers (and the API layer)
can catch engine failures separately from programming errors.
"""

from typing import Any, Optional


class EntityMatchError(Exception):
    """Base class for engine errors."""

    pass


class EmptyNameError(EntityMatchError, ValueError):
    """Raised when a mention has no usable name text."""

    def __init__(self, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(f"Name is empty after normalization: {raw!r}")


class NotFoundError(EntityMatchError, LookupError):
    """Raised when an identity, mention or review task id does not exist."""

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class InvalidTransitionError(EntityMatchError):
    """Raised when a workflow trigger does not apply to the current state."""

    def __init__(self, state: str, trigger: str, detail: str = ""):
        self.state = state
        self.trigger = trigger
        message = f"Trigger '{trigger}' is not valid in state '{state}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConcurrentModificationError(EntityMatchError):
    """Raised when a conditional write loses a race on the record version."""

    def __init__(self, identity_id: Any, expected_version: int, actual_version: int):
        self.identity_id = identity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Identity {identity_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ExtractionSchemaError(EntityMatchError, ValueError):
    """Raised when an extraction payload fails schema validation."""

    def __init__(self, errors: list[dict[str, Any]]):
        self.errors = errors
        fields = ", ".join(
            ".".join(str(part) for part in error.get("loc", ())) or "<root>"
            for error in errors
        )
        super().__init__(f"Invalid extraction payload ({len(errors)} errors): {fields}")


class InvalidMergeError(EntityMatchError):
    """Raised when two identities cannot be merged."""

    pass


class AliasCollisionError(EntityMatchError):
    """Raised when a merge would move aliases already owned by a third identity."""

    def __init__(self, collisions: dict[str, list[Any]]):
        self.collisions = collisions
        names = ", ".join(sorted(collisions))
        super().__init__(f"Aliases already belong to other identities: {names}")


class InvalidUpdateError(EntityMatchError, ValueError):
    """Raised when an identity update names fields that cannot be changed."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Fields cannot be updated: {', '.join(fields)}")
