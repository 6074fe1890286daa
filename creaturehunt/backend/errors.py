"""Error taxonomy shared by the catalog, encounter and feed layers."""

from __future__ import annotations


class CreatureHuntError(Exception):
    """Base class for all errors raised by the backend core."""


class NetworkError(CreatureHuntError):
    """Remote source unreachable or answered with a non-success status."""


class NotFoundError(CreatureHuntError):
    """Remote resource or record does not exist."""


class PersistenceError(CreatureHuntError):
    """Local or remote store write failed."""


class EmptyCatalogError(CreatureHuntError):
    """A random spawn was requested without any summary data loaded."""


class InvalidStateError(CreatureHuntError):
    """Operation not allowed in the current encounter state."""


class SpawnError(CreatureHuntError):
    """Target could not be resolved for a spawn."""

    def __init__(self, message: str, cause: Exception) -> None:
        super().__init__(message)
        self.cause = cause


class CaptureError(CreatureHuntError):
    """Capture write failed; the target is still present."""

    def __init__(self, message: str, cause: Exception) -> None:
        super().__init__(message)
        self.cause = cause
