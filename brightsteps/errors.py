"""Exception taxonomy shared by every store and the coordinator."""


class BrightStepsError(Exception):
    """Base error. Carries the pack/item the failing operation was about."""

    def __init__(
        self,
        message: str,
        pack_id: str | None = None,
        item_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.pack_id = pack_id
        self.item_id = item_id

    def to_dict(self) -> dict:
        data = {"error": type(self).__name__, "message": self.message}
        if self.pack_id is not None:
            data["pack_id"] = self.pack_id
        if self.item_id is not None:
            data["item_id"] = self.item_id
        return data


class InvalidRequest(BrightStepsError, ValueError):
    """Malformed input from the caller. Not retried."""


class NotFound(BrightStepsError, LookupError):
    """Missing pack, asset or cache entry."""


class Conflict(BrightStepsError):
    """A pack with the requested id already exists."""


class GenerationFailure(BrightStepsError):
    """The generation capability failed. Safe to retry."""


class GenerationTimeout(GenerationFailure):
    """The caller stopped waiting; the generation itself keeps running."""


class StorageFailure(BrightStepsError):
    """Database or filesystem unavailable for the current operation."""
