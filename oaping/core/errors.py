"""Error taxonomy for OAPing.

Transmission errors are absorbed by the transmitter (stashed and audited)
and surface to jobs only as a status. The classes here are raised by the
persistence layer and the backfill machinery, and caught at the job
boundary.
"""


class OAPingError(Exception):
    """Base class for all OAPing errors."""


class ConfigurationError(OAPingError):
    """Raised when configuration forbids sending an access as it stands."""


class TransportError(OAPingError):
    """Raised when a request never reached the tracker."""

    def __init__(self, message: str, original: Exception | None = None):
        self.original = original
        super().__init__(message)


class StashError(OAPingError):
    """Raised when the stash cannot persist or read back an access.

    Attributes:
        access_id: The access that could not be stashed, if any.
        url: The URL that would have been stashed alongside it.
    """

    def __init__(self, message: str, access_id: int | None = None, url: str | None = None):
        self.access_id = access_id
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.access_id is not None:
            return f"{base} (access {self.access_id} = {self.url or '???'})"
        return base


class BackfillStateError(OAPingError):
    """Raised when the backfill state record cannot be read or used."""


class ConsistencyError(OAPingError):
    """Raised when a backfill job's offset disagrees with the recorded one.

    Attributes:
        expected: Offset recorded in the backfill state.
        found: Offset the job was invoked with.
    """

    def __init__(self, expected: int, found: int):
        self.expected = expected
        self.found = found
        super().__init__(f"Offset mismatch, {expected} (log) != {found} (call)")
