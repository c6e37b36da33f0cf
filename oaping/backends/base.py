"""Protocols for the stores and services OAPing depends on.

The stash is owned by OAPing. The access store and the job scheduler
belong to the host repository; OAPing only uses the narrow contracts
below and never models their internals.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from oaping.core.access import Access, StashEntry


class StashStore(Protocol):
    """Durable map of access id -> URL for accesses awaiting delivery.

    Implementations must:
    - Overwrite on repeated put for the same access id (last write wins)
    - Never leave a partial entry behind after a crash
    - Raise StashError when an entry cannot be persisted or read
    """

    async def put(self, entry: StashEntry) -> None:
        """Persist an entry, replacing any entry for the same access.

        Args:
            entry: The StashEntry to persist.

        Raises:
            StashError: If the entry could not be persisted.
        """
        ...

    async def take_all(self) -> list[StashEntry]:
        """Return and remove every stashed entry.

        Entries come back in no particular order; callers must sort.

        Raises:
            StashError: If the stash could not be read.
        """
        ...

    async def count(self) -> int:
        """Return the number of stashed entries."""
        ...


@dataclass(frozen=True)
class AccessQuery:
    """Filter and ordering criteria for the host's access dataset.

    Attributes:
        require_set: Fields that must have a value.
        id_range: Inclusive (first, last) access id bounds, or None.
        order: Sort fields, applied in turn, all ascending.
    """

    require_set: tuple[str, ...] = ("datestamp", "referent_id")
    id_range: tuple[int, int] | None = None
    order: tuple[str, ...] = ("datestamp", "id")


@dataclass
class AccessPage:
    """One page of search results plus the total number of matches."""

    items: list[Access] = field(default_factory=list)
    total: int = 0


class AccessStore(Protocol):
    """Read-only view of the host repository's access dataset."""

    async def get(self, access_id: int) -> Access | None:
        """Return the access with this id, or None if it no longer exists."""
        ...

    async def search(
        self, query: AccessQuery, offset: int = 0, limit: int | None = None
    ) -> AccessPage:
        """Return matching accesses in a stable order.

        Args:
            query: Filter and ordering criteria.
            offset: Number of leading matches to skip.
            limit: Maximum number of matches to return; None for all.
        """
        ...


class JobScheduler(Protocol):
    """The host's job queue. Fire and forget: OAPing never polls it."""

    async def schedule_job(self, action: str, start_time: datetime, params: list[Any]) -> None:
        """Schedule `action` to run at `start_time` with `params`.

        Scheduling the same action with the same params twice must not
        create a duplicate job.
        """
        ...
