"""In-memory stores and scheduler for development and testing.

None of these provide durability guarantees: everything is lost when the
process terminates.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from oaping.backends.base import AccessPage, AccessQuery
from oaping.core.access import Access, StashEntry


def _sort_key(access: Access, order: tuple[str, ...]) -> tuple[tuple[bool, Any], ...]:
    # Unset values sort first
    key = []
    for name in order:
        value = getattr(access, name)
        key.append((value is not None, value if value is not None else 0))
    return tuple(key)


class InMemoryStashStore:
    """Stash store keeping entries in a dict keyed by access id."""

    def __init__(self) -> None:
        self._entries: dict[int, StashEntry] = {}

    async def put(self, entry: StashEntry) -> None:
        self._entries[entry.access_id] = entry

    async def take_all(self) -> list[StashEntry]:
        entries = list(self._entries.values())
        self._entries.clear()
        return entries

    async def count(self) -> int:
        return len(self._entries)

    def snapshot(self) -> dict[int, str]:
        """Return a copy of the stash as {access_id: url}."""
        return {access_id: entry.url for access_id, entry in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryAccessStore:
    """Access store over a list of Access objects.

    Args:
        accesses: Initial accesses. More can be added with add().
    """

    def __init__(self, accesses: list[Access] | None = None) -> None:
        self._accesses: dict[int, Access] = {}
        for access in accesses or []:
            self.add(access)

    def add(self, access: Access) -> None:
        self._accesses[access.id] = access

    def remove(self, access_id: int) -> None:
        self._accesses.pop(access_id, None)

    async def get(self, access_id: int) -> Access | None:
        return self._accesses.get(access_id)

    def _matches(self, access: Access, query: AccessQuery) -> bool:
        for name in query.require_set:
            if getattr(access, name) is None:
                return False
        if query.id_range is not None:
            first, last = query.id_range
            if not first <= access.id <= last:
                return False
        return True

    async def search(
        self, query: AccessQuery, offset: int = 0, limit: int | None = None
    ) -> AccessPage:
        matches = [a for a in self._accesses.values() if self._matches(a, query)]
        matches.sort(key=lambda a: _sort_key(a, query.order))
        end = None if limit is None else offset + limit
        return AccessPage(items=matches[offset:end], total=len(matches))


@dataclass(frozen=True)
class ScheduledJob:
    """A job handed to the scheduler."""

    action: str
    start_time: datetime
    params: tuple[Any, ...] = field(default_factory=tuple)


class InMemoryJobScheduler:
    """Job scheduler that records jobs instead of running them.

    Scheduling an action with the same params as a pending job is ignored,
    matching the host's create-unique behaviour.
    """

    def __init__(self) -> None:
        self.jobs: list[ScheduledJob] = []

    async def schedule_job(self, action: str, start_time: datetime, params: list[Any]) -> None:
        job = ScheduledJob(action=action, start_time=start_time, params=tuple(params))
        for pending in self.jobs:
            if pending.action == job.action and pending.params == job.params:
                return
        self.jobs.append(job)

    def pop(self) -> ScheduledJob | None:
        """Remove and return the earliest job, or None if there are none."""
        if not self.jobs:
            return None
        job = min(self.jobs, key=lambda j: j.start_time)
        self.jobs.remove(job)
        return job

    def __len__(self) -> int:
        return len(self.jobs)
