"""Loading stashed accesses back for another delivery attempt."""

from oaping.backends.base import AccessStore, StashStore
from oaping.core.access import Access
from oaping.core.logging import job_logger


async def unstash(
    stash: StashStore, accesses: AccessStore, job: str
) -> list[tuple[Access, str | None]]:
    """Take every stashed entry and resolve it to its access.

    Entries whose access no longer exists are dropped. The result is in no
    particular order.

    Raises:
        StashError: If the stash could not be read.
    """
    log = job_logger("oaping.recovery", job)
    resolved: list[tuple[Access, str | None]] = []
    for entry in await stash.take_all():
        access = await accesses.get(entry.access_id)
        if access is None:
            log.warning(
                f"Stashed access {entry.access_id} no longer exists",
                extra={"access_id": entry.access_id},
            )
            continue
        resolved.append((access, entry.url or None))
    return resolved
