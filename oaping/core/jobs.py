"""Job runner binding the host's job actions to OAPing components.

The host's job queue calls the runner with an action name and the params
the job was created with:

    notify         [access_id, request_url]   one new access
    legacy_notify  [offset, message]          one step of the backfill sweep
    retry_stash    []                         resend stashed accesses

The runner never raises for delivery problems: every run ends in a
JobStatus, which the host records against the job.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from oaping.backends.base import AccessStore, JobScheduler, StashStore
from oaping.backends.filesystem import FileStashStore
from oaping.core.access import Access
from oaping.core.audit import AuditLog, FileAuditLog
from oaping.core.backfill import ACTION as LEGACY_NOTIFY
from oaping.core.backfill import BackfillScheduler, BackfillStateStore
from oaping.core.config import OAPingConfig
from oaping.core.coordinator import NOTIFY, RETRY_STASH, DeliveryCoordinator
from oaping.core.form import FormBuilder, UrlResolver
from oaping.core.logging import get_logger, job_logger
from oaping.core.reconciler import GapReconciler
from oaping.core.status import JobStatus
from oaping.core.transmitter import Transmitter


class JobParamsError(ValueError):
    """Raised when a job is created with params its action cannot use."""


@dataclass
class JobStats:
    """Statistics from a JobRunner's lifetime."""

    jobs_run: int = 0
    jobs_failed: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    jobs_succeeded: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    unknown_accesses: int = 0


class JobRunner:
    """Dispatches job actions to the coordinator and backfill scheduler."""

    def __init__(
        self,
        config: OAPingConfig,
        accesses: AccessStore,
        coordinator: DeliveryCoordinator,
        backfill: BackfillScheduler,
    ) -> None:
        self.config = config
        self.accesses = accesses
        self.coordinator = coordinator
        self.backfill = backfill
        # Renders every oaping.* record as JSON
        get_logger("oaping")
        self._log = job_logger("oaping.jobs", NOTIFY)
        self._stats = JobStats()
        self._actions: dict[str, Callable[[list[Any]], Awaitable[JobStatus]]] = {
            NOTIFY: self._notify,
            LEGACY_NOTIFY: self._legacy_notify,
            RETRY_STASH: self._retry_stash,
        }

    async def __aenter__(self) -> "JobRunner":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the transmitter's HTTP client, if the transmitter owns it."""
        await self.coordinator.transmitter.close()

    @property
    def actions(self) -> list[str]:
        return list(self._actions)

    def get_stats(self) -> JobStats:
        """Return a copy of current statistics."""
        return JobStats(
            jobs_run=self._stats.jobs_run,
            jobs_failed=defaultdict(int, self._stats.jobs_failed),
            jobs_succeeded=defaultdict(int, self._stats.jobs_succeeded),
            unknown_accesses=self._stats.unknown_accesses,
        )

    async def run(self, action: str, params: list[Any] | None = None) -> JobStatus:
        """Run one job.

        Raises:
            JobParamsError: If the action is unknown or its params are unusable.
        """
        handler = self._actions.get(action)
        if handler is None:
            raise JobParamsError(f"Unknown action {action!r}, expected one of {self.actions}")

        self._stats.jobs_run += 1
        status = await handler(list(params or []))
        if status is JobStatus.OK:
            self._stats.jobs_succeeded[action] += 1
        else:
            self._stats.jobs_failed[action] += 1
        return status

    async def _notify(self, params: list[Any]) -> JobStatus:
        if not 1 <= len(params) <= 2:
            raise JobParamsError(f"{NOTIFY} takes [access_id, request_url], got {params!r}")
        access_id = _as_int(params[0], NOTIFY)
        request_url = params[1] if len(params) > 1 else None

        access = await self.accesses.get(access_id)
        if access is None:
            self._stats.unknown_accesses += 1
            self._log.error(
                f"Access {access_id} not found",
                extra={"access_id": access_id},
            )
            return JobStatus.ERROR

        return await self.coordinator.handle_live_event(access, request_url or None)

    async def _legacy_notify(self, params: list[Any]) -> JobStatus:
        if not 1 <= len(params) <= 2:
            raise JobParamsError(f"{LEGACY_NOTIFY} takes [offset, message], got {params!r}")
        offset = _as_int(params[0], LEGACY_NOTIFY)
        if offset < 0:
            raise JobParamsError(f"{LEGACY_NOTIFY} offset must not be negative, got {offset}")
        message = params[1] if len(params) > 1 else None
        return await self.backfill.run(offset, message)

    async def _retry_stash(self, params: list[Any]) -> JobStatus:
        return await self.coordinator.retry_stash()


def _as_int(value: Any, action: str) -> int:
    if isinstance(value, bool):
        raise JobParamsError(f"{action}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise JobParamsError(f"{action}: expected an integer, got {value!r}") from e


async def access_created(
    config: OAPingConfig, scheduler: JobScheduler, access: Access, request_url: str
) -> bool:
    """Trigger for a newly logged access: create its notify job.

    Does nothing until live notification is switched on, i.e. until the
    backfill sweep reports it is up to date (or was never wanted).

    Returns:
        True if a job was scheduled.
    """
    if not config.live_notification:
        return False
    await scheduler.schedule_job(NOTIFY, datetime.now(UTC), [access.id, request_url])
    return True


def build_runner(
    config: OAPingConfig,
    accesses: AccessStore,
    scheduler: JobScheduler,
    stash: StashStore | None = None,
    audit: AuditLog | None = None,
    resolver: UrlResolver | None = None,
    transmitter: Transmitter | None = None,
) -> JobRunner:
    """Wire up a JobRunner with file-backed defaults under config.variables_path."""
    if stash is None:
        stash = FileStashStore(config.stash_dir)
    if audit is None:
        audit = FileAuditLog(config.audit_log_path)
    if transmitter is None:
        transmitter = Transmitter(config, stash, audit, forms=FormBuilder(config, resolver))
    state_store = BackfillStateStore(config.backfill_state_path)

    delivery = DeliveryCoordinator(
        config=config,
        accesses=accesses,
        stash=stash,
        transmitter=transmitter,
        audit=audit,
        reconciler=GapReconciler(accesses, state_store),
        scheduler=scheduler,
    )
    sweep = BackfillScheduler(
        config=config,
        accesses=accesses,
        stash=stash,
        transmitter=transmitter,
        scheduler=scheduler,
        state_store=state_store,
    )
    return JobRunner(config, accesses, delivery, sweep)
