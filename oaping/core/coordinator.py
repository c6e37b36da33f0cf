"""Delivery coordinator for live access notification.

The `notify` job runs once per new access. What it sends depends on what
is waiting:

1. If the backfill sweep has left its state behind, the accesses logged
   since the sweep's last one are sent together with the new access, and
   the state is retired.
2. Otherwise the delivery policy decides. CHECK_THEN_SEND drains the
   stash first and sends everything as one batch; SEND_THEN_RETRY pings
   straight away and leaves the stash to a `retry_stash` job.

The tracker expects accesses in chronological order, so batches are
sorted and, when over the batch ceiling, only the earliest are sent; the
rest are stashed again for next time.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol

from oaping.backends.base import AccessStore, JobScheduler, StashStore
from oaping.core.access import Access, StashEntry
from oaping.core.audit import AuditLog
from oaping.core.config import DeliveryPolicyName, OAPingConfig
from oaping.core.errors import BackfillStateError, StashError
from oaping.core.logging import job_logger
from oaping.core.reconciler import GapReconciler
from oaping.core.recovery import unstash
from oaping.core.status import JobStatus
from oaping.core.transmitter import Transmitter

NOTIFY = "notify"
RETRY_STASH = "retry_stash"
OVERFLOW_MESSAGE = "Too many stashed access events, saving some for next time."

log = job_logger("oaping.coordinator", NOTIFY)

Pending = tuple[Access, str | None]


class DeliveryPolicy(Protocol):
    """Strategy for delivering a live access when there is no gap to fill."""

    name: DeliveryPolicyName

    async def deliver(
        self, coordinator: "DeliveryCoordinator", access: Access, request_url: str | None
    ) -> JobStatus: ...

    async def on_failure(self, coordinator: "DeliveryCoordinator", job: str) -> None: ...


class CheckThenSend:
    """Send stashed accesses first, batched with the new one."""

    name = DeliveryPolicyName.CHECK_THEN_SEND

    async def deliver(
        self, coordinator: "DeliveryCoordinator", access: Access, request_url: str | None
    ) -> JobStatus:
        stashed = await coordinator.unstash()
        if stashed:
            stashed.append((access, request_url))
            return await coordinator.deliver_batch(stashed)
        return await coordinator.deliver_single(access, request_url)

    async def on_failure(self, coordinator: "DeliveryCoordinator", job: str) -> None:
        # The next access to arrive picks up the stash
        return None


class SendThenRetry:
    """Ping immediately; on failure, schedule a job to retry the stash."""

    name = DeliveryPolicyName.SEND_THEN_RETRY

    async def deliver(
        self, coordinator: "DeliveryCoordinator", access: Access, request_url: str | None
    ) -> JobStatus:
        return await coordinator.deliver_single(access, request_url)

    async def on_failure(self, coordinator: "DeliveryCoordinator", job: str) -> None:
        start_time = datetime.now(UTC) + timedelta(seconds=coordinator.config.retry_delay)
        await coordinator.scheduler.schedule_job(RETRY_STASH, start_time, [])
        job_logger("oaping.coordinator", job).info(
            f"Scheduled {RETRY_STASH} for {start_time.isoformat()}"
        )


_POLICIES: dict[DeliveryPolicyName, type[CheckThenSend] | type[SendThenRetry]] = {
    DeliveryPolicyName.CHECK_THEN_SEND: CheckThenSend,
    DeliveryPolicyName.SEND_THEN_RETRY: SendThenRetry,
}


def policy_for(name: DeliveryPolicyName) -> DeliveryPolicy:
    return _POLICIES[name]()


class DeliveryCoordinator:
    """Decides, per live access, whether to ping singly or send a batch."""

    def __init__(
        self,
        config: OAPingConfig,
        accesses: AccessStore,
        stash: StashStore,
        transmitter: Transmitter,
        audit: AuditLog,
        reconciler: GapReconciler,
        scheduler: JobScheduler,
        policy: DeliveryPolicy | None = None,
    ) -> None:
        self.config = config
        self.accesses = accesses
        self.stash = stash
        self.transmitter = transmitter
        self.audit = audit
        self.reconciler = reconciler
        self.scheduler = scheduler
        self.policy = policy or policy_for(config.delivery_policy)

    async def unstash(self, job: str = NOTIFY) -> list[Pending]:
        """Take stashed accesses, or none if the stash cannot be read."""
        try:
            return await unstash(self.stash, self.accesses, job)
        except StashError as e:
            job_logger("oaping.coordinator", job).error(str(e))
            return []

    async def handle_live_event(self, access: Access, request_url: str | None = None) -> JobStatus:
        """Notify the tracker of a new access.

        Returns:
            JobStatus.OK if the access (and anything sent with it) was
            delivered, JobStatus.ERROR otherwise. Undelivered accesses are
            always stashed.
        """
        if self.reconciler.has_marker():
            try:
                missed = await self.reconciler.absorb(access)
            except BackfillStateError as e:
                message = str(e)
                entry = StashEntry.for_access(access, request_url)
                stored = await self.transmitter.stash_entries([entry])
                await self.audit.record(message, stashed=stored or None)
                log.error(message, extra={"access_id": access.id})
                return JobStatus.ERROR

            pending: list[Pending] = [(a, None) for a in missed]
            pending.append((access, request_url))
            status = await self.deliver_batch(pending)
        else:
            status = await self.policy.deliver(self, access, request_url)

        if status is JobStatus.ERROR:
            await self.policy.on_failure(self, NOTIFY)
        return status

    async def retry_stash(self) -> JobStatus:
        """Send whatever is stashed as a recovery batch."""
        stashed = await self.unstash(RETRY_STASH)
        if not stashed:
            return JobStatus.OK

        status = await self.deliver_batch(stashed, job=RETRY_STASH)
        if status is JobStatus.ERROR:
            await self.policy.on_failure(self, RETRY_STASH)
        return status

    async def deliver_single(self, access: Access, request_url: str | None) -> JobStatus:
        result = await self.transmitter.send_one(access, request_url)
        if result.ok:
            if self.config.verbosity:
                log.info(result.message, extra={"access_id": access.id})
            return JobStatus.OK

        log.warning(result.message, extra={"access_id": access.id})
        return JobStatus.ERROR

    async def deliver_batch(self, pending: list[Pending], job: str = NOTIFY) -> JobStatus:
        """Send the earliest accesses as a recovery batch; stash the overflow."""
        size = self.config.batch_size
        overflow: list[Pending] = []
        if len(pending) > size:
            # The transmitter sorts too, but here we need to choose the earliest
            pending = sorted(pending, key=lambda p: p[0].datestamp or "")
            pending, overflow = pending[:size], pending[size:]

        result = await self.transmitter.send_batch(pending, is_recovery=True)
        job_logger("oaping.coordinator", job).info(result.message)

        if overflow:
            entries = [StashEntry.for_access(a, url) for a, url in overflow]
            stored = await self.transmitter.stash_entries(entries)
            await self.audit.record(OVERFLOW_MESSAGE, stashed=stored or None)

        return JobStatus.OK if result.ok else JobStatus.ERROR
