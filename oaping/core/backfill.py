"""Backfill scheduler: sweeps the historical access backlog in batches.

Each run of the `legacy_notify` job sends one batch of up to `batch_size`
accesses, records its progress, and respawns itself:

- in 60 seconds after a successful send,
- in 24 hours once there is nothing left to send,
- in 60 minutes after a failure; the failed batch is stashed by the
  transmitter and retried first on the next run.

After more than 24 consecutive failures the job stops respawning and an
operator has to intervene. The message of each run is passed to the next
job purely so it shows up in the host's job queue.
"""

import json
import os
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile

from pydantic import BaseModel, Field, ValidationError

from oaping.backends.base import AccessQuery, AccessStore, JobScheduler, StashStore
from oaping.core.access import Access
from oaping.core.config import OAPingConfig
from oaping.core.errors import BackfillStateError, ConsistencyError, StashError
from oaping.core.logging import job_logger
from oaping.core.recovery import unstash
from oaping.core.status import JobStatus
from oaping.core.transmitter import Transmitter

ACTION = "legacy_notify"

log = job_logger("oaping.backfill", ACTION)
UP_TO_DATE = "Up to date"

SENT_DELAY = timedelta(seconds=60)
UP_TO_DATE_DELAY = timedelta(hours=24)
FAILURE_DELAY = timedelta(minutes=60)

# Consecutive failed runs tolerated before giving up (a day of hourly retries)
MAX_TRIES_SINCE_SUCCESS = 24


class BackfillOutcome(Enum):
    SENT = "sent"
    UP_TO_DATE = "up_to_date"
    ERRORED = "errored"


class BackfillState(BaseModel):
    """Progress record of the backfill sweep.

    Attributes:
        offset: Number of backlog accesses already processed; None until the
            first batch has been taken from the backlog.
        last_event_id: Highest access id taken from the backlog so far; 0 once
            a run has found nothing, None if never recorded.
        tries_since_success: Consecutive runs that did not send successfully.
        last_run: When the previous run started.
        message: Outcome of the previous run.
        total: Backlog size seen by the previous query.
    """

    offset: int | None = Field(default=None, ge=0)
    last_event_id: int | None = Field(default=None, ge=0)
    tries_since_success: int = Field(default=0, ge=0)
    last_run: datetime | None = None
    message: str | None = None
    total: int | None = Field(default=None, ge=0)

    model_config = {"extra": "ignore"}


class BackfillStateStore:
    """JSON file holding the BackfillState.

    The file doubles as the marker that a sweep has run; the live notify job
    retires it by renaming it to `<name>.bak`.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def retired_path(self) -> Path:
        return self._path.with_name(self._path.name + ".bak")

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> BackfillState | None:
        """Read the state, or return None if there is none.

        Raises:
            BackfillStateError: If the file cannot be read or parsed.
        """
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackfillStateError(f"Could not read {self._path}: {e}") from e

        try:
            return BackfillState.model_validate_json(content)
        except ValidationError as e:
            raise BackfillStateError(f"Could not parse {self._path}: {e}") from e

    def save(self, state: BackfillState) -> None:
        """Write the state atomically.

        Raises:
            BackfillStateError: If the file cannot be written.
        """
        data = state.model_dump(mode="json")
        tmp_path: Path | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                prefix=f".{self._path.name}-",
                suffix=".tmp",
                dir=self._path.parent,
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                json.dump(data, handle, indent=3, sort_keys=True)
            os.replace(tmp_path, self._path)
            tmp_path = None
        except OSError as e:
            raise BackfillStateError(f"Could not write {self._path}: {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

    def retire(self) -> None:
        """Rename the state file out of the way.

        Raises:
            BackfillStateError: If the file cannot be renamed.
        """
        try:
            os.replace(self._path, self.retired_path)
        except OSError as e:
            raise BackfillStateError(f"Could not retire {self._path}: {e}") from e


def backlog_query() -> AccessQuery:
    # Only accesses with a datestamp can be registered, and only those
    # with a referent are worth registering
    return AccessQuery(require_set=("datestamp", "referent_id"), order=("datestamp", "id"))


def next_delay(outcome: BackfillOutcome) -> timedelta:
    if outcome is BackfillOutcome.SENT:
        return SENT_DELAY
    if outcome is BackfillOutcome.UP_TO_DATE:
        return UP_TO_DATE_DELAY
    return FAILURE_DELAY


class BackfillScheduler:
    """Runs one step of the backfill sweep per job invocation."""

    def __init__(
        self,
        config: OAPingConfig,
        accesses: AccessStore,
        stash: StashStore,
        transmitter: Transmitter,
        scheduler: JobScheduler,
        state_store: BackfillStateStore | None = None,
    ) -> None:
        self.config = config
        self.accesses = accesses
        self.stash = stash
        self.transmitter = transmitter
        self.scheduler = scheduler
        self.state_store = state_store or BackfillStateStore(config.backfill_state_path)

    async def _step(self, state: BackfillState, offset: int) -> tuple[BackfillOutcome, int]:
        """Send stashed accesses if there are any, else the next backlog batch.

        Returns the outcome and the offset after this step.
        """
        try:
            stashed = await unstash(self.stash, self.accesses, ACTION)
        except StashError as e:
            log.error(str(e), extra={"offset": offset})
            state.message = str(e)
            return BackfillOutcome.ERRORED, offset

        if stashed:
            result = await self.transmitter.send_batch(stashed, is_recovery=True)
            state.message = result.message
            return (BackfillOutcome.SENT if result.ok else BackfillOutcome.ERRORED), offset

        page = await self.accesses.search(
            backlog_query(), offset=offset, limit=self.config.batch_size
        )
        state.total = page.total
        if page.total <= offset or not page.items:
            state.message = UP_TO_DATE
            return BackfillOutcome.UP_TO_DATE, offset

        batch: list[tuple[Access, str | None]] = []
        for access in page.items:
            offset += 1
            batch.append((access, None))
            state.last_event_id = max(state.last_event_id or 0, access.id)
        state.offset = offset

        result = await self.transmitter.send_batch(batch)
        state.message = result.message
        return (BackfillOutcome.SENT if result.ok else BackfillOutcome.ERRORED), offset

    async def run(self, offset: int, message: str | None = None) -> JobStatus:
        """Send the next batch of the backlog and respawn.

        Args:
            offset: Number of backlog accesses to skip. Must match the
                recorded offset, if any.
            message: Outcome of the previous run; informational only.
        """
        try:
            state = self.state_store.load() or BackfillState()
        except BackfillStateError as e:
            log.error(str(e), extra={"offset": offset})
            return JobStatus.ERROR

        if state.offset is not None and state.offset != offset:
            error = ConsistencyError(expected=state.offset, found=offset)
            log.error(str(error), extra={"offset": offset})
            return JobStatus.ERROR

        state.last_run = datetime.now(UTC)
        outcome, offset = await self._step(state, offset)
        if state.last_event_id is None:
            # Nothing taken from the backlog yet: live mode starts from the first access
            state.last_event_id = 0

        if outcome is BackfillOutcome.SENT:
            state.tries_since_success = 0
        elif outcome is BackfillOutcome.ERRORED:
            state.tries_since_success += 1

        start_time = state.last_run + next_delay(outcome)

        try:
            self.state_store.save(state)
        except BackfillStateError as e:
            log.error(str(e), extra={"offset": offset})
            return JobStatus.ERROR

        if state.tries_since_success > MAX_TRIES_SINCE_SUCCESS:
            log.error(
                f"No success in {state.tries_since_success} tries, giving up",
                extra={"offset": offset},
            )
            return JobStatus.ERROR

        await self.scheduler.schedule_job(ACTION, start_time, [offset, state.message])
        log.info(
            state.message,
            extra={"offset": offset, "status": outcome.value},
        )
        return JobStatus.OK
