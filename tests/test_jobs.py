"""Tests for the JobRunner, the access trigger and runner wiring."""

import pytest

from oaping.backends.filesystem import FileStashStore
from oaping.core.audit import FileAuditLog
from oaping.core.backfill import ACTION as LEGACY_NOTIFY
from oaping.core.backfill import UP_TO_DATE, BackfillStateStore
from oaping.core.coordinator import NOTIFY, RETRY_STASH
from oaping.core.jobs import JobParamsError, JobRunner, access_created, build_runner
from oaping.core.status import JobStatus
from oaping.core.transmitter import Transmitter
from tests.conftest import make_access, make_config


@pytest.fixture
def runner(config, accesses, scheduler, stash, audit, tracker) -> JobRunner:
    transmitter = Transmitter(config, stash, audit, client=tracker.client())
    return build_runner(
        config, accesses, scheduler, stash=stash, audit=audit, transmitter=transmitter
    )


# =============================================================================
# Dispatch
# =============================================================================


class TestDispatch:
    def test_actions(self, runner):
        assert sorted(runner.actions) == [LEGACY_NOTIFY, NOTIFY, RETRY_STASH]

    async def test_notify(self, runner, accesses, tracker):
        accesses.add(make_access(1))

        status = await runner.run(NOTIFY, [1, "https://repo.example.org/1"])

        assert status is JobStatus.OK
        assert tracker.pings[0].url.params["url"] == "https://repo.example.org/1"

    async def test_notify_accepts_string_id_and_empty_url(self, runner, accesses, tracker):
        accesses.add(make_access(1))

        assert await runner.run(NOTIFY, ["1", ""]) is JobStatus.OK
        assert tracker.pings[0].url.params["url"] == "https://repo.example.org/1001"

    async def test_notify_unknown_access(self, runner, tracker):
        status = await runner.run(NOTIFY, [404, "https://repo.example.org/404"])

        assert status is JobStatus.ERROR
        assert tracker.requests == []
        assert runner.get_stats().unknown_accesses == 1

    async def test_legacy_notify(self, runner, accesses, scheduler):
        accesses.add(make_access(1))

        assert await runner.run(LEGACY_NOTIFY, [0]) is JobStatus.OK
        assert scheduler.jobs[0].params == (1, "Sent 1 events to tracker")

    async def test_retry_stash(self, runner):
        assert await runner.run(RETRY_STASH) is JobStatus.OK

    async def test_unknown_action(self, runner):
        with pytest.raises(JobParamsError, match="Unknown action"):
            await runner.run("ping")

    @pytest.mark.parametrize(
        "action,params",
        [
            (NOTIFY, []),
            (NOTIFY, [1, "u", "extra"]),
            (NOTIFY, ["one"]),
            (NOTIFY, [True]),
            (LEGACY_NOTIFY, []),
            (LEGACY_NOTIFY, [-1]),
            (LEGACY_NOTIFY, [None, "msg"]),
        ],
    )
    async def test_bad_params(self, runner, action, params):
        with pytest.raises(JobParamsError):
            await runner.run(action, params)

    async def test_stats(self, runner, accesses, tracker):
        accesses.add(make_access(1))
        await runner.run(NOTIFY, [1, None])
        tracker.fail_transport()
        await runner.run(NOTIFY, [1, None])

        stats = runner.get_stats()
        assert stats.jobs_run == 2
        assert stats.jobs_succeeded[NOTIFY] == 1
        assert stats.jobs_failed[NOTIFY] == 1

    async def test_stats_copy_is_independent(self, runner):
        stats = runner.get_stats()
        stats.jobs_run = 99
        assert runner.get_stats().jobs_run == 0


# =============================================================================
# Access trigger
# =============================================================================


class TestAccessCreated:
    async def test_disabled_by_default(self, config, scheduler):
        assert not await access_created(config, scheduler, make_access(1), "https://x/1")
        assert len(scheduler) == 0

    async def test_schedules_notify(self, tmp_path, scheduler):
        config = make_config(tmp_path, live_notification=True)

        assert await access_created(config, scheduler, make_access(1), "https://x/1")

        (job,) = scheduler.jobs
        assert job.action == NOTIFY
        assert job.params == (1, "https://x/1")


# =============================================================================
# End to end
# =============================================================================


class TestBuildRunner:
    async def test_file_backed_defaults(self, config, accesses, scheduler):
        runner = build_runner(config, accesses, scheduler)

        assert isinstance(runner.coordinator.stash, FileStashStore)
        assert runner.coordinator.stash.directory == config.variables_path / "oaping"
        assert isinstance(runner.coordinator.audit, FileAuditLog)
        assert runner.backfill.stash is runner.coordinator.stash
        await runner.close()

    async def test_close_releases_owned_client(self, config, accesses, scheduler):
        async with build_runner(config, accesses, scheduler) as runner:
            client = runner.coordinator.transmitter._client
            assert not client.is_closed
        assert client.is_closed

    async def test_close_leaves_injected_client_open(self, runner, tracker):
        await runner.close()
        assert not runner.coordinator.transmitter._client.is_closed

    async def test_sweep_then_live(self, tmp_path, accesses, scheduler, stash, audit, tracker):
        """Backfill to up to date, then hand over to live notification."""
        config = make_config(tmp_path, batch_size=2, live_notification=True)
        transmitter = Transmitter(config, stash, audit, client=tracker.client())
        runner = build_runner(
            config, accesses, scheduler, stash=stash, audit=audit, transmitter=transmitter
        )
        for i in range(1, 4):
            accesses.add(make_access(i))

        await runner.run(LEGACY_NOTIFY, [0])
        job = scheduler.pop()
        await runner.run(job.action, list(job.params))
        job = scheduler.pop()
        assert job.params == (3, "Sent 1 events to tracker")

        # Accesses logged after the sweep's last query
        accesses.add(make_access(4))
        new = make_access(5)
        accesses.add(new)
        assert await access_created(config, scheduler, new, "https://repo.example.org/5")
        job = scheduler.pop()
        assert job.action == NOTIFY

        assert await runner.run(job.action, list(job.params)) is JobStatus.OK

        last = tracker.bulk_payloads[-1]["requests"]
        assert [form["url"] for form in last] == [
            "https://repo.example.org/1004",
            "https://repo.example.org/5",
        ]
        assert not BackfillStateStore(config.backfill_state_path).exists()
        assert len(stash) == 0

    async def test_up_to_date_message(self, runner, scheduler):
        await runner.run(LEGACY_NOTIFY, [0, None])
        assert scheduler.jobs[0].params == (0, UP_TO_DATE)
