"""Job status codes reported back to the host's job queue."""

from enum import IntEnum


class JobStatus(IntEnum):
    """Outcome of a job, in the host's HTTP-style status convention.

    OK: The job did its work; any respawn has been scheduled.
    ERROR: The job failed. Transmission failures have been stashed; for the
        backfill sweep it also means no further run has been scheduled.
    """

    OK = 200
    ERROR = 500
