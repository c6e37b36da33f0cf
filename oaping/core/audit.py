"""Append-only audit log of delivery outcomes.

Records when calls to the tracker fail, and when earlier failures are
resolved. Nothing reads it back programmatically; it exists for operators.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from oaping.core.access import StashEntry

logger = logging.getLogger("oaping.audit")


class AuditRecord(BaseModel):
    """One audit log entry.

    Attributes:
        time: When the entry was recorded (UTC).
        message: Summary of what happened.
        response: Body of the tracker's error response, if any.
        sent: Accesses delivered by a recovery batch.
        stashed: Accesses saved for a later attempt.
    """

    time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    message: str
    response: str | None = None
    sent: list[StashEntry] | None = None
    stashed: list[StashEntry] | None = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }


class AuditLog(Protocol):
    async def record(
        self,
        message: str,
        sent: list[StashEntry] | None = None,
        stashed: list[StashEntry] | None = None,
        response: str | None = None,
    ) -> bool:
        """Append one entry. Returns False if it could not be written."""
        ...


class FileAuditLog:
    """Audit log appending one JSON object per line to a file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def record(
        self,
        message: str,
        sent: list[StashEntry] | None = None,
        stashed: list[StashEntry] | None = None,
        response: str | None = None,
    ) -> bool:
        entry = AuditRecord(message=message, sent=sent, stashed=stashed, response=response)
        line = entry.model_dump_json()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            # The entry still reaches the process log
            logger.error(f"Could not write audit log entry: {line}: {e}")
            return False
        return True


class InMemoryAuditLog:
    """Audit log keeping entries in a list."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def record(
        self,
        message: str,
        sent: list[StashEntry] | None = None,
        stashed: list[StashEntry] | None = None,
        response: str | None = None,
    ) -> bool:
        self.records.append(
            AuditRecord(message=message, sent=sent, stashed=stashed, response=response)
        )
        return True

    def __len__(self) -> int:
        return len(self.records)
