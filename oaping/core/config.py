"""Configuration for OAPing components."""

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

DEFAULT_TRACKER = "https://analytics.openaire.eu/piwik.php"

# Maximum number of accesses in one bulk request
DEFAULT_BATCH_SIZE = 100

STASH_DIR = "oaping"
BACKFILL_STATE_FILE = "oaping-legacy.json"
AUDIT_LOG_FILE = "oaping-error.jsonl"


class DeliveryPolicyName(Enum):
    """How live accesses are delivered.

    CHECK_THEN_SEND: Drain the stash first and send everything as a batch.
    SEND_THEN_RETRY: Ping immediately and schedule a retry job on failure.
    """

    CHECK_THEN_SEND = "check_then_send"
    SEND_THEN_RETRY = "send_then_retry"


class OAPingConfig(BaseModel):
    """Explicit configuration handed to every component at construction.

    Attributes:
        tracker: Tracking API endpoint of the collector.
        idsite: Site identifier issued by the collector.
        token_auth: Authorization token, or None if not configured.
        verbosity: Log each access that is successfully tracked.
        batch_size: Maximum number of accesses in one bulk request.
        live_notification: Create a notify job for every new access.
        delivery_policy: Strategy for live notification.
        variables_path: Directory for the stash, backfill state and audit log.
        timeout: Seconds to wait for the tracker before giving up.
        base_url: Repository base URL, used to synthesise request URLs.
        archive_id: OAI archive identifier (defaults to the base URL host).
        referrer_max_length: Referrers are truncated to this many characters.
        retry_delay: Seconds before a retry job under SEND_THEN_RETRY.
    """

    tracker: str = DEFAULT_TRACKER
    idsite: str
    token_auth: str | None = None
    verbosity: bool = False
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    live_notification: bool = False
    delivery_policy: DeliveryPolicyName = DeliveryPolicyName.CHECK_THEN_SEND
    variables_path: Path
    timeout: float = Field(default=30.0, gt=0)
    base_url: str
    archive_id: str | None = None
    referrer_max_length: int = Field(default=1024, gt=0)
    retry_delay: int = Field(default=60 * 60, ge=0)

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("idsite", "tracker", "base_url")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("token_auth")
    @classmethod
    def validate_token_auth(cls, v: str | None) -> str | None:
        """Treat a blank token as not configured."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "OAPingConfig":
        """Validate a plain mapping, e.g. one parsed by the host from its config files."""
        return cls.model_validate(dict(mapping))

    @property
    def oai_archive_id(self) -> str:
        return self.archive_id or urlparse(self.base_url).hostname or self.base_url

    @property
    def stash_dir(self) -> Path:
        return self.variables_path / STASH_DIR

    @property
    def backfill_state_path(self) -> Path:
        return self.variables_path / BACKFILL_STATE_FILE

    @property
    def audit_log_path(self) -> Path:
        return self.variables_path / AUDIT_LOG_FILE
