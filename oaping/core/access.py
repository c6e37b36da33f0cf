"""Access model for OAPing."""

import re

from pydantic import BaseModel, Field, field_validator

# EPrints datestamps: "YYYY-MM-DD HH:MM:SS" (time part optional)
_DATESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}( \d{2}:\d{2}:\d{2})?$")


class Access(BaseModel):
    """Immutable record of one access to the repository.

    Accesses are owned by the host repository's access dataset. OAPing only
    reads them by identifier and holds them for the length of one delivery
    attempt.

    Attributes:
        id: Monotonically assigned access identifier.
        datestamp: When the access happened; required for authenticated,
            dated tracking.
        referent_id: Identifier of the record that was accessed.
        referent_docid: Identifier of the document (file) that was accessed.
        service_type_id: COUNTER service type, "?fulltext=yes" for downloads.
        referring_entity_id: HTTP referrer.
        requester_id: Client IP address.
        requester_user_agent: Client user agent.
    """

    id: int = Field(gt=0)
    datestamp: str | None = None
    referent_id: int | None = None
    referent_docid: int | None = None
    service_type_id: str | None = None
    referring_entity_id: str | None = None
    requester_id: str | None = None
    requester_user_agent: str | None = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("datestamp")
    @classmethod
    def validate_datestamp(cls, v: str | None) -> str | None:
        """Ensure datestamp, when set, sorts chronologically as a string."""
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if not _DATESTAMP_PATTERN.match(v):
            raise ValueError(f"datestamp must look like 'YYYY-MM-DD HH:MM:SS', got: {v!r}")
        return v

    @property
    def is_request(self) -> bool:
        """True when the access counts as a COUNTER Request (a download)."""
        return self.service_type_id == "?fulltext=yes"


class StashEntry(BaseModel):
    """An access awaiting delivery, keyed uniquely by access id.

    The URL is empty when none was known at the time of the access; a URL
    is then derived again at send time.
    """

    access_id: int = Field(gt=0)
    url: str = ""

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("url", mode="before")
    @classmethod
    def validate_url(cls, v: str | None) -> str:
        """Store a missing URL as an empty string, trimmed of whitespace."""
        if v is None:
            return ""
        return v.strip()

    @classmethod
    def for_access(cls, access: Access, url: str | None = None) -> "StashEntry":
        return cls(access_id=access.id, url=url)
