"""Conversion of accesses into Matomo Tracking HTTP API query forms.

See https://developer.matomo.org/api-reference/tracking-api for the
meaning of each parameter. The token_auth is not part of the form: single
and bulk requests carry it differently.
"""

import json
from typing import Protocol

from oaping.core.access import Access
from oaping.core.config import OAPingConfig

# COUNTER activity names
INVESTIGATION = "View"
REQUEST = "Download"

# Parameters the tracker only honours from authenticated requests
AUTHENTICATED_PARAMS = ("cip", "cdt")

TrackingForm = dict[str, str]


class UrlResolver(Protocol):
    """Looks up canonical URLs for records and documents in the repository."""

    async def document_url(self, docid: int) -> str | None: ...
    async def eprint_url(self, eprint_id: int) -> str | None: ...


class NullUrlResolver:
    """Resolver that knows no URLs, so every URL is synthesised."""

    async def document_url(self, docid: int) -> str | None:
        return None

    async def eprint_url(self, eprint_id: int) -> str | None:
        return None


def oai_identifier(archive_id: str, eprint_id: int) -> str:
    return f"oai:{archive_id}:{eprint_id}"


class FormBuilder:
    """Builds the tracking form for an access."""

    def __init__(self, config: OAPingConfig, resolver: UrlResolver | None = None) -> None:
        self.config = config
        self.resolver = resolver or NullUrlResolver()

    async def request_url(self, access: Access) -> str | None:
        """Work out a likely request URL for an access with none recorded.

        Returns None if the access refers to neither a record nor a document.
        """
        base_url = self.config.base_url

        if access.is_request and access.referent_docid is not None:
            url = await self.resolver.document_url(access.referent_docid)
            if url:
                return url
            if access.referent_id is not None:
                # Document since deleted: URL only needs to be consistent per file
                return f"{base_url}/{access.referent_id}/{access.referent_docid}"
            return f"{base_url}/id/document/{access.referent_docid}"

        if access.referent_id is not None:
            url = await self.resolver.eprint_url(access.referent_id)
            return url or f"{base_url}/{access.referent_id}"

        return None

    async def build(self, access: Access, request_url: str | None = None) -> TrackingForm | None:
        """Convert an access into a query form.

        Args:
            access: The access to report.
            request_url: URL the access was made against; derived if empty.

        Returns:
            The form, or None if the access has nothing reportable.
        """
        if not request_url:
            request_url = await self.request_url(access)
            if request_url is None:
                return None

        form: TrackingForm = {
            "idsite": self.config.idsite,
            "rec": "1",
            "action_name": REQUEST if access.is_request else INVESTIGATION,
            "url": request_url,
            "apiv": "1",
        }

        if access.referring_entity_id:
            form["urlref"] = access.referring_entity_id[: self.config.referrer_max_length]

        if access.requester_user_agent:
            form["ua"] = access.requester_user_agent

        if access.referent_id is not None:
            oai_id = oai_identifier(self.config.oai_archive_id, access.referent_id)
            form["cvar"] = json.dumps({"1": ["oaipmhID", oai_id]}, separators=(",", ":"))

        if access.is_request:
            form["download"] = request_url

        if access.requester_id:
            form["cip"] = access.requester_id

        if access.datestamp:
            form["cdt"] = access.datestamp

        return form
