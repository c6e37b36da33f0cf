"""Transmitter: single and bulk requests to the Matomo tracker.

Every access that is not confirmed as delivered is written back to the
stash and listed in the audit log. Transmission problems never raise out
of this module; callers inspect the DeliveryResult instead.

Bulk requests are handled by Matomo's BulkTracking plugin. When it fails
part way through, it reports how many requests it tracked, not which. The
accesses are therefore sent in chronological order and the first
`tracked` of them are taken as delivered. If the tracker ever processed
requests out of submission order, this would stash some accesses that
were in fact tracked (and would be tracked again on retry).
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from oaping.backends.base import StashStore
from oaping.core.access import Access, StashEntry
from oaping.core.audit import AuditLog
from oaping.core.config import OAPingConfig
from oaping.core.errors import ConfigurationError, StashError, TransportError
from oaping.core.form import FormBuilder, TrackingForm

logger = logging.getLogger("oaping.transmitter")

NO_USABLE_EVENTS = "No usable events"
MISSING_TOKEN = "Missing authorization token"
DATED_WITHOUT_TOKEN = "Could not notify of dated access without token_auth"


@dataclass
class DeliveryResult:
    """Outcome of one request to the tracker.

    Attributes:
        message: Summary of how it went, suitable for logs and job params.
        sent: Accesses the tracker accepted, in submission order.
        unsent: Accesses that were not accepted, in submission order.
        error: What went wrong, or None on success.
    """

    message: str
    sent: list[StashEntry] = field(default_factory=list)
    unsent: list[StashEntry] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def sent_count(self) -> int:
        return len(self.sent)


@dataclass
class _Outgoing:
    access: Access
    form: TrackingForm

    @property
    def entry(self) -> StashEntry:
        return StashEntry(access_id=self.access.id, url=self.form["url"])


def _tracked_count(response: httpx.Response, total: int) -> int | None:
    """Parse the number of tracked requests from a BulkTracking error body."""
    try:
        report = response.json()
    except ValueError:
        return None
    if not isinstance(report, dict):
        return None
    tracked = report.get("tracked", 0)
    if isinstance(tracked, bool) or not isinstance(tracked, int):
        return None
    return max(0, min(tracked, total))


class Transmitter:
    """Sends accesses to the tracker, stashing whatever does not get through.

    Args:
        config: OAPing configuration.
        stash: Store for accesses awaiting delivery.
        audit: Log of delivery outcomes.
        forms: Builder for tracking forms. Defaults to one without URL lookup.
        client: HTTP client. Defaults to a new httpx.AsyncClient with the
            configured timeout; the transmitter then owns and closes it.
    """

    def __init__(
        self,
        config: OAPingConfig,
        stash: StashStore,
        audit: AuditLog,
        forms: FormBuilder | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.stash = stash
        self.audit = audit
        self.forms = forms or FormBuilder(config)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout, trust_env=True)

    async def __aenter__(self) -> "Transmitter":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, self.config.tracker, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"Failed to send request: {e}", original=e) from e

    async def stash_entries(self, entries: list[StashEntry]) -> list[StashEntry]:
        """Stash entries one by one, returning those actually stored.

        An entry that cannot be stored is lost to retry, so it is logged
        at CRITICAL level.
        """
        stored: list[StashEntry] = []
        for entry in entries:
            try:
                await self.stash.put(entry)
            except StashError as e:
                logger.critical(
                    str(e),
                    extra={"access_id": entry.access_id, "url": entry.url or "???"},
                )
                continue
            stored.append(entry)
        return stored

    async def _stash_and_audit(
        self,
        message: str,
        entries: list[StashEntry],
        sent: list[StashEntry] | None = None,
        response: str | None = None,
    ) -> None:
        stored = await self.stash_entries(entries)
        if len(stored) < len(entries):
            message = f"{message}; {len(entries) - len(stored)} could not be stashed"
        await self.audit.record(message, sent=sent, stashed=stored or None, response=response)

    def _authenticate(self, form: TrackingForm) -> None:
        """Add the token to a single-request form, or degrade it without one.

        Raises:
            ConfigurationError: If the form is dated and no token is configured.
        """
        if self.config.token_auth is not None:
            form["token_auth"] = self.config.token_auth
            return

        logger.warning("token_auth not configured, pinging without it")
        # Unauthenticated dated accesses would be attributed to now, not then
        if "cdt" in form:
            raise ConfigurationError(DATED_WITHOUT_TOKEN)
        if "cip" in form:
            form["uid"] = form.pop("cip")

    async def send_one(self, access: Access, request_url: str | None = None) -> DeliveryResult:
        """Ping the tracker about one access with a HEAD request.

        Args:
            access: The access to report.
            request_url: URL the access was made against; derived if empty.
        """
        form = await self.forms.build(access, request_url)
        if form is None:
            return DeliveryResult(message=f"Nothing to report for access {access.id}")

        entry = StashEntry(access_id=access.id, url=form["url"])

        # Prevent caching
        form["rand"] = str(random.randint(0, 9999))

        try:
            self._authenticate(form)
        except ConfigurationError as e:
            await self._stash_and_audit(str(e), [entry])
            return DeliveryResult(message=str(e), unsent=[entry], error=str(e))

        error: str | None = None
        body: str | None = None
        try:
            response = await self._request("HEAD", params=form)
        except TransportError as e:
            logger.debug(str(e), extra={"access_id": access.id})
            error = "Failed to send request"
        else:
            if response.status_code > 399:
                error = f"Tracker responded {response.status_code} {response.reason_phrase}"
                body = response.text or None

        if error is not None:
            await self._stash_and_audit(error, [entry], response=body)
            return DeliveryResult(message=error, unsent=[entry], error=error)

        return DeliveryResult(message=f"Sent access {access.id} to tracker", sent=[entry])

    async def send_batch(
        self,
        accesses: list[tuple[Access, str | None]],
        is_recovery: bool = False,
    ) -> DeliveryResult:
        """Register several accesses with one bulk POST request.

        Args:
            accesses: (access, request URL) pairs; URLs may be None or empty.
            is_recovery: Also audit the accesses that were sent, so they can be
                matched against earlier audit entries that stashed them.
        """
        outgoing: list[_Outgoing] = []
        for access, request_url in accesses:
            form = await self.forms.build(access, request_url)
            if form is not None:
                outgoing.append(_Outgoing(access=access, form=form))

        if not outgoing:
            return DeliveryResult(message=NO_USABLE_EVENTS)

        token_auth = self.config.token_auth
        if token_auth is None:
            entries = [o.entry for o in outgoing]
            await self._stash_and_audit(MISSING_TOKEN, entries)
            return DeliveryResult(message=MISSING_TOKEN, unsent=entries, error=MISSING_TOKEN)

        # Already ordered if from a search, but not if rescued from the stash
        outgoing.sort(key=lambda o: o.form.get("cdt", ""))
        entries = [o.entry for o in outgoing]

        # BulkTracking accepts each request as a URL or as a parameter object
        payload = {
            "requests": [o.form for o in outgoing],
            "token_auth": token_auth,
        }

        error: str | None = None
        body: str | None = None
        tracked = len(entries)
        try:
            response = await self._request(
                "POST", json=payload, headers={"Accept": "application/json"}
            )
        except TransportError as e:
            logger.debug(str(e))
            error = "Failed to send request"
            tracked = 0
        else:
            if response.status_code > 399:
                error = f"Tracker responded {response.status_code} {response.reason_phrase}"
                body = response.text
                parsed = _tracked_count(response, len(entries))
                if parsed is None:
                    error += ". Could not parse content of response."
                    tracked = 0
                else:
                    tracked = parsed

        sent = entries[:tracked]
        unsent = entries[tracked:]
        message = f"Sent {len(sent)} events to tracker"
        log_message = error or message

        stored = await self.stash_entries(unsent)
        if len(stored) < len(unsent):
            log_message = f"{log_message}; {len(unsent) - len(stored)} could not be stashed"

        if is_recovery or error is not None:
            await self.audit.record(
                log_message,
                sent=sent if is_recovery else None,
                stashed=stored or None,
                response=body,
            )

        return DeliveryResult(message=log_message, sent=sent, unsent=unsent, error=error)
