"""Gap reconciler: hands over from the backfill sweep to live notification.

Between the last access the sweep sent and the first access to trigger a
live notify job, more accesses may have been logged. The reconciler finds
them so the live job can send them along with its own.
"""

import logging

from oaping.backends.base import AccessQuery, AccessStore
from oaping.core.access import Access
from oaping.core.backfill import BackfillStateStore
from oaping.core.errors import BackfillStateError

logger = logging.getLogger("oaping.reconciler")


class GapReconciler:
    """Finds accesses missed while switching from backfill to live mode."""

    def __init__(self, accesses: AccessStore, state_store: BackfillStateStore) -> None:
        self.accesses = accesses
        self.state_store = state_store

    def has_marker(self) -> bool:
        """True if a backfill sweep has left its state behind."""
        return self.state_store.exists()

    async def reconcile(self, last_seen_id: int, triggering_id: int) -> list[Access]:
        """Load reportable accesses strictly between the two ids.

        Results are ordered by datestamp, then id.
        """
        first, last = last_seen_id + 1, triggering_id - 1
        if first > last:
            return []

        query = AccessQuery(
            require_set=("datestamp", "referent_id"),
            id_range=(first, last),
            order=("datestamp", "id"),
        )
        page = await self.accesses.search(query)
        logger.info(f"Loading {page.total} access records between {first} and {last}")
        return page.items

    async def absorb(self, triggering: Access) -> list[Access]:
        """Consume the backfill marker and return the accesses it missed.

        The marker is retired once the gap has been loaded, so this happens
        at most once per transition.

        Raises:
            BackfillStateError: If the marker cannot be read, has no last
                access id, or cannot be retired.
        """
        state = self.state_store.load()
        if state is None:
            raise BackfillStateError(f"{self.state_store.path} disappeared")
        if state.last_event_id is None:
            raise BackfillStateError(
                f"Last legacy accessid not found in {self.state_store.path}"
            )

        missed = await self.reconcile(state.last_event_id, triggering.id)
        self.state_store.retire()
        return missed
