"""Core components for OAPing usage tracking.

This module exposes the primary types and components:

Models:
    Access: Immutable record of one access to the repository.
    StashEntry: An access awaiting delivery, with its request URL.
    OAPingConfig: Explicit configuration passed to every component.

Components:
    Transmitter: Sends single and bulk requests to the tracker.
    DeliveryCoordinator: Handles live notify jobs, with two policies.
    GapReconciler: Fills the gap between the backfill sweep and live mode.
    BackfillScheduler: Sweeps the historical backlog in batches.
    JobRunner: Binds job actions to the components above.

Outcomes:
    JobStatus: OK/ERROR status reported back to the host's job queue.
    DeliveryResult: What a single transmission sent and stashed.
"""

from oaping.core.access import Access, StashEntry
from oaping.core.audit import AuditRecord, FileAuditLog, InMemoryAuditLog
from oaping.core.backfill import BackfillScheduler, BackfillState, BackfillStateStore
from oaping.core.config import DeliveryPolicyName, OAPingConfig
from oaping.core.coordinator import CheckThenSend, DeliveryCoordinator, SendThenRetry
from oaping.core.errors import (
    BackfillStateError,
    ConfigurationError,
    ConsistencyError,
    OAPingError,
    StashError,
    TransportError,
)
from oaping.core.form import FormBuilder, NullUrlResolver
from oaping.core.jobs import JobParamsError, JobRunner, JobStats, access_created, build_runner
from oaping.core.reconciler import GapReconciler
from oaping.core.status import JobStatus
from oaping.core.transmitter import DeliveryResult, Transmitter

__all__ = [
    "Access",
    "StashEntry",
    "OAPingConfig",
    "DeliveryPolicyName",
    "AuditRecord",
    "FileAuditLog",
    "InMemoryAuditLog",
    "FormBuilder",
    "NullUrlResolver",
    "Transmitter",
    "DeliveryResult",
    "DeliveryCoordinator",
    "CheckThenSend",
    "SendThenRetry",
    "GapReconciler",
    "BackfillScheduler",
    "BackfillState",
    "BackfillStateStore",
    "JobRunner",
    "JobStats",
    "JobParamsError",
    "JobStatus",
    "access_created",
    "build_runner",
    "OAPingError",
    "ConfigurationError",
    "TransportError",
    "StashError",
    "BackfillStateError",
    "ConsistencyError",
]
