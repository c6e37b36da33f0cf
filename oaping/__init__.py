"""OAPing - Usage tracking delivery from a repository access log to a Matomo tracker."""

# Core loads first: backends depend on its models
from oaping.core import (
    Access,
    BackfillScheduler,
    ConsistencyError,
    DeliveryCoordinator,
    DeliveryPolicyName,
    DeliveryResult,
    GapReconciler,
    JobRunner,
    JobStatus,
    OAPingConfig,
    OAPingError,
    StashEntry,
    StashError,
    Transmitter,
    access_created,
    build_runner,
)
from oaping.backends import FileStashStore, InMemoryStashStore, RedisStashStore

__version__ = "1.0.0"

__all__ = [
    # Core
    "Access",
    "StashEntry",
    "OAPingConfig",
    "DeliveryPolicyName",
    # Components
    "Transmitter",
    "DeliveryResult",
    "DeliveryCoordinator",
    "GapReconciler",
    "BackfillScheduler",
    "JobRunner",
    "JobStatus",
    "access_created",
    "build_runner",
    # Errors
    "OAPingError",
    "StashError",
    "ConsistencyError",
    # Stash stores
    "FileStashStore",
    "InMemoryStashStore",
    "RedisStashStore",
    # Meta
    "__version__",
]
