"""Stores and scheduler implementations."""

from oaping.backends.base import AccessPage, AccessQuery, AccessStore, JobScheduler, StashStore
from oaping.backends.filesystem import FileStashStore
from oaping.backends.inmemory import (
    InMemoryAccessStore,
    InMemoryJobScheduler,
    InMemoryStashStore,
    ScheduledJob,
)
from oaping.backends.redis_backend import RedisStashStore

__all__ = [
    "AccessPage",
    "AccessQuery",
    "AccessStore",
    "JobScheduler",
    "StashStore",
    "FileStashStore",
    "InMemoryAccessStore",
    "InMemoryJobScheduler",
    "InMemoryStashStore",
    "RedisStashStore",
    "ScheduledJob",
]
