"""Entity loaders: the generic load/push flow and the per-kind strategies."""

from .base import (
    ChildRelationship,
    EntityLoader,
    EntityReference,
    EntityStrategy,
)
from .context import LoaderContext
from .jobs import CascadeFilters, Job, PreFetchConfig, PushJob, PushState
from .registry import LOAD_ORDER, PUSH_ORDER, LoaderRegistry, build_registry

__all__ = [
    "CascadeFilters",
    "ChildRelationship",
    "EntityLoader",
    "EntityReference",
    "EntityStrategy",
    "Job",
    "LOAD_ORDER",
    "LoaderContext",
    "LoaderRegistry",
    "PUSH_ORDER",
    "PreFetchConfig",
    "PushJob",
    "PushState",
    "build_registry",
]
