"""Lookup of loaders by entity key."""

from collections.abc import Iterator

from ..errors import ConfigurationError
from .base import EntityLoader, EntityStrategy
from .context import LoaderContext
from .strategies import (
    AdCreativeAssignmentStrategy,
    AdEventTagAssignmentStrategy,
    AdPlacementAssignmentStrategy,
    AdStrategy,
    CampaignStrategy,
    CreativeStrategy,
    EventTagStrategy,
    LandingPageStrategy,
    PlacementGroupStrategy,
    PlacementStrategy,
    PricingScheduleStrategy,
)

STRATEGIES: tuple[type[EntityStrategy], ...] = (
    CampaignStrategy,
    LandingPageStrategy,
    EventTagStrategy,
    CreativeStrategy,
    PlacementGroupStrategy,
    PlacementStrategy,
    AdStrategy,
    PricingScheduleStrategy,
    AdCreativeAssignmentStrategy,
    AdPlacementAssignmentStrategy,
    AdEventTagAssignmentStrategy,
)

# Kinds in the order a cascading load walks them
LOAD_ORDER = (
    "Campaigns",
    "AdvertiserLandingPages",
    "EventTags",
    "PlacementGroups",
    "Placements",
    "PlacementPricingSchedule",
    "Creatives",
    "Ads",
    "AdCreativeAssignment",
    "AdPlacementAssignment",
    "AdEventTagAssignment",
)

# Kinds in the order a push walks them, referenced kinds first
PUSH_ORDER = (
    "AdvertiserLandingPages",
    "Campaigns",
    "EventTags",
    "PlacementGroups",
    "Placements",
    "Creatives",
    "Ads",
)


class LoaderRegistry:
    """Loaders keyed by entity, all sharing one :class:`LoaderContext`."""

    def __init__(self, ctx: LoaderContext, loaders: dict[str, EntityLoader] | None = None):
        self.ctx = ctx
        self._loaders: dict[str, EntityLoader] = dict(loaders or {})

    def register(self, strategy: EntityStrategy) -> EntityLoader:
        loader = EntityLoader(strategy, self.ctx)
        self._loaders[strategy.entity] = loader
        return loader

    def get(self, entity: str) -> EntityLoader:
        try:
            return self._loaders[entity]
        except KeyError:
            known = ", ".join(sorted(self._loaders))
            raise ConfigurationError(f"Unknown entity: {entity} (known: {known})") from None

    def __contains__(self, entity: object) -> bool:
        return entity in self._loaders

    def __iter__(self) -> Iterator[str]:
        return iter(self._loaders)

    def entities(self) -> list[str]:
        return list(self._loaders)


def build_registry(ctx: LoaderContext) -> LoaderRegistry:
    """Registry with a loader for every entity kind."""
    registry = LoaderRegistry(ctx)
    for strategy_cls in STRATEGIES:
        registry.register(strategy_cls())
    return registry
