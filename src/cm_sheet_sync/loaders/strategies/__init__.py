"""Entity strategies, one per table kind."""

from .ads import (
    AdCreativeAssignmentStrategy,
    AdEventTagAssignmentStrategy,
    AdPlacementAssignmentStrategy,
    AdStrategy,
    CreativeStrategy,
)
from .campaigns import CampaignStrategy, EventTagStrategy, LandingPageStrategy
from .placements import PlacementGroupStrategy, PlacementStrategy, PricingScheduleStrategy

__all__ = [
    "AdCreativeAssignmentStrategy",
    "AdEventTagAssignmentStrategy",
    "AdPlacementAssignmentStrategy",
    "AdStrategy",
    "CampaignStrategy",
    "CreativeStrategy",
    "EventTagStrategy",
    "LandingPageStrategy",
    "PlacementGroupStrategy",
    "PlacementStrategy",
    "PricingScheduleStrategy",
]
