"""Nesting of flat entity lists into the campaign tree.

Campaigns hold their placement groups and the placements outside any group,
groups hold their placements, placements hold the ads assigned to them and
each ad lists its creative assignments under ``creatives``, every assignment
carrying its resolved ``creative`` and ``landingPage``.
"""

import copy
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from .id_store import normalize_id
from .loaders.jobs import Job

logger = logging.getLogger(__name__)

Entity = dict[str, Any]


@dataclass
class HierarchyResult:
    """The tree plus the children whose parent was not in the input."""

    hierarchy: list[Entity] = field(default_factory=list)
    orphans: list[dict[str, Any]] = field(default_factory=list)

    @property
    def has_orphans(self) -> bool:
        return bool(self.orphans)


def _key(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return normalize_id(value)


def _index(items: list[Entity]) -> dict[str, Entity]:
    return {_key(item.get("id")): item for item in items if _key(item.get("id")) is not None}


def build_hierarchy(
    campaigns: list[Entity],
    placement_groups: list[Entity] | None = None,
    placements: list[Entity] | None = None,
    ads: list[Entity] | None = None,
    creatives: list[Entity] | None = None,
    landing_pages: list[Entity] | None = None,
    job: Job | None = None,
) -> HierarchyResult:
    """
    Build the campaign tree from flat entity lists.

    Inputs are copied, never mutated.  A child whose parent is missing is left
    out of the tree, logged as a warning and listed in ``orphans``.

    Args:
        campaigns: Campaign entities, one tree root each
        placement_groups: Placement groups, nested under ``campaignId``
        placements: Placements, nested under ``placementGroupId`` when that
            group is in the tree, else under ``campaignId``
        ads: Ads, nested under every placement in ``placementAssignments``
        creatives: Creatives resolved for each creative assignment
        landing_pages: Landing pages resolved for each creative assignment
        job: Job whose log receives the progress and orphan messages
    """
    result = HierarchyResult()

    def orphan(kind: str, item: Entity, parent_kind: str, parent_id: Any) -> None:
        message = f"{kind} {item.get('id')} skipped: {parent_kind} {parent_id} not found"
        logger.warning(message)
        if job is not None:
            job.log(message)
        result.orphans.append(
            {"entity": kind, "id": item.get("id"), "parent": parent_kind, "parent_id": parent_id}
        )

    if job is not None:
        job.log("Building CM entity hierarchy")

    creatives_by_id = _index(copy.deepcopy(creatives or []))
    landing_pages_by_id = _index(copy.deepcopy(landing_pages or []))

    campaigns_by_id: dict[str, Entity] = {}
    for campaign in copy.deepcopy(campaigns):
        campaign["placements"] = []
        campaign["placementGroups"] = []
        result.hierarchy.append(campaign)
        if _key(campaign.get("id")) is not None:
            campaigns_by_id[_key(campaign.get("id"))] = campaign

    groups_by_id: dict[str, Entity] = {}
    for group in copy.deepcopy(placement_groups or []):
        group["placements"] = []
        parent = campaigns_by_id.get(_key(group.get("campaignId")))
        if parent is not None:
            parent["placementGroups"].append(group)
            groups_by_id[_key(group.get("id"))] = group
        else:
            orphan("Placement Group", group, "Campaign", group.get("campaignId"))

    placements_by_id: dict[str, Entity] = {}
    for placement in copy.deepcopy(placements or []):
        placement["ads"] = []
        group = groups_by_id.get(_key(placement.get("placementGroupId")))
        campaign = campaigns_by_id.get(_key(placement.get("campaignId")))
        if group is not None:
            group["placements"].append(placement)
            placements_by_id[_key(placement.get("id"))] = placement
        elif campaign is not None:
            campaign["placements"].append(placement)
            placements_by_id[_key(placement.get("id"))] = placement
        else:
            orphan("Placement", placement, "Campaign", placement.get("campaignId"))

    for ad in copy.deepcopy(ads or []):
        campaign = campaigns_by_id.get(_key(ad.get("campaignId")))

        ad["creatives"] = []
        rotation = ad.get("creativeRotation") or {}
        for assignment in rotation.get("creativeAssignments") or []:
            assignment["creative"] = creatives_by_id.get(_key(assignment.get("creativeId")))

            click_through = assignment.get("clickThroughUrl") or {}
            if click_through.get("defaultLandingPage"):
                landing_page_id = campaign.get("defaultLandingPageId") if campaign else None
            else:
                landing_page_id = click_through.get("landingPageId")
            assignment["landingPage"] = landing_pages_by_id.get(_key(landing_page_id))

            ad["creatives"].append(assignment)

        assigned = False
        for assignment in ad.get("placementAssignments") or []:
            placement = placements_by_id.get(_key(assignment.get("placementId")))
            if placement is not None:
                placement["ads"].append(ad)
                assigned = True
        if not assigned:
            placement_ids = [a.get("placementId") for a in ad.get("placementAssignments") or []]
            orphan("Ad", ad, "Placement", ", ".join(str(i) for i in placement_ids) or None)

    logger.debug(
        f"Hierarchy: {len(result.hierarchy)} campaigns, {len(result.orphans)} orphaned entities"
    )
    return result


def iter_ads(
    hierarchy: list[Entity],
) -> Iterator[tuple[Entity, Entity | None, Entity, Entity]]:
    """Yield ``(campaign, placement_group | None, placement, ad)`` for every placed ad."""
    for campaign in hierarchy:
        for group in campaign.get("placementGroups") or []:
            for placement in group.get("placements") or []:
                for ad in placement.get("ads") or []:
                    yield campaign, group, placement, ad
        for placement in campaign.get("placements") or []:
            for ad in placement.get("ads") or []:
                yield campaign, None, placement, ad


def iter_ad_creative_assignments(
    hierarchy: list[Entity],
) -> Iterator[tuple[Entity, Entity | None, Entity, Entity, Entity | None]]:
    """
    Yield ``(campaign, placement_group | None, placement, ad, assignment)``
    for every creative assignment; ads without creatives yield once with
    ``None``.
    """
    for campaign, group, placement, ad in iter_ads(hierarchy):
        assignments = ad.get("creatives") or []
        if not assignments:
            yield campaign, group, placement, ad, None
        for assignment in assignments:
            yield campaign, group, placement, ad, assignment
