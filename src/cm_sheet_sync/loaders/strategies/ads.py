"""Creatives, ads and the ad assignment tables."""

import logging
from typing import Any

from ... import fields as f
from ...errors import ConfigurationError, EntityNotFoundError, RowValidationError
from ...id_store import normalize_id
from ..base import ChildRelationship, EntityReference, EntityStrategy, add_parent_ids
from ..context import LoaderContext
from ..jobs import Job, PreFetchConfig, PushJob
from ..values import (
    ROTATION_SETTINGS,
    display_timestamp,
    format_datetime,
    is_true,
    rotation_label,
)

logger = logging.getLogger(__name__)

DEFAULT_AD_TYPE = "AD_SERVING_DEFAULT_AD"
DEFAULT_ROTATION = "EVEN"


def _get_required(ctx: LoaderContext, entity: str, entity_id: Any) -> dict[str, Any]:
    item = ctx.remote.get(entity, entity_id)
    if not item:
        raise EntityNotFoundError(entity, entity_id)
    return item


class CreativeStrategy(EntityStrategy):
    """Creatives, associated with their campaign when pushed."""

    label = "Creative"
    entity = "Creatives"
    remote_type = "Creatives"
    list_field = "creatives"
    tables = (f.CREATIVE_TABLE,)
    keys = (f.CREATIVE_ID,)
    id_field = f.CREATIVE_ID
    references = (EntityReference(f.CAMPAIGN_TABLE, f.CAMPAIGN_ID),)

    def fetch_items(self, job: Job, ctx: LoaderContext) -> list[dict[str, Any]]:
        by_id: dict[str, dict[str, Any]] = {}

        for creative_id in job.ids_to_load:
            key = normalize_id(creative_id)
            if key not in by_id:
                creative = ctx.remote.get("Creatives", creative_id)
                if creative:
                    by_id[key] = creative

        for campaign_id in job.filters.campaign_ids:
            for creative in ctx.remote.list("Creatives", "creatives", {"campaignId": campaign_id}):
                key = normalize_id(creative.get("id"))
                if key not in by_id:
                    by_id[key] = dict(creative, campaignId=campaign_id)

        return list(by_id.values())

    def map_row(self, creative: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        row: dict[str, Any] = {}

        campaign = ctx.remote.get("Campaigns", creative.get("campaignId"))
        if campaign:
            row[f.ADVERTISER_ID] = campaign.get("advertiserId")
            row[f.CAMPAIGN_ID] = campaign.get("id")
            row[f.CAMPAIGN_NAME] = campaign.get("name")

        row[f.CREATIVE_ID] = creative.get("id")
        row[f.CREATIVE_NAME] = creative.get("name")
        row[f.CREATIVE_TYPE] = "VIDEO" if creative.get("type") == "INSTREAM_VIDEO" else "DISPLAY"
        row[f.ADVERTISER_ID] = creative.get("advertiserId")
        return row

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        name = job.row.get(f.CREATIVE_NAME)
        if name:
            job.remote_object["name"] = name

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        campaign_id = job.row.get(f.CAMPAIGN_ID)
        if not campaign_id:
            return
        campaign = _get_required(ctx, "Campaigns", campaign_id)
        ctx.remote.associate_creative_to_campaign(campaign.get("id"), job.remote_object.get("id"))
        job.row[f.CAMPAIGN_NAME] = campaign.get("name")


class AdStrategy(EntityStrategy):
    """
    Ads, with placement, creative and event tag assignments kept in their
    own tables and attached to the ad row while pushing.
    """

    label = "Ad"
    entity = "Ads"
    remote_type = "Ads"
    list_field = "ads"
    tables = (f.AD_TABLE,)
    keys = (f.AD_ID,)
    id_field = f.AD_ID
    references = (EntityReference(f.CAMPAIGN_TABLE, f.CAMPAIGN_ID),)
    children = (
        ChildRelationship(
            (f.AD_PLACEMENT_ASSIGNMENT_TABLE,), f.PLACEMENT_ASSIGNMENTS_LIST, f.AD_ID
        ),
        ChildRelationship(
            (f.AD_CREATIVE_ASSIGNMENT_TABLE,), f.CREATIVE_ASSIGNMENTS_LIST, f.AD_ID
        ),
        ChildRelationship(
            (f.EVENT_TAG_AD_ASSIGNMENT_TABLE,),
            f.EVENT_TAG_ASSIGNMENTS_LIST,
            f.AD_ID,
            qa_fallback=False,
        ),
    )
    load_pre_fetch = (PreFetchConfig("Campaigns", "campaigns", "ids", "campaignId"),)
    push_pre_fetch = (PreFetchConfig("Campaigns", "campaigns", "ids", f.CAMPAIGN_ID),)

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        result = False
        if job.filters.campaign_ids:
            options["campaignIds"] = list(job.filters.campaign_ids)
            result = True
        if job.filters.placement_ids:
            options["placementIds"] = list(job.filters.placement_ids)
            result = True
        # Narrows but never triggers a fetch on its own
        if job.filters.active_only:
            options["active"] = True
        return result

    def map_row(self, ad: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        campaign = ctx.remote.get("Campaigns", ad.get("campaignId")) or {}
        schedule = ad.get("deliverySchedule")

        row: dict[str, Any] = {
            f.CAMPAIGN_ID: campaign.get("id", ad.get("campaignId")),
            f.CAMPAIGN_NAME: campaign.get("name"),
            f.AD_ACTIVE: ad.get("active"),
            f.CREATIVE_ROTATION: rotation_label(ad.get("creativeRotation")),
            f.AD_ARCHIVED: ad.get("archived"),
            f.AD_PRIORITY: schedule.get("priority") if schedule else None,
            f.AD_ID: ad.get("id"),
            f.AD_NAME: ad.get("name"),
            f.AD_START_DATE: display_timestamp(ad.get("startTime")),
            f.AD_END_DATE: display_timestamp(ad.get("endTime")),
            f.AD_TYPE: ad.get("type"),
        }
        if schedule:
            row[f.HARD_CUTOFF] = schedule.get("hardCutoff")
        return row

    def pre_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        row = job.row
        row[f.AD_START_DATE] = format_datetime(row.get(f.AD_START_DATE))
        row[f.AD_END_DATE] = format_datetime(row.get(f.AD_END_DATE))

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        ad, row = job.remote_object, job.row

        if f.AD_ACTIVE in row:
            ad["active"] = is_true(row.get(f.AD_ACTIVE))
        ad["campaignId"] = row.get(f.CAMPAIGN_ID)
        ad["archived"] = is_true(row.get(f.AD_ARCHIVED))
        ad["startTime"] = row.get(f.AD_START_DATE)
        ad["endTime"] = row.get(f.AD_END_DATE)
        ad["name"] = row.get(f.AD_NAME)
        ad["type"] = row.get(f.AD_TYPE)

        if ad["type"] != DEFAULT_AD_TYPE:
            schedule = ad.get("deliverySchedule")
            if not schedule:
                schedule = ad["deliverySchedule"] = {"impressionRatio": 1}
            schedule["priority"] = row.get(f.AD_PRIORITY)
            hard_cutoff = row.get(f.HARD_CUTOFF)
            if hard_cutoff is not None and hard_cutoff != "":
                schedule["hardCutoff"] = is_true(hard_cutoff)

        self._process_rotation(job)
        self._process_creative_assignments(job, ctx)
        self._process_placement_assignments(job, ctx)
        self._process_event_tag_assignments(job, ctx)

    def _process_rotation(self, job: PushJob) -> None:
        option = str(job.row.get(f.CREATIVE_ROTATION) or DEFAULT_ROTATION).strip().upper()
        if option not in ROTATION_SETTINGS:
            raise RowValidationError(
                f"{option} is not a valid {f.CREATIVE_ROTATION}", f.CREATIVE_ROTATION, option
            )
        rotation_type, weight_strategy = ROTATION_SETTINGS[option]
        job.remote_object["creativeRotation"] = {
            "type": rotation_type,
            "weightCalculationStrategy": weight_strategy,
        }

    def _process_creative_assignments(self, job: PushJob, ctx: LoaderContext) -> None:
        rows = job.row.get(f.CREATIVE_ASSIGNMENTS_LIST)
        if rows is None:
            return

        assignments = []
        for child in rows:
            if not child.get(f.CREATIVE_ID):
                continue
            child[f.CREATIVE_ID] = ctx.translate_id(f.CREATIVE_TABLE, child[f.CREATIVE_ID], job)
            child[f.ASSIGNMENT_START_DATE] = format_datetime(child.get(f.ASSIGNMENT_START_DATE))
            child[f.ASSIGNMENT_END_DATE] = format_datetime(child.get(f.ASSIGNMENT_END_DATE))

            assignment: dict[str, Any] = {
                "active": True,
                "creativeId": child[f.CREATIVE_ID],
                "startTime": child[f.ASSIGNMENT_START_DATE],
                "endTime": child[f.ASSIGNMENT_END_DATE],
            }
            if child.get(f.CREATIVE_ROTATION_WEIGHT):
                assignment["weight"] = child[f.CREATIVE_ROTATION_WEIGHT]
            if child.get(f.CREATIVE_ROTATION_SEQUENCE):
                assignment["sequence"] = child[f.CREATIVE_ROTATION_SEQUENCE]

            if child.get(f.LANDING_PAGE_ID):
                child[f.LANDING_PAGE_ID] = ctx.translate_id(
                    f.LANDING_PAGE_TABLE, child[f.LANDING_PAGE_ID], job
                )
                click_through = {
                    "defaultLandingPage": False,
                    "landingPageId": child[f.LANDING_PAGE_ID],
                }
            elif child.get(f.CUSTOM_CLICK_THROUGH_URL):
                click_through = {
                    "defaultLandingPage": False,
                    "customClickThroughUrl": child[f.CUSTOM_CLICK_THROUGH_URL],
                }
            else:
                click_through = {"defaultLandingPage": True}
            assignment["clickThroughUrl"] = click_through

            assignments.append(assignment)

        job.remote_object["creativeRotation"]["creativeAssignments"] = assignments

    def _process_placement_assignments(self, job: PushJob, ctx: LoaderContext) -> None:
        rows = job.row.get(f.PLACEMENT_ASSIGNMENTS_LIST)
        if rows is None:
            return

        assignments = []
        for child in rows:
            if not child.get(f.PLACEMENT_ID):
                continue
            placement_id = ctx.translate_id(f.PLACEMENT_TABLE, child[f.PLACEMENT_ID], job)
            placement = _get_required(ctx, "Placements", placement_id)
            child[f.PLACEMENT_ID] = placement.get("id")
            assignments.append({"active": True, "placementId": placement.get("id")})

        job.remote_object["placementAssignments"] = assignments

    def _process_event_tag_assignments(self, job: PushJob, ctx: LoaderContext) -> None:
        overrides = []
        for child in job.row.get(f.EVENT_TAG_ASSIGNMENTS_LIST) or []:
            event_tag_id = ctx.translate_id(f.EVENT_TAG_TABLE, child.get(f.EVENT_TAG_ID), job)
            event_tag = _get_required(ctx, "EventTags", event_tag_id)
            child[f.EVENT_TAG_ID] = event_tag.get("id")
            overrides.append({"enabled": is_true(child.get(f.ENABLED)), "id": event_tag.get("id")})

        job.remote_object["eventTagOverrides"] = overrides

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        ad, row = job.remote_object, job.row

        campaign = ctx.remote.get("Campaigns", ad.get("campaignId"))
        if campaign:
            row[f.CAMPAIGN_NAME] = campaign.get("name")

        for child in row.get(f.CREATIVE_ASSIGNMENTS_LIST) or []:
            creative = ctx.remote.get("Creatives", child.get(f.CREATIVE_ID))
            child[f.AD_ID] = ad.get("id")
            child[f.AD_NAME] = ad.get("name")
            if creative:
                child[f.CREATIVE_NAME] = creative.get("name")
            if child.get(f.LANDING_PAGE_ID):
                landing_page = ctx.remote.get("AdvertiserLandingPages", child[f.LANDING_PAGE_ID])
                if landing_page:
                    child[f.LANDING_PAGE_NAME] = landing_page.get("name")

        for child in row.get(f.PLACEMENT_ASSIGNMENTS_LIST) or []:
            placement = ctx.remote.get("Placements", child.get(f.PLACEMENT_ID))
            if placement:
                child[f.PLACEMENT_ID] = placement.get("id")
                child[f.PLACEMENT_NAME] = placement.get("name")
            child[f.AD_ID] = ad.get("id")
            child[f.AD_NAME] = ad.get("name")

        for child in row.get(f.EVENT_TAG_ASSIGNMENTS_LIST) or []:
            event_tag = ctx.remote.get("EventTags", child.get(f.EVENT_TAG_ID))
            if event_tag:
                child[f.EVENT_TAG_ID] = event_tag.get("id")
                child[f.EVENT_TAG_NAME] = event_tag.get("name")
            child[f.AD_ID] = ad.get("id")
            child[f.AD_NAME] = ad.get("name")


class AdPlacementAssignmentStrategy(EntityStrategy):
    """Load-only: one row per placement an ad is assigned to."""

    label = "Ad Placement Assignment"
    entity = "AdPlacementAssignment"
    remote_type = "Ads"
    list_field = "ads"
    tables = (f.AD_PLACEMENT_ASSIGNMENT_TABLE,)
    keys = (f.AD_ID, f.PLACEMENT_ID)
    id_field = f.AD_ID

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        return add_parent_ids(options, job.filters.ad_ids)

    def map_row(self, ad: dict[str, Any], ctx: LoaderContext) -> list[dict[str, Any]] | None:
        assignments = ad.get("placementAssignments")
        if assignments is None:
            return None

        rows = []
        for assignment in assignments:
            placement = ctx.remote.get("Placements", assignment.get("placementId")) or {}
            rows.append(
                {
                    f.AD_ID: ad.get("id"),
                    f.AD_NAME: ad.get("name"),
                    f.PLACEMENT_ID: placement.get("id", assignment.get("placementId")),
                    f.PLACEMENT_NAME: placement.get("name"),
                }
            )
        return rows

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        raise ConfigurationError(f"{self.label} rows are pushed with their {f.AD_TABLE}")


class AdCreativeAssignmentStrategy(EntityStrategy):
    """Load-only: one row per creative in an ad's rotation."""

    label = "Ad Creative Assignment"
    entity = "AdCreativeAssignment"
    remote_type = "Ads"
    list_field = "ads"
    tables = (f.AD_CREATIVE_ASSIGNMENT_TABLE,)
    keys = (f.AD_ID, f.CREATIVE_ID)
    id_field = f.AD_ID

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        return add_parent_ids(options, job.filters.ad_ids)

    def map_row(self, ad: dict[str, Any], ctx: LoaderContext) -> list[dict[str, Any]] | None:
        assignments = (ad.get("creativeRotation") or {}).get("creativeAssignments")
        if not assignments:
            return None

        rows = []
        for assignment in assignments:
            creative = ctx.remote.get("Creatives", assignment.get("creativeId")) or {}
            click_through = assignment.get("clickThroughUrl") or {}
            row = {
                f.AD_ID: ad.get("id"),
                f.AD_NAME: ad.get("name"),
                f.CREATIVE_ID: creative.get("id", assignment.get("creativeId")),
                f.CREATIVE_NAME: creative.get("name"),
                f.CREATIVE_ROTATION_WEIGHT: assignment.get("weight"),
                f.CREATIVE_ROTATION_SEQUENCE: assignment.get("sequence"),
                f.LANDING_PAGE_ID: click_through.get("landingPageId"),
                f.CUSTOM_CLICK_THROUGH_URL: click_through.get("customClickThroughUrl"),
            }
            if assignment.get("startTime"):
                row[f.ASSIGNMENT_START_DATE] = display_timestamp(assignment["startTime"])
            if assignment.get("endTime"):
                row[f.ASSIGNMENT_END_DATE] = display_timestamp(assignment["endTime"])
            rows.append(row)
        return rows

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        raise ConfigurationError(f"{self.label} rows are pushed with their {f.AD_TABLE}")


class AdEventTagAssignmentStrategy(EntityStrategy):
    """Load-only: one row per event tag override of an ad."""

    label = "Ad Event Tag Assignment"
    entity = "AdEventTagAssignment"
    remote_type = "Ads"
    list_field = "ads"
    tables = (f.EVENT_TAG_AD_ASSIGNMENT_TABLE,)
    qa_fallback = False
    id_field = f.AD_ID

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        return add_parent_ids(options, job.filters.ad_ids)

    def map_row(self, ad: dict[str, Any], ctx: LoaderContext) -> list[dict[str, Any]] | None:
        overrides = ad.get("eventTagOverrides")
        if not overrides:
            return None

        rows = []
        for override in overrides:
            event_tag = ctx.remote.get("EventTags", override.get("id")) or {}
            rows.append(
                {
                    f.EVENT_TAG_ID: event_tag.get("id", override.get("id")),
                    f.EVENT_TAG_NAME: event_tag.get("name"),
                    f.AD_ID: ad.get("id"),
                    f.AD_NAME: ad.get("name"),
                    f.ENABLED: override.get("enabled"),
                }
            )
        return rows

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        raise ConfigurationError(f"{self.label} rows are pushed with their {f.AD_TABLE}")
