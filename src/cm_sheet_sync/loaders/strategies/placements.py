"""Placement groups, placements and placement pricing schedules."""

import logging
import math
from typing import Any

from ... import fields as f
from ...errors import ConfigurationError, RowValidationError
from ..base import ChildRelationship, EntityReference, EntityStrategy, add_parent_ids
from ..context import LoaderContext
from ..jobs import Job, PreFetchConfig, PushJob
from ..values import assign, format_date, is_true

logger = logging.getLogger(__name__)

NANOS = 1_000_000_000

DEFAULT_PRICING_TYPE = "PRICING_TYPE_CPM"
PAYMENT_SOURCE = "PLACEMENT_AGENCY_PAID"

VIDEO_TYPES = ("VIDEO", "IN_STREAM_VIDEO")
VIDEO_TAG_FORMATS = ["PLACEMENT_TAG_INSTREAM_VIDEO_PREFETCH"]
DISPLAY_TAG_FORMATS = [
    "PLACEMENT_TAG_STANDARD",
    "PLACEMENT_TAG_JAVASCRIPT",
    "PLACEMENT_TAG_IFRAME_JAVASCRIPT",
    "PLACEMENT_TAG_IFRAME_ILAYER",
    "PLACEMENT_TAG_INTERNAL_REDIRECT",
    "PLACEMENT_TAG_TRACKING",
    "PLACEMENT_TAG_TRACKING_IFRAME",
    "PLACEMENT_TAG_TRACKING_JAVASCRIPT",
]

# Active View and Verification column values
ACTIVE_VIEW_ON = "ON"
ACTIVE_VIEW_OFF = "OFF"
ACTIVE_VIEW_DEFAULT = "LET_DCM_DECIDE"


def _site_name(ctx: LoaderContext, site_id: Any) -> str | None:
    site = ctx.remote.get("Sites", site_id)
    return site.get("name") if site else None


def _campaign_name(ctx: LoaderContext, campaign_id: Any) -> str | None:
    campaign = ctx.remote.get("Campaigns", campaign_id)
    return campaign.get("name") if campaign else None


class PlacementGroupStrategy(EntityStrategy):
    label = "Placement Group"
    entity = "PlacementGroups"
    remote_type = "PlacementGroups"
    list_field = "placementGroups"
    tables = (f.PLACEMENT_GROUP_TABLE,)
    keys = (f.PLACEMENT_GROUP_ID,)
    id_field = f.PLACEMENT_GROUP_ID
    references = (EntityReference(f.CAMPAIGN_TABLE, f.CAMPAIGN_ID),)
    load_pre_fetch = (PreFetchConfig("Sites", "sites", "ids", "siteId"),)
    push_pre_fetch = (PreFetchConfig("Sites", "sites", "ids", f.SITE_ID),)

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        if job.filters.campaign_ids:
            options["campaignIds"] = list(job.filters.campaign_ids)
            return True
        return False

    def map_row(self, group: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        schedule = group.get("pricingSchedule") or {}
        return {
            f.ADVERTISER_ID: group.get("advertiserId"),
            f.CAMPAIGN_ID: group.get("campaignId"),
            f.CAMPAIGN_NAME: _campaign_name(ctx, group.get("campaignId")),
            f.SITE_ID: group.get("siteId"),
            f.SITE_NAME: _site_name(ctx, group.get("siteId")),
            f.PLACEMENT_GROUP_ID: group.get("id"),
            f.PLACEMENT_GROUP_NAME: group.get("name"),
            f.PLACEMENT_GROUP_TYPE: group.get("placementGroupType"),
            f.PLACEMENT_GROUP_START_DATE: schedule.get("startDate"),
            f.PLACEMENT_GROUP_END_DATE: schedule.get("endDate"),
            f.PLACEMENT_GROUP_PRICING_TYPE: schedule.get("pricingType"),
        }

    def pre_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        row = job.row
        row[f.PLACEMENT_GROUP_START_DATE] = format_date(row.get(f.PLACEMENT_GROUP_START_DATE))
        row[f.PLACEMENT_GROUP_END_DATE] = format_date(row.get(f.PLACEMENT_GROUP_END_DATE))

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        group, row = job.remote_object, job.row
        assign(group, "advertiserId", row, f.ADVERTISER_ID, True)
        assign(group, "campaignId", row, f.CAMPAIGN_ID, True)
        assign(group, "siteId", row, f.SITE_ID, True)
        assign(group, "name", row, f.PLACEMENT_GROUP_NAME, True)
        assign(group, "placementGroupType", row, f.PLACEMENT_GROUP_TYPE, True)

        schedule = group.setdefault("pricingSchedule", {})
        assign(schedule, "startDate", row, f.PLACEMENT_GROUP_START_DATE, True)
        assign(schedule, "endDate", row, f.PLACEMENT_GROUP_END_DATE, True)
        assign(schedule, "pricingType", row, f.PLACEMENT_GROUP_PRICING_TYPE, True)

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        row = job.row
        row[f.CAMPAIGN_NAME] = _campaign_name(ctx, row.get(f.CAMPAIGN_ID))
        row[f.SITE_NAME] = _site_name(ctx, row.get(f.SITE_ID))


def active_view_label(placement: dict[str, Any]) -> str:
    """Collapse the VPAID adapter and opt-out flags into one column value."""
    choice = placement.get("vpaidAdapterChoice")
    opt_out = placement.get("videoActiveViewOptOut")
    if choice == "HTML5" and not opt_out:
        return ACTIVE_VIEW_ON
    if choice == "DEFAULT" and opt_out:
        return ACTIVE_VIEW_OFF
    return ACTIVE_VIEW_DEFAULT


def parse_size(text: str) -> tuple[int, int]:
    """``'300x250'`` -> ``(300, 250)``; anything without an ``x`` is ``1x1``."""
    text = text.strip().lower()
    if "x" not in text:
        return 1, 1
    width, _, height = text.partition("x")
    try:
        return int(width.strip()), int(height.strip())
    except ValueError as e:
        raise RowValidationError(f"{text!r} is not a valid size", f.ASSET_SIZE, text) from e


def format_sizes(placement: dict[str, Any]) -> str | None:
    size = placement.get("size")
    if not size:
        return None
    sizes = [size, *(placement.get("additionalSizes") or [])]
    return ", ".join(f"{s.get('width')}x{s.get('height')}" for s in sizes)


class PlacementStrategy(EntityStrategy):
    """
    Placements, with their pricing periods in the Placement Pricing Schedule
    table.

    Pushing a display placement resolves each ``WxH`` of the Asset Size
    column to a Campaign Manager size id when one exists.
    """

    label = "Placement"
    entity = "Placements"
    remote_type = "Placements"
    list_field = "placements"
    tables = (f.PLACEMENT_TABLE,)
    keys = (f.PLACEMENT_ID,)
    id_field = f.PLACEMENT_ID
    references = (
        EntityReference(f.CAMPAIGN_TABLE, f.CAMPAIGN_ID),
        EntityReference(f.PLACEMENT_GROUP_TABLE, f.PLACEMENT_GROUP_ID),
    )
    children = (
        ChildRelationship(
            (f.PRICING_SCHEDULE_TABLE,), f.PRICING_SCHEDULE_LIST, f.PLACEMENT_ID, qa_fallback=False
        ),
    )
    load_pre_fetch = (
        PreFetchConfig("Sites", "sites", "ids", "siteId"),
        PreFetchConfig("PlacementGroups", "placementGroups", "ids", "placementGroupId"),
    )
    push_pre_fetch = (
        PreFetchConfig("Sites", "sites", "ids", f.SITE_ID),
        PreFetchConfig("PlacementGroups", "placementGroups", "ids", f.PLACEMENT_GROUP_ID),
    )

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        result = False
        if job.filters.campaign_ids:
            options["campaignIds"] = list(job.filters.campaign_ids)
            result = True
        if job.filters.placement_group_ids:
            options["groupIds"] = list(job.filters.placement_group_ids)
            result = True
        return result

    def map_row(self, placement: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        campaign = ctx.remote.get("Campaigns", placement.get("campaignId")) or {}
        site = ctx.remote.get("Sites", placement.get("siteId")) or {}
        schedule = placement.get("pricingSchedule") or {}

        row: dict[str, Any] = {
            f.PLACEMENT_ID: placement.get("id"),
            f.PLACEMENT_NAME: placement.get("name"),
            f.ARCHIVED: placement.get("archived"),
            f.ACTIVE_VIEW: active_view_label(placement),
            f.AD_BLOCKING: placement.get("adBlockingOptOut"),
            f.SITE_ID: site.get("id", placement.get("siteId")),
            f.SITE_NAME: site.get("name"),
            f.CAMPAIGN_ID: campaign.get("id", placement.get("campaignId")),
            f.CAMPAIGN_NAME: campaign.get("name"),
            f.PLACEMENT_START_DATE: schedule.get("startDate"),
            f.PLACEMENT_END_DATE: schedule.get("endDate"),
            f.PRICING_SCHEDULE_COST_STRUCTURE: schedule.get("pricingType"),
            f.PRICING_SCHEDULE_TESTING_START: schedule.get("testingStartDate"),
        }

        if placement.get("tagSetting"):
            row[f.ADDITIONAL_KEY_VALUES] = placement["tagSetting"].get("additionalKeyValues")

        skippable = (placement.get("videoSettings") or {}).get("skippableSettings")
        if skippable:
            skip_offset = skippable.get("skipOffset") or {}
            progress_offset = skippable.get("progressOffset") or {}
            row[f.PLACEMENT_SKIPPABLE] = skippable.get("skippable")
            row[f.SKIP_OFFSET_SECONDS] = skip_offset.get("offsetSeconds")
            row[f.SKIP_OFFSET_PERCENTAGE] = skip_offset.get("offsetPercentage")
            row[f.PROGRESS_OFFSET_SECONDS] = progress_offset.get("offsetSeconds")
            row[f.PROGRESS_OFFSET_PERCENTAGE] = progress_offset.get("offsetPercentage")

        if placement.get("placementGroupId"):
            group = ctx.remote.get("PlacementGroups", placement["placementGroupId"])
            if group:
                row[f.PLACEMENT_GROUP_ID] = group.get("id")
                row[f.PLACEMENT_GROUP_NAME] = group.get("name")

        sizes = format_sizes(placement)
        if sizes:
            row[f.ASSET_SIZE] = sizes

        row[f.PLACEMENT_TYPE] = placement.get("compatibility")
        return row

    def pre_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        row = job.row
        row[f.PLACEMENT_START_DATE] = format_date(row.get(f.PLACEMENT_START_DATE))
        row[f.PLACEMENT_END_DATE] = format_date(row.get(f.PLACEMENT_END_DATE))

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        placement, row = job.remote_object, job.row

        assign(placement, "name", row, f.PLACEMENT_NAME, True)
        placement["archived"] = is_true(row.get(f.ARCHIVED))
        placement["adBlockingOptOut"] = is_true(row.get(f.AD_BLOCKING))
        assign(placement, "siteId", row, f.SITE_ID, True)
        assign(placement, "placementGroupId", row, f.PLACEMENT_GROUP_ID, False)
        assign(placement, "campaignId", row, f.CAMPAIGN_ID, True)

        tag_setting = placement.setdefault("tagSetting", {})
        assign(tag_setting, "additionalKeyValues", row, f.ADDITIONAL_KEY_VALUES, False)

        placement["paymentSource"] = PAYMENT_SOURCE

        self._process_active_view(job)
        self._process_pricing_schedule(job)
        self._process_compatibility(job, ctx)
        self._process_skippability(job)

    def _process_active_view(self, job: PushJob) -> None:
        placement = job.remote_object
        value = job.row.get(f.ACTIVE_VIEW) or ""

        if value == ACTIVE_VIEW_ON:
            placement["vpaidAdapterChoice"] = "HTML5"
            placement["videoActiveViewOptOut"] = False
        elif value == ACTIVE_VIEW_OFF:
            placement["vpaidAdapterChoice"] = "DEFAULT"
            placement["videoActiveViewOptOut"] = True
        elif value == ACTIVE_VIEW_DEFAULT or value == "":
            placement["vpaidAdapterChoice"] = "DEFAULT"
            placement["videoActiveViewOptOut"] = False
        else:
            raise RowValidationError(
                f"{value} is not a valid value for the placement {f.ACTIVE_VIEW} field",
                f.ACTIVE_VIEW,
                value,
            )

    def _process_pricing_schedule(self, job: PushJob) -> None:
        placement, row = job.remote_object, job.row
        schedule = placement.setdefault("pricingSchedule", {})
        start = row.get(f.PLACEMENT_START_DATE)
        end = row.get(f.PLACEMENT_END_DATE)

        schedule["startDate"] = start
        schedule["endDate"] = end
        pricing_type = f.PRICING_SCHEDULE_COST_STRUCTURE
        assign(schedule, "pricingType", row, pricing_type, False, DEFAULT_PRICING_TYPE)

        periods = row.get(f.PRICING_SCHEDULE_LIST)
        if not periods and not schedule.get("pricingPeriods"):
            schedule["pricingPeriods"] = [{"startDate": start, "endDate": end}]
        elif periods:
            schedule["pricingPeriods"] = [
                {
                    "startDate": format_date(period.get(f.PRICING_PERIOD_START)),
                    "endDate": format_date(period.get(f.PRICING_PERIOD_END)),
                    "rateOrCostNanos": _to_nanos(period.get(f.PRICING_PERIOD_RATE)),
                    "units": period.get(f.PRICING_PERIOD_UNITS),
                }
                for period in periods
            ]

    def _process_compatibility(self, job: PushJob, ctx: LoaderContext) -> None:
        placement, row = job.remote_object, job.row

        if row.get(f.PLACEMENT_TYPE) in VIDEO_TYPES:
            placement["compatibility"] = "IN_STREAM_VIDEO"
            placement["size"] = {"width": "0", "height": "0"}
            placement["tagFormats"] = list(VIDEO_TAG_FORMATS)
            return

        placement["compatibility"] = "DISPLAY"
        sizes = self._resolve_sizes(str(row.get(f.ASSET_SIZE) or ""), ctx)
        placement["size"] = sizes[0] if sizes else None
        placement["additionalSizes"] = sizes[1:]
        placement["tagFormats"] = list(DISPLAY_TAG_FORMATS)

    def _resolve_sizes(self, text: str, ctx: LoaderContext) -> list[dict[str, Any]]:
        """Known sizes become ``{'id': ...}``, unknown ones ``{'width', 'height'}``."""
        result: list[dict[str, Any]] = []
        for raw in text.split(","):
            width, height = parse_size(raw)
            match = next(
                (
                    s
                    for s in ctx.remote.get_sizes(width, height)
                    if _as_int(s.get("width")) == width and _as_int(s.get("height")) == height
                ),
                None,
            )
            if match:
                result.append({"id": match.get("id")})
            else:
                result.append({"width": width, "height": height})
        return result

    def _process_skippability(self, job: PushJob) -> None:
        placement, row = job.remote_object, job.row

        if is_true(row.get(f.PLACEMENT_SKIPPABLE)):
            settings: dict[str, Any] = {"skippable": True, "skipOffset": {}, "progressOffset": {}}
            skip, progress = settings["skipOffset"], settings["progressOffset"]
            assign(skip, "offsetSeconds", row, f.SKIP_OFFSET_SECONDS)
            assign(skip, "offsetPercentage", row, f.SKIP_OFFSET_PERCENTAGE)
            assign(progress, "offsetSeconds", row, f.PROGRESS_OFFSET_SECONDS)
            assign(progress, "offsetPercentage", row, f.PROGRESS_OFFSET_PERCENTAGE)
            placement.setdefault("videoSettings", {})["skippableSettings"] = settings
        elif placement.get("videoSettings"):
            placement["videoSettings"].pop("skippableSettings", None)

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        placement, row = job.remote_object, job.row

        if row.get(f.PLACEMENT_GROUP_ID):
            group = ctx.remote.get("PlacementGroups", row.get(f.PLACEMENT_GROUP_ID))
            if group:
                row[f.PLACEMENT_GROUP_NAME] = group.get("name")
        row[f.SITE_NAME] = _site_name(ctx, row.get(f.SITE_ID))
        row[f.CAMPAIGN_NAME] = _campaign_name(ctx, row.get(f.CAMPAIGN_ID))

        periods = (placement.get("pricingSchedule") or {}).get("pricingPeriods")
        if periods:
            row[f.PRICING_SCHEDULE_LIST] = [_period_row(placement, period) for period in periods]


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_nanos(rate: Any) -> int:
    try:
        return math.floor(float(rate or 0) * NANOS)
    except (TypeError, ValueError) as e:
        message = f"{rate!r} is not a valid rate"
        raise RowValidationError(message, f.PRICING_PERIOD_RATE, rate) from e


def _period_row(placement: dict[str, Any], period: dict[str, Any]) -> dict[str, Any]:
    nanos = period.get("rateOrCostNanos")
    return {
        f.PLACEMENT_NAME: placement.get("name"),
        f.PLACEMENT_ID: placement.get("id"),
        f.PRICING_PERIOD_START: period.get("startDate"),
        f.PRICING_PERIOD_END: period.get("endDate"),
        f.PRICING_PERIOD_RATE: int(nanos) / NANOS if nanos is not None else None,
        f.PRICING_PERIOD_UNITS: period.get("units"),
    }


class PricingScheduleStrategy(EntityStrategy):
    """Load-only: one row per pricing period of each placement."""

    label = "Placement Pricing Schedule"
    entity = "PlacementPricingSchedule"
    remote_type = "Placements"
    list_field = "placements"
    tables = (f.PRICING_SCHEDULE_TABLE,)
    qa_fallback = False
    id_field = f.PLACEMENT_ID

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        return add_parent_ids(options, job.filters.placement_ids)

    def map_row(self, placement: dict[str, Any], ctx: LoaderContext) -> list[dict[str, Any]]:
        periods = (placement.get("pricingSchedule") or {}).get("pricingPeriods") or []
        return [_period_row(placement, period) for period in periods]

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        raise ConfigurationError(f"{self.label} rows are pushed with their {f.PLACEMENT_TABLE}")
