"""Campaign-level entities: campaigns, landing pages and event tags."""

import logging
from typing import Any

from ... import fields as f
from ...id_store import normalize_id
from ..base import EntityReference, EntityStrategy
from ..context import LoaderContext
from ..jobs import Job, PreFetchConfig, PushJob
from ..values import assign, format_date, is_true

logger = logging.getLogger(__name__)


class CampaignStrategy(EntityStrategy):
    label = "Campaign"
    entity = "Campaigns"
    remote_type = "Campaigns"
    list_field = "campaigns"
    tables = (f.CAMPAIGN_TABLE,)
    keys = (f.CAMPAIGN_ID,)
    id_field = f.CAMPAIGN_ID
    references = (EntityReference(f.LANDING_PAGE_TABLE, f.LANDING_PAGE_ID),)
    load_pre_fetch = (
        PreFetchConfig("AdvertiserLandingPages", "landingPages", "ids", "defaultLandingPageId"),
    )
    push_pre_fetch = (
        PreFetchConfig("AdvertiserLandingPages", "landingPages", "ids", f.LANDING_PAGE_ID),
    )

    def map_row(self, campaign: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        landing_page_id = campaign.get("defaultLandingPageId")
        landing_page = ctx.remote.get("AdvertiserLandingPages", landing_page_id)
        return {
            f.CAMPAIGN_ID: campaign.get("id"),
            f.CAMPAIGN_NAME: campaign.get("name"),
            f.ADVERTISER_ID: campaign.get("advertiserId"),
            f.LANDING_PAGE_ID: landing_page_id,
            f.LANDING_PAGE_NAME: landing_page.get("name") if landing_page else None,
            f.CAMPAIGN_START_DATE: campaign.get("startDate"),
            f.CAMPAIGN_END_DATE: campaign.get("endDate"),
        }

    def pre_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        row = job.row
        row[f.CAMPAIGN_START_DATE] = format_date(row.get(f.CAMPAIGN_START_DATE))
        row[f.CAMPAIGN_END_DATE] = format_date(row.get(f.CAMPAIGN_END_DATE))

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        campaign, row = job.remote_object, job.row
        assign(campaign, "name", row, f.CAMPAIGN_NAME, True)
        assign(campaign, "advertiserId", row, f.ADVERTISER_ID, True)
        assign(campaign, "defaultLandingPageId", row, f.LANDING_PAGE_ID, True)
        assign(campaign, "startDate", row, f.CAMPAIGN_START_DATE, True)
        assign(campaign, "endDate", row, f.CAMPAIGN_END_DATE, True)

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        landing_page = ctx.remote.get(
            "AdvertiserLandingPages", job.remote_object.get("defaultLandingPageId")
        )
        if landing_page:
            job.row[f.LANDING_PAGE_NAME] = landing_page.get("name")


class LandingPageStrategy(EntityStrategy):
    label = "Landing Page"
    entity = "AdvertiserLandingPages"
    remote_type = "AdvertiserLandingPages"
    list_field = "landingPages"
    tables = (f.LANDING_PAGE_TABLE,)
    keys = (f.LANDING_PAGE_ID,)
    id_field = f.LANDING_PAGE_ID

    def process_search_options(self, job: Job, options: dict[str, Any]) -> bool:
        if job.filters.campaign_ids:
            options["campaignIds"] = list(job.filters.campaign_ids)
            return True
        return False

    def map_row(self, landing_page: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        return {
            f.LANDING_PAGE_ID: landing_page.get("id"),
            f.LANDING_PAGE_NAME: landing_page.get("name"),
            f.ADVERTISER_ID: landing_page.get("advertiserId"),
            f.LANDING_PAGE_URL: landing_page.get("url"),
        }

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        landing_page, row = job.remote_object, job.row
        assign(landing_page, "name", row, f.LANDING_PAGE_NAME, True)
        assign(landing_page, "url", row, f.LANDING_PAGE_URL, True)
        assign(landing_page, "advertiserId", row, f.ADVERTISER_ID, True)


class EventTagStrategy(EntityStrategy):
    """
    Event tags, fetched one by one, per campaign, and per advertiser of the
    ads that override them.

    The API lists event tags only by a single advertiser, campaign or ad, so
    tags overridden by ads are found by listing each distinct advertiser of
    those ads and keeping only the overridden tags.
    """

    label = "Event Tag"
    entity = "EventTags"
    remote_type = "EventTags"
    list_field = "eventTags"
    tables = (f.EVENT_TAG_TABLE,)
    qa_fallback = False
    id_field = f.EVENT_TAG_ID
    references = (EntityReference(f.CAMPAIGN_TABLE, f.CAMPAIGN_ID),)

    def fetch_items(self, job: Job, ctx: LoaderContext) -> list[dict[str, Any]]:
        by_id: dict[str, dict[str, Any]] = {}

        for event_tag_id in job.ids_to_load:
            key = normalize_id(event_tag_id)
            if key not in by_id:
                event_tag = ctx.remote.get("EventTags", event_tag_id)
                if event_tag:
                    by_id[key] = event_tag

        for campaign_id in job.filters.campaign_ids:
            for event_tag in ctx.remote.list("EventTags", "eventTags", {"campaignId": campaign_id}):
                by_id.setdefault(normalize_id(event_tag.get("id")), event_tag)

        if job.filters.ad_ids:
            advertiser_ids: list[Any] = []
            overridden: set[str] = set()
            for ad in ctx.remote.chunk_fetch("Ads", "ads", list(job.filters.ad_ids)):
                overrides = ad.get("eventTagOverrides") or []
                if not overrides:
                    continue
                if ad.get("advertiserId") not in advertiser_ids:
                    advertiser_ids.append(ad.get("advertiserId"))
                overridden.update(normalize_id(o.get("id")) for o in overrides)

            for advertiser_id in advertiser_ids if overridden else []:
                for event_tag in ctx.remote.list(
                    "EventTags", "eventTags", {"advertiserId": advertiser_id}
                ):
                    key = normalize_id(event_tag.get("id"))
                    if key in overridden:
                        by_id.setdefault(key, event_tag)

        job.log(f"Fetched {len(by_id)} {self.label}s")
        return list(by_id.values())

    def map_row(self, event_tag: dict[str, Any], ctx: LoaderContext) -> dict[str, Any]:
        row: dict[str, Any] = {f.ADVERTISER_ID: event_tag.get("advertiserId")}

        campaign = ctx.remote.get("Campaigns", event_tag.get("campaignId"))
        if campaign:
            row[f.CAMPAIGN_ID] = campaign.get("id")
            row[f.CAMPAIGN_NAME] = campaign.get("name")

        row.update(
            {
                f.EVENT_TAG_ID: event_tag.get("id"),
                f.EVENT_TAG_NAME: event_tag.get("name"),
                f.EVENT_TAG_STATUS: event_tag.get("status"),
                f.ENABLE_BY_DEFAULT: event_tag.get("enabledByDefault"),
                f.EVENT_TAG_TYPE: event_tag.get("type"),
                f.EVENT_TAG_URL: event_tag.get("url"),
            }
        )
        return row

    def process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        event_tag, row = job.remote_object, job.row
        assign(event_tag, "advertiserId", row, f.ADVERTISER_ID, True)
        assign(event_tag, "campaignId", row, f.CAMPAIGN_ID, False)
        assign(event_tag, "name", row, f.EVENT_TAG_NAME, True)
        assign(event_tag, "type", row, f.EVENT_TAG_TYPE, True)
        assign(event_tag, "url", row, f.EVENT_TAG_URL, True)
        assign(event_tag, "status", row, f.EVENT_TAG_STATUS, True)
        event_tag["enabledByDefault"] = is_true(row.get(f.ENABLE_BY_DEFAULT))

    def post_process_push(self, job: PushJob, ctx: LoaderContext) -> None:
        campaign_id = job.remote_object.get("campaignId")
        if campaign_id:
            campaign = ctx.remote.get("Campaigns", campaign_id)
            if campaign:
                job.row[f.CAMPAIGN_NAME] = campaign.get("name")
