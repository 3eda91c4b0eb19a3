"""Tests for the per-kind field mappings."""

import pytest

from cm_sheet_sync import fields as f
from cm_sheet_sync.errors import ConfigurationError, RowValidationError
from cm_sheet_sync.feed import FeedRow
from cm_sheet_sync.loaders import CascadeFilters, Job, PushJob
from cm_sheet_sync.loaders.strategies import (
    AdCreativeAssignmentStrategy,
    AdEventTagAssignmentStrategy,
    AdPlacementAssignmentStrategy,
    AdStrategy,
    CreativeStrategy,
    EventTagStrategy,
    PlacementStrategy,
    PricingScheduleStrategy,
)
from cm_sheet_sync.loaders.strategies.placements import active_view_label, parse_size


def make_job(entity, row, remote_object=None):
    """Create a push job for a single row."""
    return PushJob(entity=entity, row=FeedRow.from_row(row), remote_object=remote_object or {})


def placement_row(**overrides):
    row = {
        f.PLACEMENT_ID: "ext1",
        f.PLACEMENT_NAME: "Homepage",
        f.SITE_ID: "20",
        f.CAMPAIGN_ID: "1",
        f.PLACEMENT_START_DATE: "2024-03-01",
        f.PLACEMENT_END_DATE: "2024-03-31",
        f.ASSET_SIZE: "300x250",
    }
    row.update(overrides)
    return row


# ==================== Placements ====================


@pytest.mark.parametrize(
    "value,choice,opt_out",
    [("ON", "HTML5", False), ("OFF", "DEFAULT", True), ("LET_DCM_DECIDE", "DEFAULT", False)],
)
def test_placement_active_view(ctx, value, choice, opt_out):
    """Test that the active view column sets the adapter choice and opt-out."""
    job = make_job("Placements", placement_row(**{f.ACTIVE_VIEW: value}))

    PlacementStrategy().process_push(job, ctx)

    assert job.remote_object["vpaidAdapterChoice"] == choice
    assert job.remote_object["videoActiveViewOptOut"] is opt_out


def test_placement_invalid_active_view_is_rejected(ctx):
    """Test that an unknown active view value fails the row."""
    job = make_job("Placements", placement_row(**{f.ACTIVE_VIEW: "SOMETIMES"}))

    with pytest.raises(RowValidationError, match="SOMETIMES is not a valid value"):
        PlacementStrategy().process_push(job, ctx)


def test_active_view_label_round_trip():
    """Test that loaded adapter settings collapse back to the column value."""
    assert active_view_label({"vpaidAdapterChoice": "HTML5"}) == "ON"
    assert active_view_label({"vpaidAdapterChoice": "DEFAULT", "videoActiveViewOptOut": True}) == (
        "OFF"
    )
    assert active_view_label({}) == "LET_DCM_DECIDE"


def test_display_placement_resolves_known_sizes(service, ctx):
    """Test that known sizes are referenced by id and unknown ones by dimensions."""
    service.add("Sizes", {"id": "7", "width": 300, "height": 250})
    job = make_job("Placements", placement_row(**{f.ASSET_SIZE: "300x250, 728x90"}))

    PlacementStrategy().process_push(job, ctx)

    placement = job.remote_object
    assert placement["compatibility"] == "DISPLAY"
    assert placement["size"] == {"id": "7"}
    assert placement["additionalSizes"] == [{"width": 728, "height": 90}]
    assert "PLACEMENT_TAG_STANDARD" in placement["tagFormats"]
    assert placement["paymentSource"] == "PLACEMENT_AGENCY_PAID"


def test_video_placement_has_no_size(ctx):
    """Test that video placements use the in-stream settings."""
    job = make_job("Placements", placement_row(**{f.PLACEMENT_TYPE: "VIDEO"}))

    PlacementStrategy().process_push(job, ctx)

    assert job.remote_object["compatibility"] == "IN_STREAM_VIDEO"
    assert job.remote_object["size"] == {"width": "0", "height": "0"}
    assert job.remote_object["tagFormats"] == ["PLACEMENT_TAG_INSTREAM_VIDEO_PREFETCH"]


def test_parse_size():
    """Test WxH parsing of the asset size column."""
    assert parse_size(" 300 x 250 ") == (300, 250)
    assert parse_size("fluid") == (1, 1)
    with pytest.raises(RowValidationError):
        parse_size("axb")


def test_placement_flags_use_true_semantics(ctx):
    """Test that archived and ad blocking accept booleans and the text 'true'."""
    job = make_job(
        "Placements",
        placement_row(**{f.ARCHIVED: "TRUE", f.AD_BLOCKING: False, f.PLACEMENT_TYPE: "VIDEO"}),
    )

    PlacementStrategy().process_push(job, ctx)

    assert job.remote_object["archived"] is True
    assert job.remote_object["adBlockingOptOut"] is False


def test_placement_without_periods_gets_one_from_its_dates(ctx):
    """Test that a placement with no pricing rows is priced over its own flight."""
    job = make_job("Placements", placement_row(**{f.PLACEMENT_TYPE: "VIDEO"}))

    PlacementStrategy().process_push(job, ctx)

    schedule = job.remote_object["pricingSchedule"]
    assert schedule["pricingType"] == "PRICING_TYPE_CPM"
    assert schedule["pricingPeriods"] == [{"startDate": "2024-03-01", "endDate": "2024-03-31"}]


def test_placement_pricing_rows_become_periods_in_nanos(ctx):
    """Test that attached pricing rows are converted to pricing periods."""
    row = placement_row(**{f.PLACEMENT_TYPE: "VIDEO"})
    row[f.PRICING_SCHEDULE_LIST] = [
        {
            f.PRICING_PERIOD_START: "03/01/2024",
            f.PRICING_PERIOD_END: "2024-03-15",
            f.PRICING_PERIOD_RATE: "2.5",
            f.PRICING_PERIOD_UNITS: "1000",
        }
    ]
    job = make_job("Placements", row)

    PlacementStrategy().process_push(job, ctx)

    assert job.remote_object["pricingSchedule"]["pricingPeriods"] == [
        {
            "startDate": "2024-03-01",
            "endDate": "2024-03-15",
            "rateOrCostNanos": 2_500_000_000,
            "units": "1000",
        }
    ]


def test_placement_invalid_rate_is_rejected(ctx):
    """Test that a non-numeric rate fails the row."""
    row = placement_row(**{f.PLACEMENT_TYPE: "VIDEO"})
    row[f.PRICING_SCHEDULE_LIST] = [{f.PRICING_PERIOD_RATE: "cheap"}]

    with pytest.raises(RowValidationError, match="not a valid rate"):
        PlacementStrategy().process_push(make_job("Placements", row), ctx)


def test_placement_skippable_settings(ctx):
    """Test that skippable placements carry their offsets."""
    job = make_job(
        "Placements",
        placement_row(
            **{
                f.PLACEMENT_TYPE: "VIDEO",
                f.PLACEMENT_SKIPPABLE: True,
                f.SKIP_OFFSET_SECONDS: 5,
                f.PROGRESS_OFFSET_PERCENTAGE: 50,
            }
        ),
    )

    PlacementStrategy().process_push(job, ctx)

    settings = job.remote_object["videoSettings"]["skippableSettings"]
    assert settings == {
        "skippable": True,
        "skipOffset": {"offsetSeconds": 5},
        "progressOffset": {"offsetPercentage": 50},
    }


def test_placement_post_process_writes_period_rows(service, ctx):
    """Test that pushed pricing periods are written back as pricing rows."""
    service.add("Campaigns", {"id": "1", "name": "Spring"})
    service.add("Sites", {"id": "20", "name": "news.test"})
    job = make_job(
        "Placements",
        placement_row(),
        remote_object={
            "id": "100",
            "name": "Homepage",
            "pricingSchedule": {
                "pricingPeriods": [
                    {
                        "startDate": "2024-03-01",
                        "endDate": "2024-03-31",
                        "rateOrCostNanos": "1500000000",
                    }
                ]
            },
        },
    )

    PlacementStrategy().post_process_push(job, ctx)

    assert job.row[f.CAMPAIGN_NAME] == "Spring"
    assert job.row[f.SITE_NAME] == "news.test"
    assert job.row[f.PRICING_SCHEDULE_LIST] == [
        {
            f.PLACEMENT_NAME: "Homepage",
            f.PLACEMENT_ID: "100",
            f.PRICING_PERIOD_START: "2024-03-01",
            f.PRICING_PERIOD_END: "2024-03-31",
            f.PRICING_PERIOD_RATE: 1.5,
            f.PRICING_PERIOD_UNITS: None,
        }
    ]


def test_placement_map_row(service, ctx):
    """Test that a placement is flattened with its campaign, site and group names."""
    service.add("Campaigns", {"id": "1", "name": "Spring"})
    service.add("Sites", {"id": "20", "name": "news.test"})
    service.add("PlacementGroups", {"id": "10", "name": "Package"})
    placement = {
        "id": "100",
        "name": "Homepage",
        "campaignId": "1",
        "siteId": "20",
        "placementGroupId": "10",
        "compatibility": "DISPLAY",
        "size": {"width": 300, "height": 250},
        "additionalSizes": [{"width": 728, "height": 90}],
        "vpaidAdapterChoice": "HTML5",
        "pricingSchedule": {"startDate": "2024-03-01", "pricingType": "PRICING_TYPE_CPC"},
    }

    row = PlacementStrategy().map_row(placement, ctx)

    assert row[f.CAMPAIGN_NAME] == "Spring"
    assert row[f.SITE_NAME] == "news.test"
    assert row[f.PLACEMENT_GROUP_NAME] == "Package"
    assert row[f.ASSET_SIZE] == "300x250, 728x90"
    assert row[f.ACTIVE_VIEW] == "ON"
    assert row[f.PRICING_SCHEDULE_COST_STRUCTURE] == "PRICING_TYPE_CPC"
    assert row[f.PLACEMENT_TYPE] == "DISPLAY"


def test_pricing_schedule_rows_per_period(ctx):
    """Test that the load-only pricing kind emits one row per period."""
    placement = {
        "id": "100",
        "name": "Homepage",
        "pricingSchedule": {
            "pricingPeriods": [
                {"startDate": "2024-03-01", "rateOrCostNanos": "2000000000", "units": "10"},
                {"startDate": "2024-04-01", "rateOrCostNanos": None},
            ]
        },
    }

    rows = PricingScheduleStrategy().map_row(placement, ctx)

    assert [r[f.PRICING_PERIOD_RATE] for r in rows] == [2.0, None]
    assert all(r[f.PLACEMENT_ID] == "100" for r in rows)
    assert PricingScheduleStrategy().map_row({"id": "1"}, ctx) == []


# ==================== Ads ====================


def ad_row(**overrides):
    row = {
        f.AD_ID: "ext1",
        f.AD_NAME: "Ad",
        f.CAMPAIGN_ID: "1",
        f.AD_TYPE: "AD_SERVING_STANDARD_AD",
        f.AD_PRIORITY: "AD_PRIORITY_05",
    }
    row.update(overrides)
    return row


@pytest.mark.parametrize(
    "label,rotation_type,strategy",
    [
        ("SEQUENTIAL", "CREATIVE_ROTATION_TYPE_SEQUENTIAL", None),
        ("custom", "CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_CUSTOM"),
        (None, "CREATIVE_ROTATION_TYPE_RANDOM", "WEIGHT_STRATEGY_EQUAL"),
    ],
)
def test_ad_rotation(ctx, label, rotation_type, strategy):
    """Test that the rotation column selects the rotation type and weighting."""
    job = make_job("Ads", ad_row(**{f.CREATIVE_ROTATION: label}))

    AdStrategy().process_push(job, ctx)

    assert job.remote_object["creativeRotation"] == {
        "type": rotation_type,
        "weightCalculationStrategy": strategy,
    }


def test_ad_hard_cutoff_and_default_type(ctx):
    """Test that only non-default ads get a delivery schedule."""
    job = make_job("Ads", ad_row(**{f.HARD_CUTOFF: "true", f.AD_ACTIVE: "TRUE"}))
    AdStrategy().process_push(job, ctx)
    assert job.remote_object["deliverySchedule"] == {
        "impressionRatio": 1,
        "priority": "AD_PRIORITY_05",
        "hardCutoff": True,
    }
    assert job.remote_object["active"] is True

    default = make_job("Ads", ad_row(**{f.AD_TYPE: "AD_SERVING_DEFAULT_AD"}))
    AdStrategy().process_push(default, ctx)
    assert "deliverySchedule" not in default.remote_object
    assert "active" not in default.remote_object


def test_ad_creative_assignment_with_landing_page(ctx, id_store):
    """Test that a creative row with a landing page sets a custom click-through."""
    id_store.add_id(f.LANDING_PAGE_TABLE, "50", "ext-lp")
    row = ad_row()
    row[f.CREATIVE_ASSIGNMENTS_LIST] = [
        {f.CREATIVE_ID: "300", f.LANDING_PAGE_ID: "ext-lp", f.CREATIVE_ROTATION_SEQUENCE: 1},
        {f.CREATIVE_ID: "301", f.CUSTOM_CLICK_THROUGH_URL: "https://promo.test"},
        {f.CREATIVE_ID: ""},
    ]
    job = make_job("Ads", row)

    AdStrategy().process_push(job, ctx)

    first, second = job.remote_object["creativeRotation"]["creativeAssignments"]
    assert first["clickThroughUrl"] == {"defaultLandingPage": False, "landingPageId": "50"}
    assert first["sequence"] == 1
    assert second["clickThroughUrl"] == {
        "defaultLandingPage": False,
        "customClickThroughUrl": "https://promo.test",
    }


def test_ad_event_tag_overrides(service, ctx):
    """Test that event tag rows become overrides with their enabled flag."""
    service.add("EventTags", {"id": "5", "name": "Pixel"})
    row = ad_row()
    row[f.EVENT_TAG_ASSIGNMENTS_LIST] = [{f.EVENT_TAG_ID: "5", f.ENABLED: "TRUE"}]
    job = make_job("Ads", row)

    AdStrategy().process_push(job, ctx)

    assert job.remote_object["eventTagOverrides"] == [{"enabled": True, "id": "5"}]


def test_ad_map_row(service, ctx):
    """Test that an ad is flattened with its campaign name and rotation label."""
    service.add("Campaigns", {"id": "1", "name": "Spring"})
    ad = {
        "id": "500",
        "name": "Ad",
        "campaignId": "1",
        "active": True,
        "type": "AD_SERVING_STANDARD_AD",
        "startTime": "2024-03-01T05:00:00.000Z",
        "creativeRotation": {
            "type": "CREATIVE_ROTATION_TYPE_RANDOM",
            "weightCalculationStrategy": "WEIGHT_STRATEGY_OPTIMIZED",
        },
        "deliverySchedule": {"priority": "AD_PRIORITY_02", "hardCutoff": False},
    }

    row = AdStrategy().map_row(ad, ctx)

    assert row[f.CAMPAIGN_NAME] == "Spring"
    assert row[f.CREATIVE_ROTATION] == "OPTIMIZED"
    assert row[f.AD_PRIORITY] == "AD_PRIORITY_02"
    assert row[f.HARD_CUTOFF] is False
    assert row[f.AD_START_DATE] == "2024-03-01T05:00:00Z"


def test_ad_search_options_follow_cascade_filters():
    """Test that ads are listed by campaign and placement, narrowed to active ones."""
    job = Job(
        entity="Ads",
        filters=CascadeFilters(campaign_ids=["1"], placement_ids=["100"], active_only=True),
    )
    options: dict = {}

    assert AdStrategy().process_search_options(job, options) is True
    assert options == {"campaignIds": ["1"], "placementIds": ["100"], "active": True}

    active_only = Job(entity="Ads", filters=CascadeFilters(active_only=True))
    assert AdStrategy().process_search_options(active_only, {}) is False


def test_assignment_kinds_map_one_row_per_assignment(service, ctx):
    """Test that the load-only assignment kinds flatten an ad's assignments."""
    service.add("Placements", {"id": "100", "name": "Homepage"})
    service.add("Creatives", {"id": "300", "name": "Banner"})
    service.add("EventTags", {"id": "5", "name": "Pixel"})
    ad = {
        "id": "500",
        "name": "Ad",
        "placementAssignments": [{"placementId": "100"}],
        "creativeRotation": {
            "creativeAssignments": [
                {
                    "creativeId": "300",
                    "weight": 3,
                    "clickThroughUrl": {"landingPageId": "50"},
                    "startTime": "2024-03-01T00:00:00.000Z",
                }
            ]
        },
        "eventTagOverrides": [{"id": "5", "enabled": False}],
    }

    placements = AdPlacementAssignmentStrategy().map_row(ad, ctx)
    creatives = AdCreativeAssignmentStrategy().map_row(ad, ctx)
    event_tags = AdEventTagAssignmentStrategy().map_row(ad, ctx)

    assert placements == [
        {f.AD_ID: "500", f.AD_NAME: "Ad", f.PLACEMENT_ID: "100", f.PLACEMENT_NAME: "Homepage"}
    ]
    assert creatives[0][f.CREATIVE_NAME] == "Banner"
    assert creatives[0][f.CREATIVE_ROTATION_WEIGHT] == 3
    assert creatives[0][f.LANDING_PAGE_ID] == "50"
    assert creatives[0][f.ASSIGNMENT_START_DATE] == "2024-03-01T00:00:00Z"
    assert event_tags == [
        {
            f.EVENT_TAG_ID: "5",
            f.EVENT_TAG_NAME: "Pixel",
            f.AD_ID: "500",
            f.AD_NAME: "Ad",
            f.ENABLED: False,
        }
    ]
    assert AdPlacementAssignmentStrategy().map_row({"id": "1"}, ctx) is None


@pytest.mark.parametrize(
    "strategy",
    [
        PricingScheduleStrategy(),
        AdPlacementAssignmentStrategy(),
        AdCreativeAssignmentStrategy(),
        AdEventTagAssignmentStrategy(),
    ],
)
def test_load_only_kinds_refuse_push(ctx, strategy):
    """Test that rows of load-only kinds cannot be pushed on their own."""
    with pytest.raises(ConfigurationError, match="are pushed with their"):
        strategy.process_push(make_job(strategy.entity, {}), ctx)


# ==================== Creatives and event tags ====================


def test_creative_is_associated_with_its_campaign(service, ctx):
    """Test that a pushed creative is associated with the campaign on its row."""
    service.add("Campaigns", {"id": "1", "name": "Spring"})
    job = make_job(
        "Creatives",
        {f.CREATIVE_ID: "300", f.CAMPAIGN_ID: "1"},
        remote_object={"id": "300", "name": "Banner"},
    )

    CreativeStrategy().post_process_push(job, ctx)

    assert service.associations == [("1", "300")]
    assert job.row[f.CAMPAIGN_NAME] == "Spring"


def test_creatives_listed_per_campaign_remember_it(service, ctx):
    """Test that creatives fetched through a campaign carry that campaign id."""
    service.add("Creatives", {"id": "300", "campaignId": "1", "type": "INSTREAM_VIDEO"})
    service.add("Campaigns", {"id": "1", "name": "Spring", "advertiserId": "7"})
    job = Job(entity="Creatives", filters=CascadeFilters(campaign_ids=["1"]))

    items = CreativeStrategy().fetch_items(job, ctx)
    row = CreativeStrategy().map_row(items[0], ctx)

    assert items[0]["campaignId"] == "1"
    assert row[f.CAMPAIGN_NAME] == "Spring"
    assert row[f.CREATIVE_TYPE] == "VIDEO"


def test_event_tags_keep_only_overridden_advertiser_tags(service, ctx):
    """Test that advertiser-wide tags are fetched only when an ad overrides them."""
    service.add(
        "EventTags",
        {"id": "1", "advertiserId": "7"},
        {"id": "2", "advertiserId": "7"},
        {"id": "3", "advertiserId": "8", "campaignId": "1"},
    )
    service.add(
        "Ads",
        {"id": "100", "advertiserId": "7", "eventTagOverrides": [{"id": "2", "enabled": True}]},
        {"id": "101", "advertiserId": "9", "eventTagOverrides": []},
    )
    job = Job(
        entity="EventTags",
        filters=CascadeFilters(campaign_ids=["1"], ad_ids=["100", "101"]),
    )

    items = EventTagStrategy().fetch_items(job, ctx)

    assert sorted(item["id"] for item in items) == ["2", "3"]
    advertiser_calls = [c for c in service.calls_to("list", "EventTags") if "advertiserId" in c[2]]
    assert [c[2] for c in advertiser_calls] == [{"advertiserId": "7"}]
