"""Column titles used by the entity tables.

Every table shares one vocabulary, so a column such as ``Campaign ID`` means
the same thing wherever it appears.
"""

# Common
ARCHIVED = "Archived"
ACTIVE_STATUS = "Active Status"

# Advertiser
ADVERTISER_ID = "Advertiser ID"
ADVERTISER_NAME = "Advertiser Name"

# Site
SITE_ID = "Site ID"
SITE_NAME = "Site Name"

# Landing page
LANDING_PAGE_ID = "Landing Page ID"
LANDING_PAGE_NAME = "Landing Page Name"
LANDING_PAGE_URL = "Landing Page URL"

# Campaign
CAMPAIGN_ID = "Campaign ID"
CAMPAIGN_NAME = "Campaign Name"
CAMPAIGN_START_DATE = "Campaign Start Date"
CAMPAIGN_END_DATE = "Campaign End Date"
BILLING_INVOICE_CODE = "Billing Invoice Code"

# Event tag
EVENT_TAG_ID = "Event Tag ID"
EVENT_TAG_NAME = "Event Tag Name"
EVENT_TAG_STATUS = "Event Tag Status"
ENABLE_BY_DEFAULT = "Enable By Default"
EVENT_TAG_TYPE = "Event Tag Type"
EVENT_TAG_URL = "Event Tag URL"
ENABLED = "Enabled"

# Placement group
PLACEMENT_GROUP_ID = "Placement Group ID"
PLACEMENT_GROUP_NAME = "Placement Group Name"
PLACEMENT_GROUP_TYPE = "Placement Group Type"
PLACEMENT_GROUP_START_DATE = "Placement Group Start Date"
PLACEMENT_GROUP_END_DATE = "Placement Group End Date"
PLACEMENT_GROUP_PRICING_TYPE = "Pricing Type"

# Placement
PLACEMENT_ID = "Placement ID"
PLACEMENT_NAME = "Placement Name"
ACTIVE_VIEW = "Active View and Verification"
AD_BLOCKING = "Ad Blocking"
PLACEMENT_START_DATE = "Placement Start Date"
PLACEMENT_END_DATE = "Placement End Date"
PLACEMENT_TYPE = "Type"
PRICING_SCHEDULE_COST_STRUCTURE = "Pricing Schedule Cost Structure"
PRICING_SCHEDULE_TESTING_START = "Pricing Schedule Testing Starts"
PLACEMENT_SKIPPABLE = "Skippable"
SKIP_OFFSET_SECONDS = "Skip Offset Seconds"
SKIP_OFFSET_PERCENTAGE = "Skip Offset Percentage"
PROGRESS_OFFSET_SECONDS = "Progress Offset Seconds"
PROGRESS_OFFSET_PERCENTAGE = "Progress Offset Percentage"
ADDITIONAL_KEY_VALUES = "Additional Key Values"
ASSET_SIZE = "Asset Size"

# Placement pricing schedule
PRICING_PERIOD_START = "Pricing Period Start Date"
PRICING_PERIOD_END = "Pricing Period End Date"
PRICING_PERIOD_RATE = "Pricing Period Rate"
PRICING_PERIOD_UNITS = "Pricing Period Units"

# Creative
CREATIVE_ID = "Creative ID"
CREATIVE_NAME = "Creative Name"
CREATIVE_TYPE = "Creative Type"
CREATIVE_ACTIVE = "Creative Active"
CREATIVE_SIZE = "Creative Size"

# Ad
CREATIVE_ROTATION = "Creative Rotation"
CREATIVE_ROTATION_WEIGHT = "Creative Rotation Weight"
CREATIVE_ROTATION_SEQUENCE = "Creative Rotation Sequence"
AD_PRIORITY = "Ad Priority"
AD_ID = "Ad ID"
AD_NAME = "Ad Name"
AD_START_DATE = "Ad Start Date"
AD_END_DATE = "Ad End Date"
AD_ACTIVE = "Ad Active"
AD_ARCHIVED = "Ad Archived"
ASSIGNMENT_START_DATE = "Start Date"
ASSIGNMENT_END_DATE = "End Date"
HARD_CUTOFF = "Hard Cutoff"
AD_TYPE = "Ad Type"
CUSTOM_CLICK_THROUGH_URL = "Custom URL"

# Child collections injected into parent rows while pushing
PRICING_SCHEDULE_LIST = "pricingSchedule"
PLACEMENT_ASSIGNMENTS_LIST = "placementAssignments"
CREATIVE_ASSIGNMENTS_LIST = "creativeAssignments"
EVENT_TAG_ASSIGNMENTS_LIST = "eventTagAssignments"

# Tables
CAMPAIGN_TABLE = "Campaign"
LANDING_PAGE_TABLE = "Landing Page"
EVENT_TAG_TABLE = "Event Tag"
PLACEMENT_GROUP_TABLE = "Placement Group"
PLACEMENT_TABLE = "Placement"
PRICING_SCHEDULE_TABLE = "Placement Pricing Schedule"
CREATIVE_TABLE = "Creative"
AD_TABLE = "Ad"
AD_PLACEMENT_ASSIGNMENT_TABLE = "Ad Placement Assignment"
AD_CREATIVE_ASSIGNMENT_TABLE = "Ad Creative Assignment"
EVENT_TAG_AD_ASSIGNMENT_TABLE = "Event Tag Ad Assignment"
LOG_TABLE = "Log"
