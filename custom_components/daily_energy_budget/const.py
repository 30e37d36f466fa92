"""Constants for the Daily Energy Budget integration."""

DOMAIN = "daily_energy_budget"

# Default Configuration Values
DEFAULT_NAME = "Daily Energy Budget"
DEFAULT_TIME_ZONE = "Europe/Oslo"
DEFAULT_DAILY_BUDGET_KWH = 0.0
DEFAULT_PRICE_SHAPING_ENABLED = True
DEFAULT_PRICE_SHAPING_FLEX_SHARE = 0.35
DEFAULT_CONTROLLED_USAGE_WEIGHT = 0.3
DEFAULT_CAPACITY_MARGIN_KW = 0.0
DEFAULT_MAX_ENERGY_DELTA = 50.0  # kWh per minute; larger meter jumps are treated as glitches

MIN_DAILY_BUDGET_KWH = 0.0
MAX_DAILY_BUDGET_KWH = 1000.0

# Profile Learning
# Confidence reaches 1.0 after this many finalized days
CONFIDENCE_FULL_DAYS = 14

# Default Profile: flat base with modest morning and evening bumps.
# Indexed by local hour-of-day, normalized before use.
DEFAULT_PROFILE_BUMPS = {
    6: 0.3,
    7: 0.5,
    8: 0.4,
    16: 0.2,
    17: 0.5,
    18: 0.8,
    19: 0.9,
    20: 0.8,
    21: 0.6,
    22: 0.4,
}

# Observed Peak/Floor Model
OBSERVED_WINDOW_DAYS = 14
OBSERVED_MARGIN_RATIO = 0.2

# Allocation
ALLOCATION_EPSILON = 1e-6
PREVIOUS_PLAN_BLEND_WEIGHT = 0.7

# Price Shaping
PRICE_FACTOR_MIN = 0.7
PRICE_FACTOR_MAX = 1.3

# Plan rebuild triggers
REBUILD_USAGE_DELTA_KWH = 0.05
REBUILD_MIN_INTERVAL_MINUTES = 5
REBUILD_MAX_INTERVAL_MINUTES = 60

# Persistence
PERSIST_INTERVAL_SECONDS = 60
SAVE_DEBOUNCE_SECONDS = 60
HISTORY_RETENTION_DAYS = 30

# Soft limits
SOFT_LIMIT_MIN_REMAINING_MINUTES = 10
END_OF_HOUR_CAP_MINUTES = 10

# Plan modes
PLAN_MODE_UNLOCKED = "unlocked"
PLAN_MODE_LOCKED_CURRENT = "locked_current"
PLAN_MODE_FROZEN = "frozen"

# Learning status
LEARNING_STATUS_UPDATED = "updated"
LEARNING_STATUS_NO_DAY_START = "skipped_no_day_start"
LEARNING_STATUS_UNRELIABLE = "skipped_unreliable_data"
LEARNING_STATUS_MISSING_TOTALS = "skipped_missing_totals"
LEARNING_STATUS_ZERO_USAGE = "skipped_zero_usage"

# Configuration Keys
CONF_ENERGY_SENSOR = "energy_sensor"
CONF_CONTROLLED_ENERGY_SENSOR = "controlled_energy_sensor"
CONF_PRICE_ENTITY = "price_entity"
CONF_CAPACITY_LIMIT_KW = "capacity_limit_kw"
CONF_CAPACITY_MARGIN_KW = "capacity_margin_kw"
CONF_DAILY_BUDGET_KWH = "daily_budget_kwh"
CONF_BUDGET_ENABLED = "budget_enabled"
CONF_PRICE_SHAPING_ENABLED = "price_shaping_enabled"
CONF_PRICE_SHAPING_FLEX_SHARE = "price_shaping_flex_share"
CONF_CONTROLLED_USAGE_WEIGHT = "controlled_usage_weight"

# Services
SERVICE_RESET_LEARNING = "reset_learning"
SERVICE_REBUILD_PLAN = "rebuild_plan"
SERVICE_GET_PLAN = "get_plan"
SERVICE_SET_DAILY_BUDGET = "set_daily_budget"

PLAN_DAY_TODAY = "today"
PLAN_DAY_TOMORROW = "tomorrow"
PLAN_DAY_YESTERDAY = "yesterday"

# Storage
STORAGE_VERSION = 1
STORAGE_KEY = f"{DOMAIN}.storage"

# Attributes
ATTR_DATE_KEY = "date_key"
ATTR_CURRENT_BUCKET_INDEX = "current_bucket_index"
ATTR_PLAN_MODE = "plan_mode"
ATTR_CONFIDENCE = "confidence"
ATTR_PRICE_SHAPING_ACTIVE = "price_shaping_active"
ATTR_EFFECTIVE_FLEX_SHARE = "effective_flex_share"
ATTR_PLANNED_KWH = "planned_kwh"
ATTR_ACTUAL_KWH = "actual_kwh"
ATTR_ALLOWED_CUM_KWH = "allowed_cum_kwh"
ATTR_START_LABELS = "start_local_labels"
ATTR_PRICE_FACTOR = "price_factor"
ATTR_EXCEEDED = "exceeded"
ATTR_FROZEN = "frozen"
