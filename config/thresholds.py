"""
Business rule thresholds for dynamic pricing and yield decisions.
Defaults mirror the hotel yield configuration and should be revisited
whenever revenue managers recalibrate a property.
"""

# ---------------------------------------------------------------------------
# Occupancy bands (lower bound %, multiplier), ascending
# ---------------------------------------------------------------------------
OCCUPANCY_BANDS = [
    ("VERY_LOW", 0.0, 0.70),
    ("LOW", 30.0, 0.85),
    ("MODERATE", 50.0, 1.00),
    ("HIGH", 70.0, 1.15),
    ("VERY_HIGH", 85.0, 1.30),
    ("CRITICAL", 95.0, 1.50),
]

# ---------------------------------------------------------------------------
# Day-of-week multipliers (Monday = 0)
# ---------------------------------------------------------------------------
WEEKDAY_NAMES = [
    "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY",
    "FRIDAY", "SATURDAY", "SUNDAY",
]

DAY_OF_WEEK_MULTIPLIERS = {
    "MONDAY": 0.85,
    "TUESDAY": 0.85,
    "WEDNESDAY": 0.90,
    "THURSDAY": 0.95,
    "FRIDAY": 1.15,
    "SATURDAY": 1.25,
    "SUNDAY": 0.90,
}

# ---------------------------------------------------------------------------
# Lead-time tiers (days in advance, multiplier, label), ascending
# The highest tier <= actual lead time applies.
# ---------------------------------------------------------------------------
LEAD_TIME_TIERS = [
    (0, 1.40, "SAME_DAY"),
    (1, 1.30, "LAST_MINUTE"),
    (3, 1.10, "SHORT_TERM"),
    (7, 1.00, "ADVANCE"),
    (30, 0.95, "ADVANCE"),
    (60, 0.90, "EARLY_BIRD"),
]

# ---------------------------------------------------------------------------
# Strategy weights (must sum to 1.0)
# ---------------------------------------------------------------------------
FACTOR_NAMES = [
    "occupancy", "seasonal", "day_of_week", "event",
    "lead_time", "competitor", "other",
]

STRATEGY_WEIGHTS = {
    "CONSERVATIVE": {
        "occupancy": 0.20,
        "seasonal": 0.25,
        "day_of_week": 0.20,
        "event": 0.15,
        "lead_time": 0.10,
        "competitor": 0.05,
        "other": 0.05,
    },
    "MODERATE": {
        "occupancy": 0.30,
        "seasonal": 0.20,
        "day_of_week": 0.15,
        "event": 0.15,
        "lead_time": 0.10,
        "competitor": 0.05,
        "other": 0.05,
    },
    "AGGRESSIVE": {
        "occupancy": 0.40,
        "seasonal": 0.15,
        "day_of_week": 0.10,
        "event": 0.15,
        "lead_time": 0.10,
        "competitor": 0.05,
        "other": 0.05,
    },
}

DEFAULT_STRATEGY = "MODERATE"

for _name, _weights in STRATEGY_WEIGHTS.items():
    assert abs(sum(_weights.values()) - 1.0) < 1e-9, f"{_name} weights must sum to 1.0"
    assert set(_weights) == set(FACTOR_NAMES), f"{_name} weights must cover every factor"

# ---------------------------------------------------------------------------
# Demand label bands on the blended multiplier, descending
# ---------------------------------------------------------------------------
DEMAND_LABEL_BANDS = [
    (1.5, "PEAK"),
    (1.3, "VERY_HIGH"),
    (1.1, "HIGH"),
    (0.9, "NORMAL"),
    (0.7, "LOW"),
]
DEMAND_LABEL_FLOOR = "VERY_LOW"

# ---------------------------------------------------------------------------
# Competitor positioning (used only when a competitor feed is wired)
# ---------------------------------------------------------------------------
COMPETITOR_OVERPRICED_RATIO = 1.20
COMPETITOR_UNDERPRICED_RATIO = 0.80
COMPETITOR_OVERPRICED_MULTIPLIER = 0.95
COMPETITOR_UNDERPRICED_MULTIPLIER = 1.05

# Static multipliers returned when an integration is enabled but has no feed
WEATHER_STUB_MULTIPLIER = 1.0
COMPETITOR_STUB_MULTIPLIER = 1.0

# ---------------------------------------------------------------------------
# Hourly price updates
# ---------------------------------------------------------------------------

# Minimum % change vs. current price before a new price is applied
PRICE_CHANGE_SIGNIFICANCE_PCT = 5.0

# Default cap on any single applied change (% of current price)
MAX_DAILY_PRICE_CHANGE_PCT = 20.0

# ---------------------------------------------------------------------------
# Demand spike response
# ---------------------------------------------------------------------------

# Bookings in the trailing hour >= this multiple of the historical average
SPIKE_RATIO_THRESHOLD = 2.0

# Fraction of the excess ratio converted into a price boost
SPIKE_SENSITIVITY = 0.3

# Boosted price never exceeds current price x this cap
SPIKE_MAX_MULTIPLIER = 1.5

# Hours the boosted price stays in force
SPIKE_WINDOW_HOURS = 2

# Weeks of same-weekday/same-hour history used for the spike baseline
SPIKE_BASELINE_WEEKS = 4

# ---------------------------------------------------------------------------
# Daily recommendations
# ---------------------------------------------------------------------------
RECOMMEND_INCREASE_OCCUPANCY = 90.0
RECOMMEND_DISCOUNT_OCCUPANCY = 50.0

# ---------------------------------------------------------------------------
# Rule performance monitoring
# ---------------------------------------------------------------------------

# Trailing window (days) for the negative-revenue-impact scan
DEGRADED_RULE_LOOKBACK_DAYS = 7

# Minimum applications in the window before a rule can be flagged
DEGRADED_RULE_MIN_APPLICATIONS = 1

# ---------------------------------------------------------------------------
# Price cache
# ---------------------------------------------------------------------------
PRICE_FRESHNESS_SECONDS = 60 * 60
PRICE_RETENTION_DAYS = 90

# Days ahead priced by the scheduled jobs
PRICING_HORIZON_DAYS = 30

# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

# Days of per-application impact history kept on each rule
RULE_IMPACT_RETENTION_DAYS = 30

# Rule priority range (higher wins)
RULE_PRIORITY_MIN = 1
RULE_PRIORITY_MAX = 10
