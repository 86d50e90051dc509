"""
Demand model parameters.
The forecast is a parametrised heuristic, not a trained model; every
coefficient below is meant to be readable by revenue staff.
"""

# ---------------------------------------------------------------------------
# Historical lookbacks
# ---------------------------------------------------------------------------
SEASONAL_LOOKBACK_YEARS = 2
TREND_LOOKBACK_MONTHS = 6

# Booking statuses that hold inventory
CONFIRMED_STATUSES = ["CONFIRMED", "CHECKED_IN", "COMPLETED"]

# Statuses counted as live demand for spike detection
ACTIVE_STATUSES = ["PENDING", "CONFIRMED", "CHECKED_IN", "COMPLETED"]

# ---------------------------------------------------------------------------
# Forecast patterns
# ---------------------------------------------------------------------------

# Base demand share before any multiplier
BASE_DEMAND = 0.7

# Weekday demand multipliers (Monday = 0)
WEEKDAY_DEMAND_PATTERN = [0.70, 0.75, 0.80, 0.85, 0.95, 1.00, 0.90]

# Month demand multipliers (January = 1) used when no history exists
MONTH_DEMAND_PATTERN = {
    1: 0.8, 2: 0.7, 3: 0.9, 4: 1.1, 5: 1.2, 6: 1.3,
    7: 1.4, 8: 1.3, 9: 1.1, 10: 1.0, 11: 0.8, 12: 0.9,
}

# Lead-time demand multipliers: smallest key >= lead time applies
LEAD_TIME_DEMAND_DECAY = {
    0: 1.5,
    1: 1.3,
    3: 1.1,
    7: 1.0,
    14: 0.9,
    30: 0.8,
    60: 0.7,
}
LEAD_TIME_DEMAND_FLOOR = 0.7

# ---------------------------------------------------------------------------
# Trend detection
# ---------------------------------------------------------------------------

# Absolute momentum (fractional weekly change) below which demand is flat
TREND_FLAT_THRESHOLD = 0.05

# ---------------------------------------------------------------------------
# Season classification on the seasonal index
# ---------------------------------------------------------------------------
SEASON_CLASSES = [
    (1.25, "PEAK_SEASON"),
    (1.05, "HIGH_SEASON"),
    (0.85, "SHOULDER_SEASON"),
]
SEASON_CLASS_FLOOR = "LOW_SEASON"

# ---------------------------------------------------------------------------
# Day-level recommendation cut-offs (occupancy probability %)
# ---------------------------------------------------------------------------
DAY_INCREASE_HIGH = 80
DAY_INCREASE_MEDIUM = 60
DAY_DECREASE_HIGH = 30
DAY_DECREASE_MEDIUM = 50

# Forecast summary cut-offs
HIGH_DEMAND_DAY_PCT = 70
LOW_DEMAND_DAY_PCT = 40

# ---------------------------------------------------------------------------
# Analysis cache
# ---------------------------------------------------------------------------
ANALYSIS_CACHE_TTL_SECONDS = 30 * 60

# Floor for a month that was observed but saw no demand
MIN_SEASONAL_INDEX = 0.1

# ---------------------------------------------------------------------------
# Occupancy performance labels (overall occupancy %, descending)
# ---------------------------------------------------------------------------
OCCUPANCY_PERFORMANCE_BANDS = [
    (85, "EXCELLENT"),
    (70, "GOOD"),
    (50, "AVERAGE"),
]
OCCUPANCY_PERFORMANCE_FLOOR = "POOR"

# Analysis-level pricing advice cut-offs (overall occupancy %)
ANALYSIS_REDUCE_BELOW = 60
ANALYSIS_INCREASE_ABOVE = 85
