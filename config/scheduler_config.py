"""
Cadences for the scheduled yield jobs.
Each job is switched on by its own environment flag.
"""
import os


def _flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


SCHEDULER_TIMEZONE = os.getenv("YIELD_TIMEZONE", "Europe/Paris")

# ---------------------------------------------------------------------------
# Job table: name -> cron fields, description, enabled flag
# ---------------------------------------------------------------------------
JOB_CONFIG = {
    "hourly_price_update": {
        "cron": {"minute": "0", "hour": "6-23"},
        "description": "Hourly price adjustments based on real-time demand",
        "enabled": _flag("HOURLY_YIELD_ENABLED"),
    },
    "daily_yield_calculation": {
        "cron": {"minute": "0", "hour": "2"},
        "description": "Daily yield analysis and price optimization",
        "enabled": _flag("DAILY_YIELD_ENABLED"),
    },
    "weekly_demand_analysis": {
        "cron": {"minute": "0", "hour": "3", "day_of_week": "sun"},
        "description": "Weekly demand pattern analysis",
        "enabled": _flag("WEEKLY_ANALYSIS_ENABLED"),
    },
    "monthly_seasonal_update": {
        "cron": {"minute": "0", "hour": "4", "day": "1"},
        "description": "Monthly seasonal pricing updates",
        "enabled": _flag("SEASONAL_UPDATE_ENABLED"),
    },
    "real_time_adjustments": {
        "cron": {"minute": "*/15", "hour": "18-22"},
        "description": "Real-time pricing adjustments during peak booking hours",
        "enabled": _flag("REALTIME_YIELD_ENABLED"),
    },
    "performance_monitoring": {
        "cron": {"minute": "0", "hour": "*/6"},
        "description": "Yield management performance monitoring",
        "enabled": _flag("YIELD_MONITORING_ENABLED"),
    },
}

# ---------------------------------------------------------------------------
# Per-hotel execution
# ---------------------------------------------------------------------------

# Seconds before a single hotel's sub-task is abandoned (0 disables)
HOTEL_TASK_TIMEOUT_SECONDS = float(os.getenv("YIELD_HOTEL_TIMEOUT", "5"))

# Hotels processed between short pauses, and the pause itself
HOTEL_BATCH_SIZE = int(os.getenv("YIELD_HOTEL_BATCH_SIZE", "50"))
HOTEL_BATCH_PAUSE_SECONDS = float(os.getenv("YIELD_HOTEL_BATCH_PAUSE", "0.1"))

# APScheduler guardrails
MISFIRE_GRACE_SECONDS = 300
