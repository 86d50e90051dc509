"""
Storage configuration for the yield engine.
Override via environment variables (or a .env file loaded by main.py).
"""
import os

# ---------------------------------------------------------------------------
# Connection settings
# Any SQLAlchemy URL works; the default is a local SQLite file.
# ---------------------------------------------------------------------------

DB_URL = os.getenv("YIELD_DB_URL", "sqlite:///yield_engine.db")
DB_POOL_SIZE = int(os.getenv("YIELD_DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("YIELD_DB_MAX_OVERFLOW", "10"))

# ---------------------------------------------------------------------------
# Table names
# ---------------------------------------------------------------------------
TABLES = {
    "hotels": "hotels",
    "rooms": "rooms",
    "bookings": "bookings",
    "pricing_rules": "pricing_rules",
    "price_calendar": "price_calendar",
    "price_changes": "price_changes",
    "pricing_history": "pricing_history",
    "demand_patterns": "demand_patterns",
}

# ---------------------------------------------------------------------------
# Query settings
# ---------------------------------------------------------------------------
QUERY_TIMEOUT = 30  # seconds
BATCH_SIZE = 1000   # rows per batch for large inserts
