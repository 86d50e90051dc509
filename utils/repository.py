"""
Storage adapter for the yield engine.
The only module that knows table layouts; everything else talks in
DataFrames, HotelYieldConfig, RuleSet and PriceQuote objects.
"""
import json
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy import (
    Boolean, Column, DateTime, Float, Integer, MetaData, String, Table, Text,
)

from config.db_config import TABLES
from config.model_config import CONFIRMED_STATUSES
from utils.db_utils import (
    db_time,
    execute_statement,
    get_sqlalchemy_engine,
    insert_dataframe,
    read_table,
    upsert_rows,
)
from utils.feature_engineering import normalize_bookings
from utils.hotel_config import HotelYieldConfig
from utils.pricing_cache import PriceQuote
from utils.rules import RuleSet

logger = logging.getLogger(__name__)

metadata = MetaData()

Table(
    TABLES["hotels"], metadata,
    Column("hotel_id", String(64), primary_key=True),
    Column("name", String(200)),
    Column("yield_enabled", Boolean, nullable=False, default=True),
    Column("config_json", Text),
)

Table(
    TABLES["rooms"], metadata,
    Column("hotel_id", String(64), primary_key=True),
    Column("room_type", String(64), primary_key=True),
    Column("quantity", Integer, nullable=False),
    Column("base_price", Float, nullable=False),
    Column("current_price", Float),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("yield_enabled", Boolean, nullable=False, default=True),
)

Table(
    TABLES["bookings"], metadata,
    Column("booking_id", String(64), primary_key=True),
    Column("hotel_id", String(64), index=True, nullable=False),
    Column("room_type", String(64), nullable=False),
    Column("quantity", Integer, nullable=False, default=1),
    Column("check_in", DateTime, nullable=False),
    Column("check_out", DateTime, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("total_amount", Float, default=0.0),
    Column("status", String(32), nullable=False),
)

Table(
    TABLES["pricing_rules"], metadata,
    Column("rule_id", String(64), primary_key=True),
    Column("hotel_id", String(64), index=True),
    Column("kind", String(32)),
    Column("priority", Integer),
    Column("is_active", Boolean),
    Column("rule_json", Text, nullable=False),
)

Table(
    TABLES["price_calendar"], metadata,
    Column("hotel_id", String(64), primary_key=True),
    Column("room_type", String(64), primary_key=True),
    Column("date", String(10), primary_key=True),
    Column("base_price", Float),
    Column("final_price", Float),
    Column("demand_level", String(16)),
    Column("factors_json", Text),
    Column("fallback", Boolean),
    Column("computed_at", String(32), index=True),
)

Table(
    TABLES["price_changes"], metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hotel_id", String(64), index=True),
    Column("room_type", String(64)),
    Column("old_price", Float),
    Column("new_price", Float),
    Column("change_pct", Float),
    Column("reason", String(64)),
    Column("created_at", DateTime),
    Column("expires_at", DateTime),
)

Table(
    TABLES["pricing_history"], metadata,
    Column("hotel_id", String(64), primary_key=True),
    Column("date", String(10), primary_key=True),
    Column("occupancy_rate", Float),
    Column("adr", Float),
    Column("revpar", Float),
    Column("revenue", Float),
    Column("room_nights", Integer),
    Column("recommendations_json", Text),
    Column("rule_effectiveness_json", Text),
    Column("created_at", DateTime),
)

Table(
    TABLES["demand_patterns"], metadata,
    Column("hotel_id", String(64), primary_key=True),
    Column("computed_at", DateTime, primary_key=True),
    Column("seasonal_json", Text),
    Column("weekly_pattern_json", Text),
    Column("trend_direction", String(16)),
    Column("trend_momentum", Float),
)


def _iso_day(value) -> str:
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.isoformat()
    return pd.Timestamp(value).date().isoformat()


def room_price(room) -> float:
    """Current price of a rooms-table row, falling back to its base price."""
    current = room.get("current_price")
    if current is None or pd.isna(current) or current <= 0:
        return float(room["base_price"])
    return float(current)


class YieldRepository:
    """Reads historical data and writes pricing output for the engine."""

    def __init__(self, engine=None):
        self.engine = engine or get_sqlalchemy_engine()

    def create_schema(self):
        """Create every table that does not exist yet."""
        metadata.create_all(self.engine)
        logger.info(f"Schema ready ({len(metadata.tables)} tables).")

    # ------------------------------------------------------------------
    # Hotels
    # ------------------------------------------------------------------

    def save_hotel(self, config: HotelYieldConfig):
        config.validate()
        row = pd.DataFrame([{
            "hotel_id": config.hotel_id,
            "name": config.name,
            "yield_enabled": bool(config.enabled),
            "config_json": json.dumps(config.to_dict()),
        }])
        upsert_rows(row, "hotels", ["hotel_id"], engine=self.engine)

    def get_hotel_config(self, hotel_id: str) -> Optional[HotelYieldConfig]:
        df = read_table("hotels", engine=self.engine, where_clause="hotel_id = :hotel_id",
                        params={"hotel_id": str(hotel_id)})
        if df.empty:
            return None
        row = df.iloc[0]
        data = json.loads(row["config_json"]) if row["config_json"] else {}
        return HotelYieldConfig.from_dict(row["hotel_id"], data, name=row["name"] or "",
                                          enabled=bool(row["yield_enabled"]))

    def list_yield_hotels(self) -> List[str]:
        df = read_table("hotels", engine=self.engine)
        if df.empty:
            return []
        return df[df["yield_enabled"].astype(bool)]["hotel_id"].astype(str).tolist()

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def save_rooms(self, rooms: pd.DataFrame):
        df = rooms.copy()
        if "current_price" not in df.columns:
            df["current_price"] = df["base_price"]
        df["current_price"] = df["current_price"].fillna(df["base_price"])
        for col, default in (("is_active", True), ("yield_enabled", True)):
            if col not in df.columns:
                df[col] = default
        df["hotel_id"] = df["hotel_id"].astype(str)
        upsert_rows(df, "rooms", ["hotel_id", "room_type"], engine=self.engine)

    def get_rooms(self, hotel_id: str, active_only: bool = True) -> pd.DataFrame:
        df = read_table("rooms", engine=self.engine, where_clause="hotel_id = :hotel_id",
                        params={"hotel_id": str(hotel_id)})
        if active_only and not df.empty:
            df = df[df["is_active"].astype(bool)]
        return df.reset_index(drop=True)

    def total_rooms(self, hotel_id: str, room_type: str = None) -> int:
        rooms = self.get_rooms(hotel_id)
        if room_type is not None:
            rooms = rooms[rooms["room_type"] == room_type]
        return int(rooms["quantity"].sum()) if not rooms.empty else 0

    def update_current_price(self, hotel_id: str, room_type: str, price: float):
        execute_statement(
            f"UPDATE {TABLES['rooms']} SET current_price = :price "
            "WHERE hotel_id = :hotel_id AND room_type = :room_type",
            engine=self.engine,
            params={"price": float(price), "hotel_id": str(hotel_id), "room_type": room_type},
        )

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def add_bookings(self, bookings: pd.DataFrame):
        df = normalize_bookings(bookings)
        df["hotel_id"] = df["hotel_id"].astype(str)
        insert_dataframe(df, "bookings", engine=self.engine)

    def get_bookings(self, hotel_id: str, statuses: Iterable[str] = None,
                     created_since: datetime = None, stay_from: datetime = None,
                     stay_until: datetime = None) -> pd.DataFrame:
        """
        Bookings for a hotel, optionally limited by status, creation time, or
        stays overlapping [stay_from, stay_until).
        """
        statuses = list(statuses) if statuses is not None else list(CONFIRMED_STATUSES)
        params = {"hotel_id": str(hotel_id)}
        clauses = ["hotel_id = :hotel_id"]
        status_params = {f"s{i}": s for i, s in enumerate(statuses)}
        if status_params:
            clauses.append(f"status IN ({', '.join(':' + k for k in status_params)})")
            params.update(status_params)
        if created_since is not None:
            clauses.append("created_at >= :created_since")
            params["created_since"] = db_time(created_since)
        if stay_until is not None:
            clauses.append("check_in < :stay_until")
            params["stay_until"] = db_time(stay_until)
        if stay_from is not None:
            clauses.append("check_out > :stay_from")
            params["stay_from"] = db_time(stay_from)

        df = read_table("bookings", engine=self.engine, where_clause=" AND ".join(clauses),
                        params=params)
        return normalize_bookings(df)

    # ------------------------------------------------------------------
    # Pricing rules
    # ------------------------------------------------------------------

    def save_rule(self, rule: RuleSet):
        rule.validate()
        row = pd.DataFrame([{
            "rule_id": rule.rule_id,
            "hotel_id": rule.hotel_id,
            "kind": rule.kind,
            "priority": rule.priority,
            "is_active": bool(rule.is_active),
            "rule_json": json.dumps(rule.to_dict()),
        }])
        upsert_rows(row, "pricing_rules", ["rule_id"], engine=self.engine)

    def get_rules(self, hotel_id: str = None) -> List[RuleSet]:
        """Rules scoped to `hotel_id` plus global rules; every rule when hotel_id is None."""
        if hotel_id is None:
            df = read_table("pricing_rules", engine=self.engine)
        else:
            df = read_table("pricing_rules", engine=self.engine,
                            where_clause="hotel_id = :hotel_id OR hotel_id IS NULL",
                            params={"hotel_id": str(hotel_id)})
        return [RuleSet.from_dict(json.loads(raw)) for raw in df["rule_json"]] if not df.empty else []

    # ------------------------------------------------------------------
    # Price calendar
    # ------------------------------------------------------------------

    def save_price_quotes(self, quotes: List[PriceQuote]):
        if not quotes:
            return
        rows = pd.DataFrame([{
            "hotel_id": q.hotel_id,
            "room_type": q.room_type,
            "date": q.date.isoformat(),
            "base_price": q.base_price,
            "final_price": q.final_price,
            "demand_level": q.demand_level,
            "factors_json": json.dumps([[n, v] for n, v in q.factors]),
            "fallback": bool(q.fallback),
            "computed_at": q.computed_at.isoformat(),
        } for q in quotes])
        upsert_rows(rows, "price_calendar", ["hotel_id", "room_type", "date"], engine=self.engine)

    def get_price_quote(self, hotel_id: str, room_type: str, day) -> Optional[PriceQuote]:
        df = read_table(
            "price_calendar", engine=self.engine,
            where_clause="hotel_id = :hotel_id AND room_type = :room_type AND date = :day",
            params={"hotel_id": str(hotel_id), "room_type": room_type, "day": _iso_day(day)},
        )
        if df.empty:
            return None
        row = df.iloc[0].to_dict()
        row["factors"] = json.loads(row.pop("factors_json") or "[]")
        return PriceQuote.from_record(row)

    def get_price_calendar(self, hotel_id: str, start, end) -> pd.DataFrame:
        return read_table(
            "price_calendar", engine=self.engine,
            where_clause="hotel_id = :hotel_id AND date >= :start AND date <= :end",
            params={"hotel_id": str(hotel_id), "start": _iso_day(start), "end": _iso_day(end)},
        )

    def prune_price_calendar(self, computed_before: datetime) -> int:
        removed = execute_statement(
            f"DELETE FROM {TABLES['price_calendar']} WHERE computed_at < :cutoff",
            engine=self.engine,
            params={"cutoff": computed_before.isoformat()},
        )
        return removed

    # ------------------------------------------------------------------
    # Price changes
    # ------------------------------------------------------------------

    def record_price_change(self, hotel_id: str, room_type: str, old_price: float,
                            new_price: float, reason: str, at: datetime,
                            expires_at: datetime = None):
        change_pct = (new_price - old_price) / old_price * 100 if old_price else 0.0
        row = pd.DataFrame([{
            "hotel_id": str(hotel_id),
            "room_type": room_type,
            "old_price": float(old_price),
            "new_price": float(new_price),
            "change_pct": round(change_pct, 4),
            "reason": reason,
            "created_at": at,
            "expires_at": expires_at,
        }])
        insert_dataframe(row, "price_changes", engine=self.engine)

    def get_price_changes(self, hotel_id: str, since: datetime = None) -> pd.DataFrame:
        params = {"hotel_id": str(hotel_id)}
        where = "hotel_id = :hotel_id"
        if since is not None:
            where += " AND created_at >= :since"
            params["since"] = db_time(since)
        return read_table("price_changes", engine=self.engine, where_clause=where, params=params)

    def latest_price_changes(self, hotel_id: str) -> pd.DataFrame:
        """The most recent price change per room type, however old."""
        changes = self.get_price_changes(hotel_id)
        if changes.empty:
            return changes
        changes["created_at"] = pd.to_datetime(changes["created_at"])
        changes["expires_at"] = pd.to_datetime(changes["expires_at"])
        changes = changes.sort_values(["created_at", "id"])
        return changes.groupby("room_type").tail(1).reset_index(drop=True)

    # ------------------------------------------------------------------
    # History and patterns
    # ------------------------------------------------------------------

    def save_pricing_history(self, record: Dict):
        row = pd.DataFrame([{
            "hotel_id": str(record["hotel_id"]),
            "date": _iso_day(record["date"]),
            "occupancy_rate": record["occupancy_rate"],
            "adr": record["adr"],
            "revpar": record["revpar"],
            "revenue": record["revenue"],
            "room_nights": record["room_nights"],
            "recommendations_json": json.dumps(record.get("recommendations", [])),
            "rule_effectiveness_json": json.dumps(record.get("rule_effectiveness", [])),
            "created_at": record["created_at"],
        }])
        upsert_rows(row, "pricing_history", ["hotel_id", "date"], engine=self.engine)

    def get_pricing_history(self, hotel_id: str, start=None, end=None) -> pd.DataFrame:
        params = {"hotel_id": str(hotel_id)}
        where = "hotel_id = :hotel_id"
        if start is not None:
            where += " AND date >= :start"
            params["start"] = _iso_day(start)
        if end is not None:
            where += " AND date <= :end"
            params["end"] = _iso_day(end)
        df = read_table("pricing_history", engine=self.engine, where_clause=where, params=params)
        return df.sort_values("date").reset_index(drop=True) if not df.empty else df

    def save_demand_pattern(self, hotel_id: str, seasonal_index: Dict[int, float],
                            weekly_pattern: Dict[str, float], trend_direction: str,
                            trend_momentum: float, at: datetime):
        row = pd.DataFrame([{
            "hotel_id": str(hotel_id),
            "computed_at": at,
            "seasonal_json": json.dumps({str(k): v for k, v in seasonal_index.items()}),
            "weekly_pattern_json": json.dumps(weekly_pattern),
            "trend_direction": trend_direction,
            "trend_momentum": float(trend_momentum),
        }])
        upsert_rows(row, "demand_patterns", ["hotel_id", "computed_at"], engine=self.engine)

    def get_latest_demand_pattern(self, hotel_id: str) -> Optional[Dict]:
        df = read_table("demand_patterns", engine=self.engine, where_clause="hotel_id = :hotel_id",
                        params={"hotel_id": str(hotel_id)})
        if df.empty:
            return None
        row = df.sort_values("computed_at").iloc[-1]
        return {
            "hotel_id": row["hotel_id"],
            "computed_at": pd.Timestamp(row["computed_at"]).to_pydatetime(),
            "seasonal_index": {int(k): float(v) for k, v in json.loads(row["seasonal_json"]).items()},
            "weekly_pattern": json.loads(row["weekly_pattern_json"]),
            "trend_direction": row["trend_direction"],
            "trend_momentum": float(row["trend_momentum"]),
        }
