"""
Calendar and booking-derived features used by the demand and pricing agents.
Transforms raw stay records into per-night, per-week and per-month frames.
"""
import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, pd.Timestamp, str]


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def to_date(value: DateLike) -> date:
    """Coerce a date-like value to a plain `date`."""
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.to_datetime(value).date()


def shift_year(d: date, year: int) -> date:
    """Shift date to target year, handling leap-year edge cases."""
    try:
        return d.replace(year=year)
    except ValueError:
        # e.g. Feb 29 in a non-leap year -> Feb 28
        last_day = calendar.monthrange(year, d.month)[1]
        return d.replace(year=year, day=min(d.day, last_day))


def in_date_window(day: DateLike, start: DateLike, end: DateLike,
                   recurring: bool = False) -> bool:
    """
    True if `day` falls inside [start, end] (both inclusive).

    Recurring windows are re-anchored to `day`'s year; a recurring window
    whose end precedes its start after re-anchoring wraps the year end
    (e.g. 20 Dec - 5 Jan).
    """
    day, start, end = to_date(day), to_date(start), to_date(end)
    if not recurring:
        return start <= day <= end
    start_adj = shift_year(start, day.year)
    end_adj = shift_year(end, day.year)
    if start_adj <= end_adj:
        return start_adj <= day <= end_adj
    return day >= start_adj or day <= end_adj


def date_range(start: DateLike, end: DateLike) -> List[date]:
    """Contiguous list of dates from start to end inclusive."""
    start, end = to_date(start), to_date(end)
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


# ---------------------------------------------------------------------------
# Booking frames
# ---------------------------------------------------------------------------

BOOKING_DATE_COLUMNS = ["check_in", "check_out", "created_at"]


def normalize_bookings(bookings: pd.DataFrame) -> pd.DataFrame:
    """Ensure booking date columns are datetimes and quantities are integers."""
    df = bookings.copy()
    for col in BOOKING_DATE_COLUMNS:
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], errors="coerce")
    if "quantity" in df.columns:
        df["quantity"] = df["quantity"].fillna(1).astype(int)
    if "total_amount" in df.columns:
        df["total_amount"] = df["total_amount"].fillna(0.0).astype(float)
    return df


def expand_stays_to_nights(bookings: pd.DataFrame) -> pd.DataFrame:
    """
    One row per occupied night: a stay holds its rooms on every date in
    [check_in, check_out).

    Returns
    -------
    pd.DataFrame with columns: booking_id, room_type, date, rooms, revenue
    (the booking's total amount spread evenly over its nights)
    """
    columns = ["booking_id", "room_type", "date", "rooms", "revenue"]
    if bookings.empty:
        return pd.DataFrame(columns=columns)

    df = normalize_bookings(bookings)
    df = df.dropna(subset=["check_in", "check_out"])
    df = df[df["check_out"] > df["check_in"]].copy()
    if df.empty:
        return pd.DataFrame(columns=columns)

    df["date"] = pd.Series(
        [
            list(pd.date_range(ci.normalize(), co.normalize() - pd.Timedelta(days=1), freq="D"))
            for ci, co in zip(df["check_in"], df["check_out"])
        ],
        index=df.index,
        dtype="object",
    )
    nights_per_stay = (df["check_out"].dt.normalize() - df["check_in"].dt.normalize()).dt.days.clip(lower=1)
    amount = df["total_amount"] if "total_amount" in df.columns else 0.0
    df["revenue"] = amount / nights_per_stay
    nights = df.explode("date")
    nights = nights.dropna(subset=["date"])
    nights = nights.rename(columns={"quantity": "rooms"})
    nights["date"] = pd.to_datetime(nights["date"])
    return nights[columns].reset_index(drop=True)


def daily_occupied_rooms(nights: pd.DataFrame, days: List[date],
                         room_type: Optional[str] = None) -> pd.Series:
    """Occupied room count per date, reindexed over `days` with zeros."""
    index = pd.DatetimeIndex(pd.to_datetime(list(days)))
    if nights.empty:
        return pd.Series(0, index=index, dtype=int)
    df = nights if room_type is None else nights[nights["room_type"] == room_type]
    counts = df.groupby("date")["rooms"].sum()
    return counts.reindex(index, fill_value=0).astype(int)


def add_lead_time_features(bookings: pd.DataFrame) -> pd.DataFrame:
    """Compute lead time (days between booking creation and check-in)."""
    df = normalize_bookings(bookings)
    df["lead_time_days"] = (
        df["check_in"].dt.normalize() - df["created_at"].dt.normalize()
    ).dt.days
    df["lead_time_days"] = df["lead_time_days"].clip(lower=0)
    return df


def lead_time_distribution(lead_times: pd.Series) -> Dict[str, int]:
    """Bucket lead times into same-day / 1 / 7 / 14 / 30 / 30+ day counts."""
    buckets = {"0": 0, "1": 0, "7": 0, "14": 0, "30": 0, "30+": 0}
    if lead_times.empty:
        return buckets
    lt = lead_times.dropna().astype(int)
    bins = [-np.inf, 0, 1, 7, 14, 30, np.inf]
    labels = list(buckets.keys())
    counts = pd.cut(lt, bins=bins, labels=labels).value_counts()
    for label in labels:
        buckets[label] = int(counts.get(label, 0))
    return buckets


def weekly_booking_counts(bookings: pd.DataFrame, since: datetime,
                          until: datetime) -> pd.Series:
    """
    Bookings created per calendar week (Monday-anchored) between since and
    until, with empty weeks filled as zero.
    """
    week_index = pd.date_range(
        pd.Timestamp(since).normalize() - pd.Timedelta(days=pd.Timestamp(since).weekday()),
        pd.Timestamp(until).normalize(),
        freq="W-MON",
    )
    if bookings.empty:
        return pd.Series(0, index=week_index, dtype=int)
    df = normalize_bookings(bookings)
    df = df[(df["created_at"] >= since) & (df["created_at"] < until)]
    if df.empty:
        return pd.Series(0, index=week_index, dtype=int)
    week_start = df["created_at"].dt.normalize() - pd.to_timedelta(
        df["created_at"].dt.weekday, unit="D"
    )
    counts = week_start.value_counts().sort_index()
    return counts.reindex(week_index, fill_value=0).astype(int)
