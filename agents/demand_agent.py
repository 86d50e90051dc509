"""
DEMAND AGENT - Occupancy, Seasonality, Trend & Forecast
==========================================================
Responsibilities:
  1. Measure occupancy, ADR and RevPAR over an analysis window
  2. Derive monthly seasonal indices from up to two years of stays
  3. Measure booking momentum over the trailing six months
  4. Forecast an occupancy probability for every date in the window
  5. Provide live signals (current occupancy, hourly booking baseline)
     to the scheduled jobs
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from config.model_config import (
    ACTIVE_STATUSES,
    ANALYSIS_CACHE_TTL_SECONDS,
    ANALYSIS_INCREASE_ABOVE,
    ANALYSIS_REDUCE_BELOW,
    BASE_DEMAND,
    CONFIRMED_STATUSES,
    DAY_DECREASE_HIGH,
    DAY_DECREASE_MEDIUM,
    DAY_INCREASE_HIGH,
    DAY_INCREASE_MEDIUM,
    HIGH_DEMAND_DAY_PCT,
    LEAD_TIME_DEMAND_DECAY,
    LEAD_TIME_DEMAND_FLOOR,
    LOW_DEMAND_DAY_PCT,
    MIN_SEASONAL_INDEX,
    MONTH_DEMAND_PATTERN,
    OCCUPANCY_PERFORMANCE_BANDS,
    OCCUPANCY_PERFORMANCE_FLOOR,
    SEASON_CLASS_FLOOR,
    SEASON_CLASSES,
    SEASONAL_LOOKBACK_YEARS,
    TREND_FLAT_THRESHOLD,
    TREND_LOOKBACK_MONTHS,
    WEEKDAY_DEMAND_PATTERN,
)
from config.thresholds import SPIKE_BASELINE_WEEKS, WEEKDAY_NAMES
from utils.feature_engineering import (
    add_lead_time_features,
    date_range,
    daily_occupied_rooms,
    expand_stays_to_nights,
    lead_time_distribution,
    shift_year,
    to_date,
    weekly_booking_counts,
)
from utils.repository import YieldRepository

logger = logging.getLogger(__name__)

NEUTRAL_SEASONAL_INDEX = {m: 1.0 for m in range(1, 13)}


@dataclass
class ForecastDay:
    date: date
    demand_score: float
    occupancy_probability: int
    lead_time_days: int
    factors: Dict[str, float] = field(default_factory=dict)
    recommendation: Dict[str, str] = field(default_factory=dict)


@dataclass
class DemandSnapshot:
    """Demand picture for one hotel over one window. Recomputed, never persisted as-is."""
    hotel_id: str
    start: date
    end: date
    computed_at: datetime
    occupancy_rate: float = 0.0
    occupied_room_nights: int = 0
    total_room_nights: int = 0
    revenue: float = 0.0
    adr: float = 0.0
    revpar: float = 0.0
    occupancy_by_room_type: Dict[str, float] = field(default_factory=dict)
    daily_occupancy: Dict[date, float] = field(default_factory=dict)
    weekly_pattern: Dict[str, float] = field(default_factory=dict)
    performance: str = OCCUPANCY_PERFORMANCE_FLOOR
    seasonal_index: Dict[int, float] = field(default_factory=lambda: dict(NEUTRAL_SEASONAL_INDEX))
    season_classification: Dict[int, str] = field(default_factory=dict)
    trend_direction: str = "flat"
    trend_momentum: float = 0.0
    booking_pace: Dict[str, int] = field(default_factory=dict)
    forecast: List[ForecastDay] = field(default_factory=list)
    forecast_summary: Dict = field(default_factory=dict)
    recommendations: List[Dict] = field(default_factory=list)

    def forecast_for(self, day) -> Optional[ForecastDay]:
        day = to_date(day)
        for f in self.forecast:
            if f.date == day:
                return f
        return None

    def to_dict(self) -> Dict:
        return {
            "hotel_id": self.hotel_id,
            "period": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "computed_at": self.computed_at.isoformat(),
            "occupancy": {
                "rate": round(self.occupancy_rate, 2),
                "occupied_room_nights": self.occupied_room_nights,
                "total_room_nights": self.total_room_nights,
                "adr": round(self.adr, 2),
                "revpar": round(self.revpar, 2),
                "revenue": round(self.revenue, 2),
                "by_room_type": {k: round(v, 2) for k, v in self.occupancy_by_room_type.items()},
                "weekly_pattern": {k: round(v, 2) for k, v in self.weekly_pattern.items()},
                "performance": self.performance,
            },
            "seasonal": {
                "indices": {m: round(v, 3) for m, v in self.seasonal_index.items()},
                "classification": self.season_classification,
            },
            "trend": {
                "direction": self.trend_direction,
                "momentum": round(self.trend_momentum, 4),
                "booking_pace": self.booking_pace,
            },
            "forecast": {
                "daily": [
                    {
                        "date": f.date.isoformat(),
                        "demand_score": f.demand_score,
                        "occupancy_probability": f.occupancy_probability,
                        "factors": f.factors,
                        "recommendation": f.recommendation,
                    }
                    for f in self.forecast
                ],
                "summary": self.forecast_summary,
            },
            "recommendations": self.recommendations,
        }


class DemandAnalyzer:
    """
    Agent that turns stay history into demand signals.

    Results are a pure function of the stored bookings at call time; the
    only state is a short-lived result cache.
    """

    def __init__(self, repository: YieldRepository = None, engine=None,
                 clock: Callable[[], datetime] = None,
                 cache_ttl_seconds: float = ANALYSIS_CACHE_TTL_SECONDS):
        self.repository = repository or YieldRepository(engine)
        self.clock = clock or datetime.now
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._cache: Dict[tuple, tuple] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _cached(self, key: tuple, compute: Callable):
        now = self.clock()
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None and now - hit[0] < self.cache_ttl:
            return hit[1]
        value = compute()
        with self._lock:
            for stale in [k for k, (at, _) in self._cache.items() if now - at >= self.cache_ttl]:
                del self._cache[stale]
            self._cache[key] = (now, value)
        return value

    def clear_cache(self, hotel_id: str = None):
        with self._lock:
            if hotel_id is None:
                self._cache.clear()
                return
            for key in [k for k in list(self._cache) if k[1] == str(hotel_id)]:
                del self._cache[key]

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def analyze(self, hotel_id: str, start, end, use_cache: bool = True) -> DemandSnapshot:
        """
        Full demand analysis for `hotel_id` over [start, end] inclusive.

        A hotel with no history gets a zero/neutral snapshot; this method
        does not raise for missing data.
        """
        hotel_id, start, end = str(hotel_id), to_date(start), to_date(end)
        if end < start:
            raise ValueError(f"Analysis window ends before it starts: {start} > {end}")
        if not use_cache:
            return self._analyze(hotel_id, start, end)
        return self._cached(("analysis", hotel_id, start, end),
                            lambda: self._analyze(hotel_id, start, end))

    def _analyze(self, hotel_id: str, start: date, end: date) -> DemandSnapshot:
        t0 = time.time()
        now = self.clock()
        logger.info(f"DEMAND AGENT: Analyzing hotel {hotel_id} for {start} -> {end}")

        snapshot = DemandSnapshot(hotel_id=hotel_id, start=start, end=end, computed_at=now)
        self._fill_occupancy(snapshot)

        snapshot.seasonal_index = self.seasonal_index(hotel_id)
        snapshot.season_classification = self.classify_seasons(snapshot.seasonal_index)

        snapshot.trend_direction, snapshot.trend_momentum = self.trend(hotel_id)
        snapshot.booking_pace = self.booking_pace(hotel_id)

        has_history = snapshot.seasonal_index != NEUTRAL_SEASONAL_INDEX
        snapshot.forecast = self.forecast(start, end, snapshot.seasonal_index, has_history, now.date())
        snapshot.forecast_summary = self.summarize_forecast(snapshot.forecast)
        snapshot.recommendations = self.generate_recommendations(snapshot)

        logger.info(
            f"  Occupancy {snapshot.occupancy_rate:.1f}% ({snapshot.performance}), "
            f"ADR {snapshot.adr:.2f}, RevPAR {snapshot.revpar:.2f}, "
            f"trend {snapshot.trend_direction} ({snapshot.trend_momentum:+.3f}) "
            f"in {time.time() - t0:.2f}s"
        )
        return snapshot

    # ------------------------------------------------------------------
    # 1. Occupancy
    # ------------------------------------------------------------------

    def _fill_occupancy(self, snapshot: DemandSnapshot):
        days = date_range(snapshot.start, snapshot.end)
        rooms = self.repository.get_rooms(snapshot.hotel_id)
        total_rooms = int(rooms["quantity"].sum()) if not rooms.empty else 0

        bookings = self.repository.get_bookings(
            snapshot.hotel_id, statuses=CONFIRMED_STATUSES,
            stay_from=snapshot.start, stay_until=snapshot.end + timedelta(days=1),
        )
        nights = expand_stays_to_nights(bookings)
        if not nights.empty:
            window = (nights["date"] >= pd.Timestamp(snapshot.start)) & \
                     (nights["date"] <= pd.Timestamp(snapshot.end))
            nights = nights[window]

        occupied = daily_occupied_rooms(nights, days)
        occupied_room_nights = int(occupied.sum())
        total_room_nights = total_rooms * len(days)
        revenue = float(nights["revenue"].sum()) if not nights.empty else 0.0

        snapshot.occupied_room_nights = occupied_room_nights
        snapshot.total_room_nights = total_room_nights
        snapshot.revenue = revenue
        snapshot.occupancy_rate = self._rate(occupied_room_nights, total_room_nights)
        snapshot.adr = revenue / occupied_room_nights if occupied_room_nights else 0.0
        snapshot.revpar = revenue / total_room_nights if total_room_nights else 0.0

        daily = {
            ts.date(): self._rate(int(count), total_rooms) for ts, count in occupied.items()
        }
        snapshot.daily_occupancy = daily
        snapshot.weekly_pattern = self.weekly_pattern(daily)
        snapshot.performance = self.categorize_performance(snapshot.occupancy_rate)

        by_type = {}
        for _, room in rooms.iterrows():
            capacity = int(room["quantity"]) * len(days)
            type_nights = int(daily_occupied_rooms(nights, days, room_type=room["room_type"]).sum())
            by_type[room["room_type"]] = self._rate(type_nights, capacity)
        snapshot.occupancy_by_room_type = by_type

    @staticmethod
    def _rate(occupied: int, capacity: int) -> float:
        """Occupied / capacity as a percentage in [0, 100]; 0 when capacity is 0."""
        if capacity <= 0:
            return 0.0
        return float(min(max(occupied / capacity * 100, 0.0), 100.0))

    @staticmethod
    def weekly_pattern(daily: Dict[date, float]) -> Dict[str, float]:
        """Mean occupancy per weekday name over the days observed."""
        if not daily:
            return {}
        s = pd.Series(daily)
        by_day = s.groupby([d.weekday() for d in s.index]).mean()
        return {WEEKDAY_NAMES[i]: float(v) for i, v in by_day.items()}

    @staticmethod
    def categorize_performance(occupancy_rate: float) -> str:
        for threshold, label in OCCUPANCY_PERFORMANCE_BANDS:
            if occupancy_rate >= threshold:
                return label
        return OCCUPANCY_PERFORMANCE_FLOOR

    def occupancy_on(self, hotel_id: str, day, room_type: str = None) -> float:
        """Booked occupancy % for one date (optionally one room type)."""
        day = to_date(day)
        total = self.repository.total_rooms(hotel_id, room_type)
        if total == 0:
            return 0.0
        bookings = self.repository.get_bookings(
            hotel_id, statuses=CONFIRMED_STATUSES,
            stay_from=day, stay_until=day + timedelta(days=1),
        )
        nights = expand_stays_to_nights(bookings)
        occupied = int(daily_occupied_rooms(nights, [day], room_type=room_type).sum())
        return self._rate(occupied, total)

    def current_occupancy(self, hotel_id: str, room_type: str = None) -> float:
        return self.occupancy_on(hotel_id, self.clock().date(), room_type)

    # ------------------------------------------------------------------
    # 2. Seasonality
    # ------------------------------------------------------------------

    def seasonal_index(self, hotel_id: str) -> Dict[int, float]:
        """
        Month -> (average daily demand in month) / (average daily demand overall),
        over up to SEASONAL_LOOKBACK_YEARS of stays. Months without observations
        stay neutral at 1.0.
        """
        return self._cached(("seasonal", str(hotel_id)),
                            lambda: self._seasonal_index(str(hotel_id)))

    def _seasonal_index(self, hotel_id: str) -> Dict[int, float]:
        today = self.clock().date()
        lookback_start = shift_year(today, today.year - SEASONAL_LOOKBACK_YEARS)
        bookings = self.repository.get_bookings(
            hotel_id, statuses=CONFIRMED_STATUSES, stay_from=lookback_start,
            stay_until=today,
        )
        nights = expand_stays_to_nights(bookings)
        if nights.empty:
            return dict(NEUTRAL_SEASONAL_INDEX)

        first_night = max(nights["date"].min().date(), lookback_start)
        last_day = today - timedelta(days=1)
        if last_day < first_night:
            return dict(NEUTRAL_SEASONAL_INDEX)

        days = date_range(first_night, last_day)
        daily = daily_occupied_rooms(nights, days)
        overall = daily.mean()
        if not overall or np.isnan(overall):
            return dict(NEUTRAL_SEASONAL_INDEX)

        monthly = daily.groupby(daily.index.month).mean()
        index = dict(NEUTRAL_SEASONAL_INDEX)
        for month, avg in monthly.items():
            index[int(month)] = max(float(avg / overall), MIN_SEASONAL_INDEX)
        return index

    @staticmethod
    def classify_seasons(seasonal_index: Dict[int, float]) -> Dict[int, str]:
        classes = {}
        for month, value in seasonal_index.items():
            label = SEASON_CLASS_FLOOR
            for threshold, name in SEASON_CLASSES:
                if value >= threshold:
                    label = name
                    break
            classes[month] = label
        return classes

    # ------------------------------------------------------------------
    # 3. Trend
    # ------------------------------------------------------------------

    def trend(self, hotel_id: str):
        """
        Weekly booking volume over the trailing TREND_LOOKBACK_MONTHS, fitted
        with a straight line. Momentum is the slope relative to the mean
        weekly volume (fractional change per week).
        """
        now = self.clock()
        since = (pd.Timestamp(now) - pd.DateOffset(months=TREND_LOOKBACK_MONTHS)).to_pydatetime()
        current_week = pd.Timestamp(now).normalize() - pd.Timedelta(days=now.weekday())

        bookings = self.repository.get_bookings(
            hotel_id, statuses=CONFIRMED_STATUSES, created_since=since,
        )
        counts = weekly_booking_counts(bookings, since, current_week.to_pydatetime())
        # Only complete weeks
        counts = counts[counts.index < current_week]

        if len(counts) < 2 or counts.sum() == 0:
            return "flat", 0.0

        x = np.arange(len(counts), dtype=float)
        slope = np.polyfit(x, counts.values.astype(float), 1)[0]
        momentum = float(slope / counts.mean())

        if momentum > TREND_FLAT_THRESHOLD:
            direction = "increasing"
        elif momentum < -TREND_FLAT_THRESHOLD:
            direction = "decreasing"
        else:
            direction = "flat"
        return direction, momentum

    def booking_pace(self, hotel_id: str) -> Dict[str, int]:
        """How far ahead recent guests book, bucketed."""
        now = self.clock()
        since = (pd.Timestamp(now) - pd.DateOffset(months=TREND_LOOKBACK_MONTHS)).to_pydatetime()
        bookings = self.repository.get_bookings(
            hotel_id, statuses=CONFIRMED_STATUSES, created_since=since,
        )
        if bookings.empty:
            return lead_time_distribution(pd.Series(dtype=int))
        return lead_time_distribution(add_lead_time_features(bookings)["lead_time_days"])

    # ------------------------------------------------------------------
    # 4. Forecast
    # ------------------------------------------------------------------

    @staticmethod
    def lead_time_demand_multiplier(lead_days: int) -> float:
        """Smallest configured key >= lead time; long lead times get the floor."""
        for key in sorted(LEAD_TIME_DEMAND_DECAY):
            if lead_days <= key:
                return LEAD_TIME_DEMAND_DECAY[key]
        return LEAD_TIME_DEMAND_FLOOR

    @staticmethod
    def day_recommendation(occupancy_probability: float) -> Dict[str, str]:
        if occupancy_probability > DAY_INCREASE_HIGH:
            return {"action": "INCREASE_PRICE", "intensity": "HIGH", "reason": "High demand expected"}
        if occupancy_probability > DAY_INCREASE_MEDIUM:
            return {"action": "INCREASE_PRICE", "intensity": "MEDIUM", "reason": "Moderate demand expected"}
        if occupancy_probability < DAY_DECREASE_HIGH:
            return {"action": "DECREASE_PRICE", "intensity": "HIGH", "reason": "Low demand expected"}
        if occupancy_probability < DAY_DECREASE_MEDIUM:
            return {"action": "DECREASE_PRICE", "intensity": "MEDIUM", "reason": "Below average demand"}
        return {"action": "MAINTAIN_PRICE", "intensity": "NONE", "reason": "Normal demand expected"}

    def forecast(self, start: date, end: date, seasonal_index: Dict[int, float],
                 has_history: bool, today: date) -> List[ForecastDay]:
        """
        Demand score per date = base x seasonal x weekday x lead-time, clamped
        to [0, 1]. Without history the monthly prior stands in for the
        learned seasonal index.
        """
        days = []
        for day in date_range(start, end):
            seasonal = seasonal_index[day.month] if has_history else MONTH_DEMAND_PATTERN[day.month]
            weekday = WEEKDAY_DEMAND_PATTERN[day.weekday()]
            lead_days = max((day - today).days, 0)
            lead = self.lead_time_demand_multiplier(lead_days)

            score = BASE_DEMAND * seasonal * weekday * lead
            probability = min(max(score, 0.0), 1.0)
            pct = int(round(probability * 100))
            days.append(ForecastDay(
                date=day,
                demand_score=round(score, 2),
                occupancy_probability=pct,
                lead_time_days=lead_days,
                factors={"seasonal": round(seasonal, 3), "day_of_week": weekday, "lead_time": lead},
                recommendation=self.day_recommendation(pct),
            ))
        return days

    @staticmethod
    def summarize_forecast(forecast: List[ForecastDay]) -> Dict:
        if not forecast:
            return {"average_demand_score": 0.0, "average_occupancy_probability": 0,
                    "total_days": 0, "high_demand_days": 0, "low_demand_days": 0}
        scores = [f.demand_score for f in forecast]
        probs = [f.occupancy_probability for f in forecast]
        return {
            "average_demand_score": round(float(np.mean(scores)), 2),
            "average_occupancy_probability": int(round(float(np.mean(probs)))),
            "total_days": len(forecast),
            "high_demand_days": sum(1 for p in probs if p > HIGH_DEMAND_DAY_PCT),
            "low_demand_days": sum(1 for p in probs if p < LOW_DEMAND_DAY_PCT),
        }

    @staticmethod
    def generate_recommendations(snapshot: DemandSnapshot) -> List[Dict]:
        recs = []
        if snapshot.total_room_nights and snapshot.occupancy_rate < ANALYSIS_REDUCE_BELOW:
            recs.append({
                "type": "PRICING", "priority": "HIGH",
                "action": "Consider reducing prices to increase occupancy",
            })
        elif snapshot.occupancy_rate > ANALYSIS_INCREASE_ABOVE:
            recs.append({
                "type": "PRICING", "priority": "HIGH",
                "action": "Increase prices to maximize revenue from high demand",
            })
        if snapshot.trend_direction == "decreasing":
            recs.append({
                "type": "TREND", "priority": "MEDIUM",
                "action": "Booking volume is falling; review promotional rules",
            })
        elif snapshot.trend_direction == "increasing":
            recs.append({
                "type": "TREND", "priority": "MEDIUM",
                "action": "Booking volume is rising; review price floors",
            })
        peak_months = [m for m, c in snapshot.season_classification.items() if c == "PEAK_SEASON"]
        if peak_months:
            recs.append({
                "type": "SEASONAL", "priority": "MEDIUM",
                "action": f"Peak months {peak_months}: confirm seasonal pricing is configured",
            })
        return recs

    # ------------------------------------------------------------------
    # 5. Live booking signals
    # ------------------------------------------------------------------

    def bookings_created_between(self, hotel_id: str, since: datetime, until: datetime) -> int:
        bookings = self.repository.get_bookings(
            hotel_id, statuses=ACTIVE_STATUSES, created_since=since,
        )
        if bookings.empty:
            return 0
        mask = (bookings["created_at"] >= since) & (bookings["created_at"] < until)
        return int(mask.sum())

    def bookings_last_hour(self, hotel_id: str, at: datetime = None) -> int:
        at = at or self.clock()
        return self.bookings_created_between(hotel_id, at - timedelta(hours=1), at)

    def hourly_booking_average(self, hotel_id: str, at: datetime = None) -> float:
        """
        Average bookings created in the same trailing hour on the same weekday
        over the previous SPIKE_BASELINE_WEEKS weeks.
        """
        at = at or self.clock()
        oldest = at - timedelta(weeks=SPIKE_BASELINE_WEEKS, hours=1)
        bookings = self.repository.get_bookings(
            hotel_id, statuses=ACTIVE_STATUSES, created_since=oldest,
        )
        if bookings.empty:
            return 0.0
        counts = []
        for week in range(1, SPIKE_BASELINE_WEEKS + 1):
            end = at - timedelta(weeks=week)
            begin = end - timedelta(hours=1)
            counts.append(int(((bookings["created_at"] >= begin) & (bookings["created_at"] < end)).sum()))
        return float(np.mean(counts))
