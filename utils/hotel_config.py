"""
Per-hotel yield configuration.
Built and validated when it is written or loaded; the pricing code reads it
without re-checking.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from config.thresholds import (
    DAY_OF_WEEK_MULTIPLIERS,
    DEFAULT_STRATEGY,
    LEAD_TIME_TIERS,
    MAX_DAILY_PRICE_CHANGE_PCT,
    OCCUPANCY_BANDS,
    STRATEGY_WEIGHTS,
    WEEKDAY_NAMES,
)
from utils.exceptions import ConfigurationError
from utils.feature_engineering import to_date
from utils.rules import EventWindow, Season, StayTier

logger = logging.getLogger(__name__)

UPDATE_FREQUENCIES = ("HOURLY", "DAILY", "WEEKLY", "MANUAL")


@dataclass
class AutomationSettings:
    auto_apply: bool = True
    max_daily_change_pct: float = MAX_DAILY_PRICE_CHANGE_PCT
    update_frequency: str = "HOURLY"


@dataclass
class HotelYieldConfig:
    hotel_id: str
    name: str = ""
    enabled: bool = True
    strategy: str = DEFAULT_STRATEGY
    occupancy_bands: List[Tuple[str, float, float]] = field(
        default_factory=lambda: list(OCCUPANCY_BANDS)
    )
    day_of_week_multipliers: Dict[str, float] = field(
        default_factory=lambda: dict(DAY_OF_WEEK_MULTIPLIERS)
    )
    date_overrides: Dict[date, float] = field(default_factory=dict)
    lead_time_tiers: List[Tuple[int, float, str]] = field(
        default_factory=lambda: list(LEAD_TIME_TIERS)
    )
    seasons: List[Season] = field(default_factory=list)
    events: List[EventWindow] = field(default_factory=list)
    length_of_stay_discounts: List[StayTier] = field(default_factory=list)
    price_constraints: Dict[str, Tuple[Optional[float], Optional[float]]] = field(default_factory=dict)
    automation: AutomationSettings = field(default_factory=AutomationSettings)
    competitor_pricing_enabled: bool = False
    weather_enabled: bool = False
    use_learned_seasonality: bool = False

    def __post_init__(self):
        self.validate()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self):
        prefix = f"Hotel {self.hotel_id}"
        if self.strategy not in STRATEGY_WEIGHTS:
            raise ConfigurationError(
                f"{prefix}: unknown strategy {self.strategy}. "
                f"Valid: {list(STRATEGY_WEIGHTS)}"
            )

        if not self.occupancy_bands or self.occupancy_bands[0][1] != 0:
            raise ConfigurationError(f"{prefix}: occupancy bands must start at 0%")
        for (name_a, low_a, mult_a), (name_b, low_b, mult_b) in zip(
                self.occupancy_bands, self.occupancy_bands[1:]):
            if low_b <= low_a:
                raise ConfigurationError(f"{prefix}: occupancy band {name_b} overlaps {name_a}")
            if mult_b < mult_a:
                raise ConfigurationError(
                    f"{prefix}: occupancy multipliers must not decrease ({name_a} -> {name_b})"
                )
        if any(low > 100 for _, low, _ in self.occupancy_bands):
            raise ConfigurationError(f"{prefix}: occupancy band bounds must be within 0-100")

        missing = set(WEEKDAY_NAMES) - set(self.day_of_week_multipliers)
        if missing:
            raise ConfigurationError(f"{prefix}: missing weekday multipliers for {sorted(missing)}")
        if any(v <= 0 for v in self.day_of_week_multipliers.values()):
            raise ConfigurationError(f"{prefix}: weekday multipliers must be positive")
        if any(v <= 0 for v in self.date_overrides.values()):
            raise ConfigurationError(f"{prefix}: date override multipliers must be positive")

        days = [t[0] for t in self.lead_time_tiers]
        if any(d < 0 for d in days) or days != sorted(set(days)):
            raise ConfigurationError(f"{prefix}: lead-time tiers must be strictly ascending from 0")
        if any(t[1] <= 0 for t in self.lead_time_tiers):
            raise ConfigurationError(f"{prefix}: lead-time multipliers must be positive")

        for season in self.seasons:
            if season.multiplier <= 0:
                raise ConfigurationError(f"{prefix}: season {season.name} needs a positive multiplier")
            if not season.recurring and season.start > season.end:
                raise ConfigurationError(f"{prefix}: season {season.name} ends before it starts")
        for event in self.events:
            if event.multiplier < 1.0:
                raise ConfigurationError(f"{prefix}: event {event.name} multiplier must be at least 1.0")
            if not event.recurring and event.start > event.end:
                raise ConfigurationError(f"{prefix}: event {event.name} ends before it starts")

        for tier in self.length_of_stay_discounts:
            if tier.min_nights < 1:
                raise ConfigurationError(f"{prefix}: stay discounts start at one night")
            if tier.max_nights is not None and tier.max_nights < tier.min_nights:
                raise ConfigurationError(f"{prefix}: stay tier max nights below min nights")
            if not (0 <= tier.discount_pct <= 50):
                raise ConfigurationError(f"{prefix}: stay discount must be between 0 and 50%")

        for room_type, (low, high) in self.price_constraints.items():
            if (low is not None and low < 0) or (high is not None and high < 0):
                raise ConfigurationError(f"{prefix}: {room_type} price bounds cannot be negative")
            if low is not None and high is not None and low >= high:
                raise ConfigurationError(
                    f"{prefix}: {room_type} minimum price must be less than maximum price"
                )

        if self.automation.update_frequency not in UPDATE_FREQUENCIES:
            raise ConfigurationError(
                f"{prefix}: unknown update frequency {self.automation.update_frequency}"
            )
        if not (0 < self.automation.max_daily_change_pct <= 100):
            raise ConfigurationError(f"{prefix}: max daily change must be within 0-100%")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def weights(self) -> Dict[str, float]:
        return STRATEGY_WEIGHTS[self.strategy]

    def occupancy_multiplier(self, occupancy: float) -> Tuple[str, float]:
        """Band whose lower bound is the highest one <= occupancy."""
        name, _, multiplier = self.occupancy_bands[0]
        for band_name, lower, band_multiplier in self.occupancy_bands:
            if occupancy >= lower:
                name, multiplier = band_name, band_multiplier
        return name, multiplier

    def day_of_week_multiplier(self, day: date) -> Tuple[str, float]:
        if day in self.date_overrides:
            return "override", self.date_overrides[day]
        weekday = WEEKDAY_NAMES[day.weekday()]
        return weekday, self.day_of_week_multipliers[weekday]

    def lead_time_multiplier(self, lead_days: int) -> Tuple[str, float]:
        """Highest configured tier <= lead time; neutral when no tier qualifies."""
        label, multiplier = "NONE", 1.0
        for days, tier_multiplier, tier_label in self.lead_time_tiers:
            if days <= lead_days:
                label, multiplier = tier_label, tier_multiplier
        return label, multiplier

    def season_for(self, day: date) -> Optional[Season]:
        for season in self.seasons:
            if season.contains(day):
                return season
        return None

    def event_for(self, day: date) -> Optional[EventWindow]:
        for event in self.events:
            if event.contains(day):
                return event
        return None

    def length_of_stay_multiplier(self, nights: int) -> Tuple[str, float]:
        """Discount of the narrowest matching tier."""
        matching = [t for t in self.length_of_stay_discounts if t.matches(nights)]
        if not matching:
            return "NONE", 1.0

        def width(tier):
            return float("inf") if tier.max_nights is None else tier.max_nights - tier.min_nights

        tier = min(matching, key=lambda t: (width(t), -t.min_nights))
        upper = "+" if tier.max_nights is None else f"-{tier.max_nights}"
        return f"{tier.min_nights}{upper} nights", 1 - tier.discount_pct / 100

    def clamp(self, room_type: str, price: float) -> float:
        low, high = self.price_constraints.get(room_type, (None, None))
        if low is not None and price < low:
            price = low
        if high is not None and price > high:
            price = high
        return price

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, hotel_id: str, data: Optional[Dict], name: str = "",
                  enabled: bool = True) -> "HotelYieldConfig":
        data = data or {}
        automation = data.get("automation") or {}
        kwargs = {}
        if "occupancy_bands" in data:
            kwargs["occupancy_bands"] = [
                (b["name"], float(b["min"]), float(b["multiplier"])) for b in data["occupancy_bands"]
            ]
        if "day_of_week_multipliers" in data:
            table = dict(DAY_OF_WEEK_MULTIPLIERS)
            table.update({k.upper(): float(v) for k, v in data["day_of_week_multipliers"].items()})
            kwargs["day_of_week_multipliers"] = table
        if "lead_time_tiers" in data:
            kwargs["lead_time_tiers"] = [
                (int(t["days_in_advance"]), float(t["multiplier"]), t.get("label", "ADVANCE"))
                for t in data["lead_time_tiers"]
            ]
        return cls(
            hotel_id=str(hotel_id),
            name=name or data.get("name", ""),
            enabled=enabled,
            strategy=data.get("strategy", DEFAULT_STRATEGY),
            date_overrides={
                to_date(k): float(v) for k, v in (data.get("date_overrides") or {}).items()
            },
            seasons=[
                Season(s["name"], to_date(s["start"]), to_date(s["end"]),
                       float(s["multiplier"]), bool(s.get("recurring", True)))
                for s in data.get("seasons", [])
            ],
            events=[
                EventWindow(e["name"], to_date(e["start"]), to_date(e["end"]),
                            float(e["multiplier"]), float(e.get("impact_radius_km", 50.0)),
                            bool(e.get("recurring", False)))
                for e in data.get("events", [])
            ],
            length_of_stay_discounts=[
                StayTier(int(t["min_nights"]),
                         int(t["max_nights"]) if t.get("max_nights") is not None else None,
                         float(t["discount_pct"]))
                for t in data.get("length_of_stay_discounts", [])
            ],
            price_constraints={
                rt: (bounds.get("min"), bounds.get("max"))
                for rt, bounds in (data.get("price_constraints") or {}).items()
            },
            automation=AutomationSettings(
                auto_apply=bool(automation.get("auto_apply", True)),
                max_daily_change_pct=float(
                    automation.get("max_daily_change_pct", MAX_DAILY_PRICE_CHANGE_PCT)
                ),
                update_frequency=automation.get("update_frequency", "HOURLY"),
            ),
            competitor_pricing_enabled=bool(data.get("competitor_pricing_enabled", False)),
            weather_enabled=bool(data.get("weather_enabled", False)),
            use_learned_seasonality=bool(data.get("use_learned_seasonality", False)),
            **kwargs,
        )

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "strategy": self.strategy,
            "occupancy_bands": [
                {"name": n, "min": low, "multiplier": m} for n, low, m in self.occupancy_bands
            ],
            "day_of_week_multipliers": dict(self.day_of_week_multipliers),
            "date_overrides": {d.isoformat(): v for d, v in self.date_overrides.items()},
            "lead_time_tiers": [
                {"days_in_advance": d, "multiplier": m, "label": label}
                for d, m, label in self.lead_time_tiers
            ],
            "seasons": [
                {"name": s.name, "start": s.start.isoformat(), "end": s.end.isoformat(),
                 "multiplier": s.multiplier, "recurring": s.recurring}
                for s in self.seasons
            ],
            "events": [
                {"name": e.name, "start": e.start.isoformat(), "end": e.end.isoformat(),
                 "multiplier": e.multiplier, "impact_radius_km": e.impact_radius_km,
                 "recurring": e.recurring}
                for e in self.events
            ],
            "length_of_stay_discounts": [vars(t).copy() for t in self.length_of_stay_discounts],
            "price_constraints": {
                rt: {"min": low, "max": high} for rt, (low, high) in self.price_constraints.items()
            },
            "automation": vars(self.automation).copy(),
            "competitor_pricing_enabled": self.competitor_pricing_enabled,
            "weather_enabled": self.weather_enabled,
            "use_learned_seasonality": self.use_learned_seasonality,
        }
