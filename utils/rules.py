"""
Pricing rules.

A RuleSet is one piece of pricing policy: a scope, a validity window, an
adjustment formula and an optional kind-specific configuration block.
Rules are validated when they are built (from code or from stored JSON);
evaluation assumes a valid rule.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd

from config.thresholds import (
    RULE_IMPACT_RETENTION_DAYS,
    RULE_PRIORITY_MAX,
    RULE_PRIORITY_MIN,
    WEEKDAY_NAMES,
)
from utils.exceptions import RuleValidationError
from utils.feature_engineering import in_date_window, to_date

logger = logging.getLogger(__name__)

RULE_KINDS = (
    "SEASONAL",
    "DEMAND_BASED",
    "LEAD_TIME",
    "DAY_OF_WEEK",
    "EVENT_BASED",
    "LENGTH_OF_STAY",
    "CUSTOMER_SEGMENT",
    "COMPETITOR",
    "PROMOTIONAL",
)

ADJUSTMENT_TYPES = ("PERCENTAGE", "FIXED_AMOUNT", "ABSOLUTE_PRICE", "MULTIPLIER")

CUSTOMER_SEGMENTS = (
    "LOYALTY_GOLD", "LOYALTY_SILVER", "CORPORATE",
    "GROUP", "RETURNING", "FIRST_TIME",
)

WEEKEND_DAYS = ("SATURDAY", "SUNDAY")


def _to_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return pd.Timestamp(value).to_pydatetime()


def _iso(value):
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Kind-specific configuration blocks
# ---------------------------------------------------------------------------

@dataclass
class Season:
    name: str
    start: date
    end: date
    multiplier: float
    recurring: bool = True

    def contains(self, day: date) -> bool:
        return in_date_window(day, self.start, self.end, recurring=self.recurring)


@dataclass
class SeasonalConfig:
    seasons: List[Season] = field(default_factory=list)
    weekend_multiplier: float = 1.0

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        value, label = 1.0, "no_season"
        for season in self.seasons:
            if season.contains(context.date):
                value, label = season.multiplier, season.name
                break
        if context.is_weekend:
            value *= self.weekend_multiplier
        return value, label

    def validate(self):
        for season in self.seasons:
            if season.multiplier <= 0:
                raise RuleValidationError(f"Season {season.name}: multiplier must be positive")
            if not season.recurring and season.start > season.end:
                raise RuleValidationError(
                    f"Season {season.name}: start date must not be after end date"
                )

    @classmethod
    def from_dict(cls, data: Dict) -> "SeasonalConfig":
        return cls(
            seasons=[
                Season(
                    name=s["name"],
                    start=to_date(s["start"]),
                    end=to_date(s["end"]),
                    multiplier=float(s["multiplier"]),
                    recurring=bool(s.get("recurring", True)),
                )
                for s in data.get("seasons", [])
            ],
            weekend_multiplier=float(data.get("weekend_multiplier", 1.0)),
        )

    def to_dict(self) -> Dict:
        return {
            "seasons": [
                {"name": s.name, "start": s.start.isoformat(), "end": s.end.isoformat(),
                 "multiplier": s.multiplier, "recurring": s.recurring}
                for s in self.seasons
            ],
            "weekend_multiplier": self.weekend_multiplier,
        }


@dataclass
class OccupancyThreshold:
    occupancy_min: float
    occupancy_max: float
    multiplier: float


@dataclass
class DemandConfig:
    """Occupancy bands: [min, max) with the top band closed at 100."""
    thresholds: List[OccupancyThreshold] = field(default_factory=list)

    def match(self, occupancy: float) -> Optional[OccupancyThreshold]:
        for t in self.thresholds:
            upper_ok = occupancy < t.occupancy_max or (t.occupancy_max >= 100 and occupancy <= 100)
            if t.occupancy_min <= occupancy and upper_ok:
                return t
        return None

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        band = self.match(context.occupancy)
        if band is None:
            return 1.0, "no_band"
        return band.multiplier, f"{band.occupancy_min:g}-{band.occupancy_max:g}%"

    def validate(self):
        previous_max = None
        for t in self.thresholds:
            if not (0 <= t.occupancy_min < t.occupancy_max <= 100):
                raise RuleValidationError("Occupancy min must be less than occupancy max, within 0-100")
            if t.multiplier <= 0:
                raise RuleValidationError("Occupancy band multiplier must be positive")
            if previous_max is not None and t.occupancy_min < previous_max:
                raise RuleValidationError("Occupancy bands must be ordered and non-overlapping")
            previous_max = t.occupancy_max

    @classmethod
    def from_dict(cls, data: Dict) -> "DemandConfig":
        return cls(thresholds=[
            OccupancyThreshold(float(t["occupancy_min"]), float(t["occupancy_max"]),
                               float(t["multiplier"]))
            for t in data.get("thresholds", [])
        ])

    def to_dict(self) -> Dict:
        return {"thresholds": [vars(t).copy() for t in self.thresholds]}


@dataclass
class LeadTimeInterval:
    days_in_advance: int
    multiplier: float


@dataclass
class LeadTimeConfig:
    intervals: List[LeadTimeInterval] = field(default_factory=list)
    last_minute_threshold: int = 7
    early_bird_threshold: int = 60

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        chosen = None
        for interval in self.intervals:
            if interval.days_in_advance <= context.lead_time_days:
                chosen = interval
        if chosen is None:
            return 1.0, "no_tier"
        if context.lead_time_days <= self.last_minute_threshold:
            label = "last_minute"
        elif context.lead_time_days >= self.early_bird_threshold:
            label = "early_bird"
        else:
            label = "advance"
        return chosen.multiplier, label

    def validate(self):
        previous = None
        for interval in self.intervals:
            if interval.days_in_advance < 0 or interval.multiplier <= 0:
                raise RuleValidationError("Lead-time tiers need non-negative days and a positive multiplier")
            if previous is not None and interval.days_in_advance <= previous:
                raise RuleValidationError("Lead-time tiers must be strictly ascending")
            previous = interval.days_in_advance
        if self.last_minute_threshold >= self.early_bird_threshold:
            raise RuleValidationError("Last-minute threshold must be below the early-bird threshold")

    @classmethod
    def from_dict(cls, data: Dict) -> "LeadTimeConfig":
        return cls(
            intervals=[
                LeadTimeInterval(int(i["days_in_advance"]), float(i["multiplier"]))
                for i in data.get("intervals", [])
            ],
            last_minute_threshold=int(data.get("last_minute_threshold", 7)),
            early_bird_threshold=int(data.get("early_bird_threshold", 60)),
        )

    def to_dict(self) -> Dict:
        return {
            "intervals": [vars(i).copy() for i in self.intervals],
            "last_minute_threshold": self.last_minute_threshold,
            "early_bird_threshold": self.early_bird_threshold,
        }


@dataclass
class DayOfWeekConfig:
    weekday_multiplier: float = 1.0
    weekend_multiplier: float = 1.2
    custom_days: Dict[str, float] = field(default_factory=dict)

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        day = context.day_of_week
        if day in self.custom_days:
            return self.custom_days[day], day.lower()
        if day in WEEKEND_DAYS:
            return self.weekend_multiplier, "weekend"
        return self.weekday_multiplier, "weekday"

    def validate(self):
        for day, value in self.custom_days.items():
            if day not in WEEKDAY_NAMES:
                raise RuleValidationError(f"Unknown weekday: {day}")
            if value <= 0:
                raise RuleValidationError(f"{day}: multiplier must be positive")
        if self.weekday_multiplier <= 0 or self.weekend_multiplier <= 0:
            raise RuleValidationError("Weekday/weekend multipliers must be positive")

    @classmethod
    def from_dict(cls, data: Dict) -> "DayOfWeekConfig":
        return cls(
            weekday_multiplier=float(data.get("weekday_multiplier", 1.0)),
            weekend_multiplier=float(data.get("weekend_multiplier", 1.2)),
            custom_days={k.upper(): float(v) for k, v in data.get("custom_days", {}).items()},
        )

    def to_dict(self) -> Dict:
        return {
            "weekday_multiplier": self.weekday_multiplier,
            "weekend_multiplier": self.weekend_multiplier,
            "custom_days": dict(self.custom_days),
        }


@dataclass
class EventWindow:
    name: str
    start: date
    end: date
    multiplier: float
    impact_radius_km: float = 50.0
    recurring: bool = False

    def contains(self, day: date) -> bool:
        return in_date_window(day, self.start, self.end, recurring=self.recurring)


@dataclass
class EventConfig:
    events: List[EventWindow] = field(default_factory=list)

    def match(self, day: date) -> Optional[EventWindow]:
        for event in self.events:
            if event.contains(day):
                return event
        return None

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        event = self.match(context.date)
        if event is None:
            return 1.0, "no_event"
        return event.multiplier, event.name

    def validate(self):
        for event in self.events:
            if event.multiplier < 1.0:
                raise RuleValidationError(f"Event {event.name}: multiplier must be at least 1.0")
            if not event.recurring and event.start > event.end:
                raise RuleValidationError(f"Event {event.name}: start date must not be after end date")
            if event.impact_radius_km <= 0:
                raise RuleValidationError(f"Event {event.name}: impact radius must be positive")

    @classmethod
    def from_dict(cls, data: Dict) -> "EventConfig":
        return cls(events=[
            EventWindow(
                name=e["name"],
                start=to_date(e["start"]),
                end=to_date(e["end"]),
                multiplier=float(e["multiplier"]),
                impact_radius_km=float(e.get("impact_radius_km", 50.0)),
                recurring=bool(e.get("recurring", False)),
            )
            for e in data.get("events", [])
        ])

    def to_dict(self) -> Dict:
        return {"events": [
            {"name": e.name, "start": e.start.isoformat(), "end": e.end.isoformat(),
             "multiplier": e.multiplier, "impact_radius_km": e.impact_radius_km,
             "recurring": e.recurring}
            for e in self.events
        ]}


@dataclass
class StayTier:
    min_nights: int
    max_nights: Optional[int]
    discount_pct: float

    def matches(self, nights: int) -> bool:
        return nights >= self.min_nights and (self.max_nights is None or nights <= self.max_nights)


@dataclass
class LengthOfStayConfig:
    tiers: List[StayTier] = field(default_factory=list)
    extended_stay_threshold: int = 7
    extended_stay_bonus_pct: float = 10.0

    def match(self, nights: int) -> Optional[StayTier]:
        for tier in self.tiers:
            if tier.matches(nights):
                return tier
        return None

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        value, label = 1.0, "no_tier"
        tier = self.match(context.stay_length)
        if tier is not None:
            value *= 1 - tier.discount_pct / 100
            label = f"{tier.min_nights}+ nights"
        if context.stay_length >= self.extended_stay_threshold and self.extended_stay_bonus_pct > 0:
            value *= 1 - self.extended_stay_bonus_pct / 100
            label = f"{label}, extended stay"
        return value, label

    def validate(self):
        previous_max = 0
        for tier in self.tiers:
            if tier.min_nights < 1:
                raise RuleValidationError("Stay tiers start at one night or more")
            if tier.max_nights is not None and tier.max_nights < tier.min_nights:
                raise RuleValidationError("Stay tier max nights must not be below min nights")
            if not (0 <= tier.discount_pct <= 50):
                raise RuleValidationError("Stay discount must be between 0 and 50%")
            if previous_max is None or tier.min_nights <= previous_max:
                raise RuleValidationError("Stay tiers must be ordered and non-overlapping")
            previous_max = tier.max_nights
        if not (0 <= self.extended_stay_bonus_pct <= 50):
            raise RuleValidationError("Extended stay bonus must be between 0 and 50%")

    @classmethod
    def from_dict(cls, data: Dict) -> "LengthOfStayConfig":
        return cls(
            tiers=[
                StayTier(
                    int(t["min_nights"]),
                    int(t["max_nights"]) if t.get("max_nights") is not None else None,
                    float(t["discount_pct"]),
                )
                for t in data.get("tiers", [])
            ],
            extended_stay_threshold=int(data.get("extended_stay_threshold", 7)),
            extended_stay_bonus_pct=float(data.get("extended_stay_bonus_pct", 10.0)),
        )

    def to_dict(self) -> Dict:
        return {
            "tiers": [vars(t).copy() for t in self.tiers],
            "extended_stay_threshold": self.extended_stay_threshold,
            "extended_stay_bonus_pct": self.extended_stay_bonus_pct,
        }


@dataclass
class SegmentDiscount:
    segment: str
    discount_pct: float
    minimum_stay: int = 1


@dataclass
class CustomerSegmentConfig:
    segments: List[SegmentDiscount] = field(default_factory=list)

    def match(self, segment: Optional[str], nights: int) -> Optional[SegmentDiscount]:
        for s in self.segments:
            if s.segment == segment and nights >= s.minimum_stay:
                return s
        return None

    def multiplier(self, context: "PricingContext") -> Tuple[float, str]:
        s = self.match(context.customer_segment, context.stay_length)
        if s is None:
            return 1.0, "no_segment"
        return 1 - s.discount_pct / 100, s.segment

    def validate(self):
        for s in self.segments:
            if s.segment not in CUSTOMER_SEGMENTS:
                raise RuleValidationError(f"Unknown customer segment: {s.segment}")
            if not (0 <= s.discount_pct <= 50):
                raise RuleValidationError(f"{s.segment}: discount must be between 0 and 50%")
            if s.minimum_stay < 1:
                raise RuleValidationError(f"{s.segment}: minimum stay must be at least one night")

    @classmethod
    def from_dict(cls, data: Dict) -> "CustomerSegmentConfig":
        return cls(segments=[
            SegmentDiscount(s["segment"], float(s["discount_pct"]), int(s.get("minimum_stay", 1)))
            for s in data.get("segments", [])
        ])

    def to_dict(self) -> Dict:
        return {"segments": [vars(s).copy() for s in self.segments]}


@dataclass
class CompetitorOffset:
    name: str
    offset: float = 0.0
    offset_type: str = "PERCENTAGE"

    def target_price(self, competitor_price: float) -> float:
        if self.offset_type == "PERCENTAGE":
            return competitor_price * (1 + self.offset / 100)
        return competitor_price + self.offset


@dataclass
class CompetitorConfig:
    """Positions the price against a competitor rate supplied in the context."""
    competitors: List[CompetitorOffset] = field(default_factory=list)

    def multiplier(self, context: "PricingContext", base_price: float) -> Tuple[float, str]:
        if context.competitor_price is None or not self.competitors or base_price <= 0:
            return 1.0, "no_competitor_price"
        reference = self.competitors[0]
        target = reference.target_price(context.competitor_price)
        return max(target, 0.0) / base_price, reference.name

    def validate(self):
        for c in self.competitors:
            if c.offset_type not in ("PERCENTAGE", "FIXED_AMOUNT"):
                raise RuleValidationError(f"{c.name}: unknown offset type {c.offset_type}")
            if c.offset_type == "PERCENTAGE" and not (-50 <= c.offset <= 50):
                raise RuleValidationError(f"{c.name}: percentage offset must be within +/-50%")

    @classmethod
    def from_dict(cls, data: Dict) -> "CompetitorConfig":
        return cls(competitors=[
            CompetitorOffset(c["name"], float(c.get("offset", 0.0)),
                             c.get("offset_type", "PERCENTAGE"))
            for c in data.get("competitors", [])
        ])

    def to_dict(self) -> Dict:
        return {"competitors": [vars(c).copy() for c in self.competitors]}


KIND_CONFIGS = {
    "SEASONAL": SeasonalConfig,
    "DEMAND_BASED": DemandConfig,
    "LEAD_TIME": LeadTimeConfig,
    "DAY_OF_WEEK": DayOfWeekConfig,
    "EVENT_BASED": EventConfig,
    "LENGTH_OF_STAY": LengthOfStayConfig,
    "CUSTOMER_SEGMENT": CustomerSegmentConfig,
    "COMPETITOR": CompetitorConfig,
}


# ---------------------------------------------------------------------------
# Evaluation context, conditions, results
# ---------------------------------------------------------------------------

@dataclass
class PricingContext:
    """Everything a rule may look at when pricing one night."""
    date: date
    room_type: Optional[str] = None
    lead_time_days: int = 0
    stay_length: int = 1
    occupancy: float = 0.0
    customer_segment: Optional[str] = None
    competitor_price: Optional[float] = None

    @property
    def day_of_week(self) -> str:
        return WEEKDAY_NAMES[self.date.weekday()]

    @property
    def is_weekend(self) -> bool:
        return self.day_of_week in WEEKEND_DAYS


@dataclass
class RuleConditions:
    minimum_occupancy: Optional[float] = None
    maximum_occupancy: Optional[float] = None

    def satisfied_by(self, occupancy: float) -> bool:
        if self.minimum_occupancy is not None and occupancy < self.minimum_occupancy:
            return False
        if self.maximum_occupancy is not None and occupancy > self.maximum_occupancy:
            return False
        return True


@dataclass
class RuleEvaluation:
    rule_id: str
    rule_name: str
    kind: str
    original_price: float
    adjusted_price: float
    multipliers: List[Tuple[str, float]] = field(default_factory=list)
    clamped: bool = False

    @property
    def delta(self) -> float:
        return self.adjusted_price - self.original_price


@dataclass
class RulePerformance:
    applications_count: int = 0
    revenue_impact: float = 0.0
    success_rate: float = 0.0
    average_revenue_lift: float = 0.0
    last_applied: Optional[datetime] = None
    recent_impacts: List[Tuple[datetime, float]] = field(default_factory=list)

    def record(self, revenue_impact: float, success: bool, at: datetime):
        self.applications_count += 1
        self.revenue_impact += revenue_impact
        self.last_applied = at

        successes = self.success_rate * (self.applications_count - 1) / 100
        if success:
            successes += 1
        self.success_rate = successes / self.applications_count * 100
        self.average_revenue_lift = self.revenue_impact / self.applications_count

        self.recent_impacts.append((at, revenue_impact))
        horizon = at - timedelta(days=RULE_IMPACT_RETENTION_DAYS)
        self.recent_impacts = [(ts, v) for ts, v in self.recent_impacts if ts >= horizon]

    def impact_since(self, since: datetime) -> Tuple[int, float]:
        window = [v for ts, v in self.recent_impacts if ts >= since]
        return len(window), float(sum(window))

    @property
    def effectiveness_score(self) -> float:
        if self.applications_count == 0:
            return 0.0
        return self.success_rate * 0.7 + self.average_revenue_lift * 0.3

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RulePerformance":
        data = data or {}
        return cls(
            applications_count=int(data.get("applications_count", 0)),
            revenue_impact=float(data.get("revenue_impact", 0.0)),
            success_rate=float(data.get("success_rate", 0.0)),
            average_revenue_lift=float(data.get("average_revenue_lift", 0.0)),
            last_applied=_to_datetime(data.get("last_applied")),
            recent_impacts=[(_to_datetime(ts), float(v)) for ts, v in data.get("recent_impacts", [])],
        )

    def to_dict(self) -> Dict:
        return {
            "applications_count": self.applications_count,
            "revenue_impact": round(self.revenue_impact, 4),
            "success_rate": round(self.success_rate, 4),
            "average_revenue_lift": round(self.average_revenue_lift, 4),
            "last_applied": _iso(self.last_applied),
            "recent_impacts": [[ts.isoformat(), v] for ts, v in self.recent_impacts],
        }


# ---------------------------------------------------------------------------
# RuleSet
# ---------------------------------------------------------------------------

@dataclass
class RuleSet:
    rule_id: str
    name: str
    kind: str
    adjustment_type: str
    adjustment_value: float
    valid_from: datetime
    valid_until: datetime
    hotel_id: Optional[str] = None
    room_types: List[str] = field(default_factory=list)
    priority: int = 1
    is_active: bool = True
    description: str = ""
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    conditions: RuleConditions = field(default_factory=RuleConditions)
    config: object = None
    performance: RulePerformance = field(default_factory=RulePerformance)

    def __post_init__(self):
        self.valid_from = _to_datetime(self.valid_from)
        self.valid_until = _to_datetime(self.valid_until)
        if self.config is None and self.kind in KIND_CONFIGS:
            self.config = KIND_CONFIGS[self.kind]()
        self.validate()

    def validate(self):
        """Raise RuleValidationError if the rule breaks any write-time invariant."""
        if self.kind not in RULE_KINDS:
            raise RuleValidationError(f"Rule {self.rule_id}: unknown kind {self.kind}")
        if self.adjustment_type not in ADJUSTMENT_TYPES:
            raise RuleValidationError(
                f"Rule {self.rule_id}: unknown adjustment type {self.adjustment_type}"
            )
        if self.valid_from >= self.valid_until:
            raise RuleValidationError(
                f"Rule {self.rule_id}: valid from date must be before valid until date"
            )
        if not (RULE_PRIORITY_MIN <= self.priority <= RULE_PRIORITY_MAX):
            raise RuleValidationError(
                f"Rule {self.rule_id}: priority must be within "
                f"{RULE_PRIORITY_MIN}-{RULE_PRIORITY_MAX}"
            )
        for bound in (self.min_price, self.max_price):
            if bound is not None and bound < 0:
                raise RuleValidationError(f"Rule {self.rule_id}: price bounds cannot be negative")
        if (self.min_price is not None and self.max_price is not None
                and self.min_price >= self.max_price):
            raise RuleValidationError(
                f"Rule {self.rule_id}: minimum price must be less than maximum price"
            )
        if self.adjustment_type in ("ABSOLUTE_PRICE", "MULTIPLIER") and self.adjustment_value < 0:
            raise RuleValidationError(
                f"Rule {self.rule_id}: {self.adjustment_type} value cannot be negative"
            )

        expected = KIND_CONFIGS.get(self.kind)
        if expected is None:
            if self.config is not None:
                raise RuleValidationError(f"Rule {self.rule_id}: {self.kind} takes no configuration block")
        else:
            if not isinstance(self.config, expected):
                raise RuleValidationError(
                    f"Rule {self.rule_id}: {self.kind} needs a {expected.__name__} block"
                )
            self.config.validate()

    # ------------------------------------------------------------------
    # Applicability
    # ------------------------------------------------------------------

    def is_valid_at(self, now: datetime) -> bool:
        """Active and inside [valid_from, valid_until)."""
        return self.is_active and self.valid_from <= now < self.valid_until

    def applies_to_hotel(self, hotel_id: str) -> bool:
        return self.hotel_id is None or self.hotel_id == hotel_id

    def _kind_condition_met(self, context: PricingContext) -> bool:
        # Kinds whose adjustment only makes sense when their trigger is present
        if self.kind == "DEMAND_BASED":
            return self.config.match(context.occupancy) is not None
        if self.kind == "EVENT_BASED":
            return self.config.match(context.date) is not None
        if self.kind == "CUSTOMER_SEGMENT":
            return self.config.match(context.customer_segment, context.stay_length) is not None
        if self.kind == "LENGTH_OF_STAY":
            return (self.config.match(context.stay_length) is not None
                    or context.stay_length >= self.config.extended_stay_threshold)
        if self.kind == "COMPETITOR":
            return context.competitor_price is not None and bool(self.config.competitors)
        return True

    def applies_to(self, context: PricingContext, now: datetime) -> bool:
        if self.room_types and context.room_type not in self.room_types:
            return False
        if not self.is_valid_at(now):
            return False
        if not self.conditions.satisfied_by(context.occupancy):
            return False
        return self._kind_condition_met(context)

    # ------------------------------------------------------------------
    # Adjustment
    # ------------------------------------------------------------------

    def _base_adjustment(self, base_price: float) -> float:
        if self.adjustment_type == "PERCENTAGE":
            return base_price * (1 + self.adjustment_value / 100)
        if self.adjustment_type == "FIXED_AMOUNT":
            return base_price + self.adjustment_value
        if self.adjustment_type == "ABSOLUTE_PRICE":
            return float(self.adjustment_value)
        return base_price * self.adjustment_value

    def kind_multiplier(self, context: PricingContext, base_price: float) -> Tuple[float, str]:
        if self.config is None:
            return 1.0, "none"
        if self.kind == "COMPETITOR":
            return self.config.multiplier(context, base_price)
        return self.config.multiplier(context)

    def adjust(self, base_price: float, context: PricingContext) -> RuleEvaluation:
        """Base adjustment, then the kind multiplier, then the min/max clamp."""
        price = self._base_adjustment(base_price)
        multipliers = [("adjustment", price / base_price if base_price else 1.0)]

        value, label = self.kind_multiplier(context, base_price)
        price *= value
        multipliers.append((f"{self.kind.lower()}:{label}", value))

        raw = price
        if self.min_price is not None and price < self.min_price:
            price = self.min_price
        if self.max_price is not None and price > self.max_price:
            price = self.max_price
        price = max(price, 0.0)

        return RuleEvaluation(
            rule_id=self.rule_id,
            rule_name=self.name,
            kind=self.kind,
            original_price=base_price,
            adjusted_price=round(price, 2),
            multipliers=multipliers,
            clamped=price != raw,
        )

    @property
    def effectiveness_score(self) -> float:
        return self.performance.effectiveness_score

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict) -> "RuleSet":
        kind = data["kind"]
        config_data = data.get("config")
        config = None
        if kind in KIND_CONFIGS:
            config = KIND_CONFIGS[kind].from_dict(config_data or {})
        elif config_data:
            raise RuleValidationError(f"Rule {data.get('rule_id')}: {kind} takes no configuration block")

        conditions = data.get("conditions") or {}
        try:
            return cls(
                rule_id=str(data["rule_id"]),
                name=data["name"],
                kind=kind,
                adjustment_type=data["adjustment_type"],
                adjustment_value=float(data["adjustment_value"]),
                valid_from=data["valid_from"],
                valid_until=data["valid_until"],
                hotel_id=data.get("hotel_id"),
                room_types=list(data.get("room_types") or []),
                priority=int(data.get("priority", 1)),
                is_active=bool(data.get("is_active", True)),
                description=data.get("description", ""),
                min_price=data.get("min_price"),
                max_price=data.get("max_price"),
                conditions=RuleConditions(
                    minimum_occupancy=conditions.get("minimum_occupancy"),
                    maximum_occupancy=conditions.get("maximum_occupancy"),
                ),
                config=config,
                performance=RulePerformance.from_dict(data.get("performance")),
            )
        except KeyError as e:
            raise RuleValidationError(f"Rule is missing required field {e}") from e

    def to_dict(self) -> Dict:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "kind": self.kind,
            "adjustment_type": self.adjustment_type,
            "adjustment_value": self.adjustment_value,
            "valid_from": self.valid_from.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "hotel_id": self.hotel_id,
            "room_types": list(self.room_types),
            "priority": self.priority,
            "is_active": self.is_active,
            "description": self.description,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "conditions": vars(self.conditions).copy(),
            "config": self.config.to_dict() if self.config is not None else None,
            "performance": self.performance.to_dict(),
        }


def order_by_priority(rules: List[RuleSet]) -> List[RuleSet]:
    """Highest priority first; ties keep their stored order."""
    return sorted(rules, key=lambda r: -r.priority)


def evaluate_rule(rule: RuleSet, base_price: float, context: PricingContext,
                  now: datetime) -> Optional[RuleEvaluation]:
    """
    Evaluate one rule against a base price.

    Returns None (and leaves the rule untouched) when the rule does not
    apply. Otherwise the rule's performance counters are updated with the
    signed price delta; an application counts as successful when the
    rule's own min/max clamp did not have to intervene.
    """
    if not rule.applies_to(context, now):
        return None
    evaluation = rule.adjust(base_price, context)
    rule.performance.record(evaluation.delta, success=not evaluation.clamped, at=now)
    logger.debug(
        f"Rule {rule.rule_id} ({rule.kind}) {base_price:.2f} -> {evaluation.adjusted_price:.2f}"
    )
    return evaluation
