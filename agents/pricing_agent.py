"""
PRICING AGENT - Multi-Factor Price Calculation
================================================
Responsibilities:
  1. Serve a fresh cached quote when one exists
  2. Compute occupancy, seasonal, day-of-week, event, lead-time,
     length-of-stay, weather and competitor factors
  3. Blend them with the hotel's strategy weights
  4. Apply active pricing rules (highest priority first) and the room clamp
  5. Fall back to the base price if anything in 2-4 fails
"""
import logging
import time
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from config.thresholds import (
    COMPETITOR_OVERPRICED_MULTIPLIER,
    COMPETITOR_OVERPRICED_RATIO,
    COMPETITOR_STUB_MULTIPLIER,
    COMPETITOR_UNDERPRICED_MULTIPLIER,
    COMPETITOR_UNDERPRICED_RATIO,
    DEMAND_LABEL_BANDS,
    DEMAND_LABEL_FLOOR,
    WEATHER_STUB_MULTIPLIER,
)
from agents.demand_agent import DemandAnalyzer
from utils.feature_engineering import date_range, to_date
from utils.hotel_config import HotelYieldConfig
from utils.pricing_cache import PriceQuote, PricingCache, price_key
from utils.repository import YieldRepository
from utils.rules import PricingContext, RuleSet, evaluate_rule, order_by_priority

logger = logging.getLogger(__name__)

# Market price for (hotel_id, room_type, date), or None when unknown
CompetitorFeed = Callable[[str, str, date], Optional[float]]
# Weather multiplier for (hotel_id, date), or None when unknown
WeatherFeed = Callable[[str, date], Optional[float]]


def demand_label(multiplier: float) -> str:
    for threshold, label in DEMAND_LABEL_BANDS:
        if multiplier >= threshold:
            return label
    return DEMAND_LABEL_FLOOR


def blend(factors: Dict[str, float], weights: Dict[str, float]) -> float:
    """Strategy-weighted sum of factor multipliers."""
    return sum(weights[name] * factors[name] for name in weights)


def competitor_multiplier(our_price: float, market_price: Optional[float]) -> float:
    """Nudge toward the market when we sit well above or below it."""
    if not market_price or market_price <= 0:
        return COMPETITOR_STUB_MULTIPLIER
    ratio = our_price / market_price
    if ratio > COMPETITOR_OVERPRICED_RATIO:
        return COMPETITOR_OVERPRICED_MULTIPLIER
    if ratio < COMPETITOR_UNDERPRICED_RATIO:
        return COMPETITOR_UNDERPRICED_MULTIPLIER
    return 1.0


class PriceCalculator:
    """
    Agent that turns configuration, rules and demand signals into one
    bounded price per (hotel, room type, date).
    """

    def __init__(self, repository: YieldRepository = None, engine=None, analyzer=None,
                 cache: PricingCache = None, clock: Callable[[], datetime] = None,
                 competitor_feed: CompetitorFeed = None, weather_feed: WeatherFeed = None):
        self.repository = repository or YieldRepository(engine)
        self.clock = clock or datetime.now
        self.analyzer = analyzer or DemandAnalyzer(self.repository, clock=self.clock)
        self.cache = cache if cache is not None else PricingCache(clock=self.clock)
        self.competitor_feed = competitor_feed
        self.weather_feed = weather_feed
        self.stats = {
            "calculations": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "fallbacks": 0,
            "total_time_ms": 0.0,
        }

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def hotel_config(self, hotel_id: str) -> HotelYieldConfig:
        config = self.repository.get_hotel_config(hotel_id)
        return config if config is not None else HotelYieldConfig(hotel_id=str(hotel_id))

    def base_price(self, hotel_id: str, room_type: str) -> float:
        rooms = self.repository.get_rooms(hotel_id)
        match = rooms[rooms["room_type"] == room_type] if not rooms.empty else rooms
        if match.empty:
            raise ValueError(f"Hotel {hotel_id} has no active room type {room_type}")
        return float(match.iloc[0]["base_price"])

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def compute_factors(self, config: HotelYieldConfig, room_type: str, day: date,
                        base_price: float, stay_length: int, occupancy: float,
                        today: date) -> Tuple[Dict[str, float], List[Tuple[str, float]], Optional[float]]:
        """
        Evaluate every factor in fixed order.

        Returns the blend inputs keyed by weight name, the detailed factor
        list for the quote, and the competitor market price if one was fed.
        """
        detail = []

        _, occupancy_factor = config.occupancy_multiplier(occupancy)
        detail.append(("occupancy", occupancy_factor))

        season = config.season_for(day)
        if season is not None:
            seasonal_factor = season.multiplier
        elif config.use_learned_seasonality:
            seasonal_factor = self.analyzer.seasonal_index(config.hotel_id)[day.month]
        else:
            seasonal_factor = 1.0
        detail.append(("seasonal", seasonal_factor))

        _, dow_factor = config.day_of_week_multiplier(day)
        detail.append(("day_of_week", dow_factor))

        event = config.event_for(day)
        event_factor = event.multiplier if event is not None else 1.0
        detail.append(("event", event_factor))

        lead_days = max((day - today).days, 0)
        _, lead_factor = config.lead_time_multiplier(lead_days)
        detail.append(("lead_time", lead_factor))

        _, stay_factor = config.length_of_stay_multiplier(stay_length)
        detail.append(("length_of_stay", stay_factor))

        weather_factor = 1.0
        if config.weather_enabled:
            fed = self.weather_feed(config.hotel_id, day) if self.weather_feed else None
            weather_factor = fed if fed is not None else WEATHER_STUB_MULTIPLIER
        detail.append(("weather", weather_factor))

        competitor_factor = 1.0
        market_price = None
        if config.competitor_pricing_enabled:
            if self.competitor_feed is not None:
                market_price = self.competitor_feed(config.hotel_id, room_type, day)
            competitor_factor = competitor_multiplier(base_price, market_price)
        detail.append(("competitor", competitor_factor))

        factors = {
            "occupancy": occupancy_factor,
            "seasonal": seasonal_factor,
            "day_of_week": dow_factor,
            "event": event_factor,
            "lead_time": lead_factor,
            "competitor": competitor_factor,
            "other": stay_factor * weather_factor,
        }
        return factors, detail, market_price

    def apply_rules(self, rules: List[RuleSet], price: float, context: PricingContext,
                    now: datetime) -> Tuple[float, List[Tuple[str, float]], List[RuleSet]]:
        """Fold applicable rules into the price, highest priority first."""
        detail, applied = [], []
        for rule in order_by_priority(rules):
            evaluation = evaluate_rule(rule, price, context, now)
            if evaluation is None:
                continue
            ratio = evaluation.adjusted_price / price if price else 1.0
            detail.append((f"rule:{rule.rule_id}", round(ratio, 6)))
            applied.append(rule)
            price = evaluation.adjusted_price
        return price, detail, applied

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def price(self, hotel_id: str, room_type: str, day, stay_length: int = 1,
              occupancy: float = None, customer_segment: str = None,
              config: HotelYieldConfig = None, rules: List[RuleSet] = None,
              base_price: float = None, use_cache: bool = True) -> PriceQuote:
        """
        Price one night. Never raises for computation errors: the worst case
        is the base price (still clamped to the room's bounds).

        The cache holds the plain per-date price, so multi-night and
        segment-specific quotes are always computed and never cached.
        """
        hotel_id, day = str(hotel_id), to_date(day)
        key = price_key(hotel_id, room_type, day)
        cacheable = stay_length == 1 and customer_segment is None

        if use_cache and cacheable:
            cached, found = self.cache.get(key)
            if found:
                self.stats["cache_hits"] += 1
                return cached
        self.stats["cache_misses"] += 1

        t0 = time.time()
        now = self.clock()
        if base_price is None:
            base_price = self.base_price(hotel_id, room_type)
        if config is None:
            try:
                config = self.hotel_config(hotel_id)
            except Exception as e:
                logger.error(f"Could not load yield config for hotel {hotel_id}: {e}. Using defaults")
                config = HotelYieldConfig(hotel_id=hotel_id)

        try:
            if occupancy is None:
                occupancy = self.analyzer.occupancy_on(hotel_id, day)
            factors, detail, market_price = self.compute_factors(
                config, room_type, day, base_price, stay_length, occupancy, now.date(),
            )
            blended = blend(factors, config.weights)
            detail.append(("other", factors["other"]))
            detail.append(("blended", round(blended, 6)))
            price = base_price * blended

            if rules is None:
                rules = self.repository.get_rules(hotel_id)
            rules = [r for r in rules if r.applies_to_hotel(hotel_id)]
            context = PricingContext(
                date=day,
                room_type=room_type,
                lead_time_days=max((day - now.date()).days, 0),
                stay_length=stay_length,
                occupancy=occupancy,
                customer_segment=customer_segment,
                competitor_price=market_price,
            )
            price, rule_detail, applied = self.apply_rules(rules, price, context, now)
            detail.extend(rule_detail)

            final = round(config.clamp(room_type, price), 2)
            quote = PriceQuote(
                hotel_id=hotel_id,
                room_type=room_type,
                date=day,
                base_price=base_price,
                final_price=final,
                factors=detail,
                demand_level=demand_label(blended),
                computed_at=now,
            )
            self._persist_rule_counters(applied)
            if cacheable:
                self.cache.put(key, quote)
        except Exception as e:
            logger.error(
                f"Price calculation failed for hotel {hotel_id}, {room_type}, {day}: {e}. "
                f"Falling back to base price {base_price:.2f}"
            )
            self.stats["fallbacks"] += 1
            quote = PriceQuote(
                hotel_id=hotel_id,
                room_type=room_type,
                date=day,
                base_price=base_price,
                final_price=round(config.clamp(room_type, base_price), 2),
                factors=[],
                demand_level="NORMAL",
                computed_at=now,
                fallback=True,
            )

        self.stats["calculations"] += 1
        self.stats["total_time_ms"] += (time.time() - t0) * 1000
        return quote

    def _persist_rule_counters(self, rules: List[RuleSet]):
        for rule in rules:
            try:
                self.repository.save_rule(rule)
            except Exception as e:
                logger.error(f"Could not persist performance of rule {rule.rule_id}: {e}")

    def quote_stay(self, hotel_id: str, room_type: str, check_in, nights: int,
                   customer_segment: str = None) -> Dict:
        """Nightly quotes and total for a stay starting at check_in."""
        check_in = to_date(check_in)
        days = date_range(check_in, check_in + timedelta(days=nights - 1))
        quotes = [
            self.price(hotel_id, room_type, d, stay_length=nights, customer_segment=customer_segment)
            for d in days
        ]
        return {
            "hotel_id": str(hotel_id),
            "room_type": room_type,
            "check_in": check_in.isoformat(),
            "nights": nights,
            "quotes": quotes,
            "total": round(sum(q.final_price for q in quotes), 2),
        }

    def get_stats(self) -> Dict:
        misses = self.stats["cache_misses"]
        computed = self.stats["calculations"]
        return {
            **self.stats,
            "average_time_ms": round(self.stats["total_time_ms"] / computed, 3) if computed else 0.0,
            "cache_hit_rate": round(
                self.stats["cache_hits"] / (self.stats["cache_hits"] + misses) * 100, 2
            ) if (self.stats["cache_hits"] + misses) else 0.0,
        }
