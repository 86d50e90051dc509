"""
MONITOR AGENT - Demand Spikes & Rule Health
=============================================
Responsibilities:
  1. Compare the trailing hour's bookings with the same-hour baseline
  2. Boost room prices for a short window when a spike is detected
  3. Restore pre-spike prices once the window has passed
  4. Flag pricing rules whose recent revenue impact is negative
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import pandas as pd

from config.thresholds import (
    DEGRADED_RULE_LOOKBACK_DAYS,
    DEGRADED_RULE_MIN_APPLICATIONS,
    SPIKE_MAX_MULTIPLIER,
    SPIKE_RATIO_THRESHOLD,
    SPIKE_SENSITIVITY,
    SPIKE_WINDOW_HOURS,
)
from agents.demand_agent import DemandAnalyzer
from utils.events import DEMAND_SPIKE, PERFORMANCE_ALERT, EventSink, LoggingEventSink
from utils.hotel_config import HotelYieldConfig
from utils.repository import YieldRepository, room_price
from utils.rules import RuleSet

logger = logging.getLogger(__name__)

SPIKE_REASON = "demand_spike"
SPIKE_EXPIRED_REASON = "spike_expired"


def spike_boost(ratio: float) -> float:
    """Price multiplier for a spike `ratio` times the baseline, never above the cap."""
    return min(SPIKE_MAX_MULTIPLIER, 1 + (ratio - 1) * SPIKE_SENSITIVITY)


@dataclass
class DemandSpike:
    hotel_id: str
    detected: bool
    current_bookings: int
    historical_average: float
    ratio: float
    at: datetime

    def to_dict(self) -> Dict:
        return {
            "detected": self.detected,
            "current_bookings": self.current_bookings,
            "historical_average": round(self.historical_average, 3),
            "ratio": round(self.ratio, 3),
            "at": self.at.isoformat(),
        }


@dataclass
class RuleAlert:
    rule_id: str
    rule_name: str
    hotel_id: Optional[str]
    applications: int
    revenue_impact: float
    effectiveness_score: float
    details: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "alert_type": "DEGRADED_RULE",
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "hotel_id": self.hotel_id,
            "applications": self.applications,
            "revenue_impact": round(self.revenue_impact, 2),
            "effectiveness_score": round(self.effectiveness_score, 2),
        }


def degraded_rules(rules: List[RuleSet], now: datetime,
                   lookback_days: int = DEGRADED_RULE_LOOKBACK_DAYS) -> List[RuleAlert]:
    """Rules applied in the lookback window whose summed price impact is negative."""
    since = now - timedelta(days=lookback_days)
    alerts = []
    for rule in rules:
        count, impact = rule.performance.impact_since(since)
        if count >= DEGRADED_RULE_MIN_APPLICATIONS and impact < 0:
            alerts.append(RuleAlert(
                rule_id=rule.rule_id,
                rule_name=rule.name,
                hotel_id=rule.hotel_id,
                applications=count,
                revenue_impact=impact,
                effectiveness_score=rule.effectiveness_score,
            ))
    return alerts


class MonitorAgent:
    """
    Agent that watches live booking velocity and rule outcomes, and reacts
    within tight bounds.
    """

    def __init__(self, repository: YieldRepository = None, engine=None,
                 analyzer: DemandAnalyzer = None, sink: EventSink = None,
                 clock: Callable[[], datetime] = None):
        self.repository = repository or YieldRepository(engine)
        self.clock = clock or datetime.now
        self.analyzer = analyzer or DemandAnalyzer(self.repository, clock=self.clock)
        self.sink = sink or LoggingEventSink()

    # ------------------------------------------------------------------
    # 1. Spike detection
    # ------------------------------------------------------------------

    def detect_spike(self, hotel_id: str, at: datetime = None) -> DemandSpike:
        """
        A spike is at least SPIKE_RATIO_THRESHOLD x the same-hour baseline.
        Without a baseline (no bookings in that hour on previous weeks)
        nothing counts as a spike.
        """
        at = at or self.clock()
        current = self.analyzer.bookings_last_hour(hotel_id, at)
        average = self.analyzer.hourly_booking_average(hotel_id, at)
        ratio = current / average if average > 0 else 0.0
        detected = average > 0 and current >= average * SPIKE_RATIO_THRESHOLD
        if detected:
            logger.warning(
                f"MONITOR AGENT: Demand spike at hotel {hotel_id}: {current} bookings "
                f"in the last hour vs {average:.2f} average ({ratio:.2f}x)"
            )
        return DemandSpike(str(hotel_id), detected, current, average, ratio, at)

    # ------------------------------------------------------------------
    # 2. Spike response
    # ------------------------------------------------------------------

    def handle_spike(self, spike: DemandSpike, config: HotelYieldConfig = None) -> List[Dict]:
        """Raise every yield-enabled room's current price by the capped boost."""
        if not spike.detected:
            return []
        config = config or self.repository.get_hotel_config(spike.hotel_id) \
            or HotelYieldConfig(hotel_id=spike.hotel_id)
        boost = spike_boost(spike.ratio)
        expires_at = spike.at + timedelta(hours=SPIKE_WINDOW_HOURS)
        active = self.active_spike_rooms(spike.hotel_id, spike.at)

        adjustments = []
        for _, room in self.repository.get_rooms(spike.hotel_id).iterrows():
            room_type = room["room_type"]
            if not bool(room["yield_enabled"]) or room_type in active:
                continue
            current = room_price(room)
            new_price = round(config.clamp(room_type, current * boost), 2)
            if new_price == current:
                continue
            self.repository.update_current_price(spike.hotel_id, room_type, new_price)
            self.repository.record_price_change(
                spike.hotel_id, room_type, current, new_price, SPIKE_REASON,
                at=spike.at, expires_at=expires_at,
            )
            adjustments.append({"room_type": room_type, "old_price": current, "new_price": new_price})

        logger.info(
            f"  Applied demand spike pricing for hotel {spike.hotel_id}: "
            f"{(boost - 1) * 100:.1f}% increase on {len(adjustments)} room types "
            f"until {expires_at:%H:%M}"
        )
        if adjustments:
            self.sink.emit(DEMAND_SPIKE, {
                "spike": spike.to_dict(),
                "boost_pct": round((boost - 1) * 100, 1),
                "expires_at": expires_at.isoformat(),
                "adjustments": adjustments,
            }, hotel_id=spike.hotel_id)
        return adjustments

    # ------------------------------------------------------------------
    # 3. Spike expiry
    # ------------------------------------------------------------------

    def active_spike_rooms(self, hotel_id: str, now: datetime = None) -> Set[str]:
        """Room types whose latest price change is a spike boost still in force."""
        now = now or self.clock()
        latest = self.repository.latest_price_changes(hotel_id)
        if latest.empty:
            return set()
        mask = (latest["reason"] == SPIKE_REASON) & (latest["expires_at"] > pd.Timestamp(now))
        return set(latest[mask]["room_type"])

    def expire_spikes(self, hotel_id: str, now: datetime = None) -> List[Dict]:
        """
        Put back the pre-spike price on rooms whose boost window has closed.
        Any boost that is still the room's latest change counts, however
        long ago its window ended.
        """
        now = now or self.clock()
        latest = self.repository.latest_price_changes(hotel_id)
        if latest.empty:
            return []
        expired = latest[(latest["reason"] == SPIKE_REASON) & (latest["expires_at"] <= pd.Timestamp(now))]

        restored = []
        for _, change in expired.iterrows():
            self.repository.update_current_price(hotel_id, change["room_type"], change["old_price"])
            self.repository.record_price_change(
                hotel_id, change["room_type"], change["new_price"], change["old_price"],
                SPIKE_EXPIRED_REASON, at=now,
            )
            restored.append({"room_type": change["room_type"], "price": float(change["old_price"])})
        if restored:
            logger.info(f"  Spike window closed for hotel {hotel_id}: restored {len(restored)} room prices")
        return restored

    # ------------------------------------------------------------------
    # 4. Rule health
    # ------------------------------------------------------------------

    def scan_degraded_rules(self, hotel_id: str = None, now: datetime = None) -> List[RuleAlert]:
        """
        Check the rules owned by `hotel_id` (global rules when None) and
        emit one PERFORMANCE_ALERT per degraded rule.
        """
        now = now or self.clock()
        rules = [
            r for r in self.repository.get_rules(hotel_id)
            if r.hotel_id == (str(hotel_id) if hotel_id is not None else None)
        ]
        alerts = degraded_rules(rules, now)
        for alert in alerts:
            logger.warning(
                f"MONITOR AGENT: Rule {alert.rule_id} ({alert.rule_name}) lost "
                f"{abs(alert.revenue_impact):.2f} over {alert.applications} applications "
                f"in the last {DEGRADED_RULE_LOOKBACK_DAYS} days"
            )
            self.sink.emit(PERFORMANCE_ALERT, alert.to_dict(), hotel_id=alert.hotel_id)
        return alerts
