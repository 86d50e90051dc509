"""
REPORT AGENT - Daily Yield Summary
====================================
Responsibilities:
  1. Summarize yesterday's occupancy, ADR and RevPAR per hotel
  2. Rank the hotel's pricing rules by effectiveness
  3. Produce pricing recommendations from the day's numbers
  4. Persist the summary as a pricing-history record
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List

import pandas as pd

from config.thresholds import RECOMMEND_DISCOUNT_OCCUPANCY, RECOMMEND_INCREASE_OCCUPANCY
from agents.demand_agent import DemandAnalyzer
from utils.feature_engineering import to_date
from utils.repository import YieldRepository

logger = logging.getLogger(__name__)


class ReportAgent:
    """
    Agent responsible for the daily yield summary, rule effectiveness
    ranking and recommendations.
    """

    def __init__(self, repository: YieldRepository = None, engine=None,
                 analyzer: DemandAnalyzer = None, clock: Callable[[], datetime] = None):
        self.repository = repository or YieldRepository(engine)
        self.clock = clock or datetime.now
        self.analyzer = analyzer or DemandAnalyzer(self.repository, clock=self.clock)

    # ------------------------------------------------------------------
    # 1. Daily metrics
    # ------------------------------------------------------------------

    def daily_metrics(self, hotel_id: str, day: date) -> Dict:
        snapshot = self.analyzer.analyze(hotel_id, day, day, use_cache=False)
        return {
            "occupancy_rate": round(snapshot.occupancy_rate, 2),
            "adr": round(snapshot.adr, 2),
            "revpar": round(snapshot.revpar, 2),
            "revenue": round(snapshot.revenue, 2),
            "room_nights": snapshot.occupied_room_nights,
            "trend_direction": snapshot.trend_direction,
        }

    # ------------------------------------------------------------------
    # 2. Rule effectiveness
    # ------------------------------------------------------------------

    def rule_effectiveness(self, hotel_id: str) -> List[Dict]:
        """Rules that have fired for this hotel, best first."""
        rows = []
        for rule in self.repository.get_rules(hotel_id):
            perf = rule.performance
            if perf.applications_count == 0:
                continue
            rows.append({
                "rule_id": rule.rule_id,
                "name": rule.name,
                "kind": rule.kind,
                "applications": perf.applications_count,
                "revenue_impact": round(perf.revenue_impact, 2),
                "success_rate": round(perf.success_rate, 2),
                "effectiveness_score": round(rule.effectiveness_score, 2),
            })
        return sorted(rows, key=lambda r: r["effectiveness_score"], reverse=True)

    # ------------------------------------------------------------------
    # 3. Recommendations
    # ------------------------------------------------------------------

    @staticmethod
    def recommendations(metrics: Dict, rules: List[Dict]) -> List[Dict]:
        recs = []
        occupancy = metrics["occupancy_rate"]
        if occupancy > RECOMMEND_INCREASE_OCCUPANCY:
            recs.append({
                "type": "INCREASE_PRICE",
                "priority": "HIGH",
                "message": f"Occupancy {occupancy:.1f}% is above {RECOMMEND_INCREASE_OCCUPANCY:.0f}%; "
                           "raise prices for the coming days",
            })
        elif occupancy < RECOMMEND_DISCOUNT_OCCUPANCY and metrics["trend_direction"] == "flat":
            recs.append({
                "type": "DISCOUNT",
                "priority": "MEDIUM",
                "message": f"Occupancy {occupancy:.1f}% with stable demand; "
                           "consider a promotional discount",
            })
        for rule in rules:
            if rule["revenue_impact"] < 0:
                recs.append({
                    "type": "REVIEW_RULE",
                    "priority": "LOW",
                    "message": f"Rule {rule['name']} has a negative revenue impact "
                               f"({rule['revenue_impact']:.2f})",
                })
        return recs

    # ------------------------------------------------------------------
    # 4. Daily summary
    # ------------------------------------------------------------------

    def daily_summary(self, hotel_id: str, day=None) -> Dict:
        """Summarize `day` (yesterday by default) and store it in pricing history."""
        now = self.clock()
        day = to_date(day) if day is not None else now.date() - timedelta(days=1)
        logger.info(f"REPORT AGENT: Daily summary for hotel {hotel_id} on {day}")

        metrics = self.daily_metrics(hotel_id, day)
        rules = self.rule_effectiveness(hotel_id)
        recs = self.recommendations(metrics, rules)

        record = {
            "hotel_id": str(hotel_id),
            "date": day,
            "occupancy_rate": metrics["occupancy_rate"],
            "adr": metrics["adr"],
            "revpar": metrics["revpar"],
            "revenue": metrics["revenue"],
            "room_nights": metrics["room_nights"],
            "recommendations": recs,
            "rule_effectiveness": rules,
            "created_at": now,
        }
        self.repository.save_pricing_history(record)

        logger.info(
            f"  Occupancy {metrics['occupancy_rate']:.1f}%, ADR {metrics['adr']:.2f}, "
            f"RevPAR {metrics['revpar']:.2f}, {len(recs)} recommendations"
        )
        return {**record, "date": day.isoformat(), "trend_direction": metrics["trend_direction"]}

    def history_overview(self, hotel_id: str, days: int = 30) -> Dict:
        """Averages over the stored daily summaries of the last `days` days."""
        today = self.clock().date()
        history = self.repository.get_pricing_history(hotel_id, start=today - timedelta(days=days))
        if history.empty:
            return {"days": 0, "avg_occupancy_rate": 0.0, "avg_adr": 0.0,
                    "avg_revpar": 0.0, "total_revenue": 0.0}
        history["revenue"] = pd.to_numeric(history["revenue"])
        return {
            "days": len(history),
            "avg_occupancy_rate": round(float(history["occupancy_rate"].mean()), 2),
            "avg_adr": round(float(history["adr"].mean()), 2),
            "avg_revpar": round(float(history["revpar"].mean()), 2),
            "total_revenue": round(float(history["revenue"].sum()), 2),
        }
