"""
YIELD JOBS - Scheduled Yield Management Work
==============================================
Responsibilities:
  1. Hourly price updates (significance threshold, daily change cap)
  2. Daily yield summary and pricing history
  3. Weekly demand pattern refresh
  4. Monthly seasonal pricing refresh and cache pruning
  5. Real-time demand spike response
  6. Rule performance monitoring

Every job walks the yield-enabled hotels one at a time; each hotel runs
inside its own failure boundary and time budget.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from config.scheduler_config import (
    HOTEL_BATCH_PAUSE_SECONDS,
    HOTEL_BATCH_SIZE,
    HOTEL_TASK_TIMEOUT_SECONDS,
    JOB_CONFIG,
)
from config.thresholds import PRICE_CHANGE_SIGNIFICANCE_PCT, PRICING_HORIZON_DAYS
from agents.demand_agent import DemandAnalyzer
from agents.monitor_agent import MonitorAgent
from agents.pricing_agent import PriceCalculator
from agents.report_agent import ReportAgent
from utils.events import PRICE_CHANGED, SEASONAL_PRICING_UPDATE, EventSink, LoggingEventSink
from utils.exceptions import HotelTimeoutError, UnknownJobError
from utils.feature_engineering import date_range
from utils.pricing_cache import PricingCache
from utils.repository import YieldRepository, room_price

logger = logging.getLogger(__name__)

JOB_NAMES = tuple(JOB_CONFIG)

HOURLY_REASON = "hourly_adjustment"
DAILY_REASON = "daily_adjustment"
WEEKLY_REASON = "weekly_adjustment"


# ---------------------------------------------------------------------------
# Per-hotel execution
# ---------------------------------------------------------------------------

@dataclass
class HotelOutcome:
    hotel_id: str
    ok: bool
    result: object = None
    error: Optional[str] = None
    duration_ms: float = 0.0


def _call_with_timeout(hotel_id: str, task: Callable, timeout: float):
    if not timeout or timeout <= 0:
        return task(hotel_id)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"hotel-{hotel_id}")
    try:
        future = executor.submit(task, hotel_id)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise HotelTimeoutError(hotel_id, timeout) from None
    finally:
        # A timed-out task keeps its thread; we just stop waiting for it
        executor.shutdown(wait=False)


def run_per_hotel(hotel_ids: Iterable[str], task: Callable,
                  timeout: float = HOTEL_TASK_TIMEOUT_SECONDS,
                  batch_size: int = HOTEL_BATCH_SIZE,
                  pause: float = HOTEL_BATCH_PAUSE_SECONDS,
                  sleep: Callable[[float], None] = time.sleep) -> List[HotelOutcome]:
    """
    Run `task(hotel_id)` for each hotel in turn. A hotel's exception or
    timeout is recorded in its outcome and never reaches its siblings.
    """
    outcomes = []
    for i, hotel_id in enumerate(hotel_ids):
        if i and batch_size and i % batch_size == 0 and pause > 0:
            sleep(pause)
        t0 = time.time()
        try:
            result = _call_with_timeout(hotel_id, task, timeout)
            outcomes.append(HotelOutcome(hotel_id, True, result=result,
                                         duration_ms=(time.time() - t0) * 1000))
        except Exception as e:
            logger.error(f"  Hotel {hotel_id} failed: {type(e).__name__}: {e}")
            outcomes.append(HotelOutcome(hotel_id, False, error=f"{type(e).__name__}: {e}",
                                         duration_ms=(time.time() - t0) * 1000))
    return outcomes


def capped_price(target: float, reference: float, max_change_pct: float) -> float:
    """`target` limited to reference +/- max_change_pct."""
    low = reference * (1 - max_change_pct / 100)
    high = reference * (1 + max_change_pct / 100)
    return min(max(target, low), high)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class YieldJobs:
    """
    The six scheduled jobs. Each job method takes no arguments, walks the
    yield-enabled hotels and returns a summary dict; a job method only
    raises when the job as a whole cannot run.
    """

    def __init__(self, repository: YieldRepository = None, engine=None,
                 calculator: PriceCalculator = None, analyzer: DemandAnalyzer = None,
                 monitor: MonitorAgent = None, reporter: ReportAgent = None,
                 sink: EventSink = None, clock: Callable[[], datetime] = None,
                 hotel_timeout: float = HOTEL_TASK_TIMEOUT_SECONDS,
                 batch_size: int = HOTEL_BATCH_SIZE,
                 batch_pause: float = HOTEL_BATCH_PAUSE_SECONDS):
        self.repository = repository or YieldRepository(engine)
        self.clock = clock or datetime.now
        self.sink = sink or LoggingEventSink()
        self.analyzer = analyzer or DemandAnalyzer(self.repository, clock=self.clock)
        self.calculator = calculator or PriceCalculator(
            self.repository, analyzer=self.analyzer, clock=self.clock,
            cache=PricingCache(store=self.repository, clock=self.clock),
        )
        self.monitor = monitor or MonitorAgent(self.repository, analyzer=self.analyzer,
                                               sink=self.sink, clock=self.clock)
        self.reporter = reporter or ReportAgent(self.repository, analyzer=self.analyzer,
                                                clock=self.clock)
        self.hotel_timeout = hotel_timeout
        self.batch_size = batch_size
        self.batch_pause = batch_pause

    def handler(self, job_name: str) -> Callable[[], Dict]:
        if job_name not in JOB_NAMES:
            raise UnknownJobError(job_name, list(JOB_NAMES))
        return getattr(self, job_name)

    def _for_each_hotel(self, job_name: str, task: Callable, hotel_ids: List[str] = None) -> Dict:
        hotel_ids = self.repository.list_yield_hotels() if hotel_ids is None else hotel_ids
        outcomes = run_per_hotel(hotel_ids, task, timeout=self.hotel_timeout,
                                 batch_size=self.batch_size, pause=self.batch_pause)
        failed = [o for o in outcomes if not o.ok]
        logger.info(
            f"  {job_name}: {len(outcomes) - len(failed)}/{len(outcomes)} hotels processed"
            + (f", {len(failed)} failed" if failed else "")
        )
        return {
            "job": job_name,
            "hotels": len(outcomes),
            "succeeded": len(outcomes) - len(failed),
            "failed": len(failed),
            "results": {o.hotel_id: o.result for o in outcomes if o.ok},
            "errors": {o.hotel_id: o.error for o in outcomes if not o.ok},
        }

    # ------------------------------------------------------------------
    # Room price updates (shared by hourly / daily / weekly cadences)
    # ------------------------------------------------------------------

    def _day_reference_prices(self, hotel_id: str, now: datetime) -> Dict[str, float]:
        """Price each room type started the day with, for rooms changed today."""
        midnight = datetime.combine(now.date(), datetime.min.time())
        changes = self.repository.get_price_changes(hotel_id, since=midnight)
        if changes.empty:
            return {}
        changes = changes.sort_values(["created_at", "id"])
        first = changes.groupby("room_type").head(1)
        return {row["room_type"]: float(row["old_price"]) for _, row in first.iterrows()}

    def update_hotel_prices(self, hotel_id: str, reason: str = HOURLY_REASON) -> Dict:
        """
        Recompute today's price for every yield-enabled room and move toward
        it, capped by the hotel's daily change limit. Both the target and the
        capped move must differ from the current price by at least the
        significance threshold. Rooms under an active spike boost are left
        alone.
        """
        now = self.clock()
        today = now.date()
        config = self.calculator.hotel_config(hotel_id)
        rules = self.repository.get_rules(hotel_id)
        spiking = self.monitor.active_spike_rooms(hotel_id, now)
        references = self._day_reference_prices(hotel_id, now)
        max_change = config.automation.max_daily_change_pct

        computed, adjustments, suggestions = 0, [], []
        for _, room in self.repository.get_rooms(hotel_id).iterrows():
            room_type = room["room_type"]
            if not bool(room["yield_enabled"]) or room_type in spiking:
                continue
            current = room_price(room)
            quote = self.calculator.price(
                hotel_id, room_type, today, config=config, rules=rules,
                base_price=float(room["base_price"]), use_cache=False,
            )
            computed += 1

            change_pct = abs(quote.final_price - current) / current * 100 if current else 100.0
            if change_pct < PRICE_CHANGE_SIGNIFICANCE_PCT:
                logger.debug(f"  {hotel_id}/{room_type}: {change_pct:.1f}% change, below threshold")
                continue

            reference = references.get(room_type, current)
            new_price = round(config.clamp(
                room_type, capped_price(quote.final_price, reference, max_change)), 2)
            applied_pct = abs(new_price - current) / current * 100 if current else 100.0
            if applied_pct < PRICE_CHANGE_SIGNIFICANCE_PCT:
                logger.info(
                    f"  {hotel_id}/{room_type}: daily change limit leaves a {applied_pct:.1f}% move, "
                    f"holding {current:.2f}"
                )
                continue

            entry = {
                "room_type": room_type,
                "old_price": round(current, 2),
                "new_price": new_price,
                "target_price": quote.final_price,
                "change_pct": round((new_price - current) / current * 100, 1),
            }
            if not config.automation.auto_apply:
                suggestions.append(entry)
                continue

            self.repository.update_current_price(hotel_id, room_type, new_price)
            self.repository.record_price_change(
                hotel_id, room_type, current, new_price, reason,
                at=now, expires_at=now + timedelta(hours=1),
            )
            adjustments.append(entry)

        if adjustments:
            self.sink.emit(PRICE_CHANGED, {
                "type": reason.upper(),
                "adjustments": adjustments,
                "timestamp": now.isoformat(),
            }, hotel_id=hotel_id)
        if suggestions:
            logger.info(f"  Hotel {hotel_id}: auto-apply off, {len(suggestions)} price changes suggested")
        return {
            "computed": computed,
            "applied": len(adjustments),
            "adjustments": adjustments,
            "suggested": suggestions,
        }

    def _hotels_updating(self, frequency: str) -> List[str]:
        hotel_ids = []
        for hotel_id in self.repository.list_yield_hotels():
            config = self.repository.get_hotel_config(hotel_id)
            if config is not None and config.automation.update_frequency == frequency:
                hotel_ids.append(hotel_id)
        return hotel_ids

    # ------------------------------------------------------------------
    # 1. Hourly
    # ------------------------------------------------------------------

    def hourly_price_update(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Hourly price update")
        result = self._for_each_hotel(
            "hourly_price_update",
            lambda h: self.update_hotel_prices(h, HOURLY_REASON),
            hotel_ids=self._hotels_updating("HOURLY"),
        )
        result["adjustments"] = sum(r["applied"] for r in result["results"].values())
        logger.info(f"  {result['adjustments']} adjustments across {result['hotels']} hotels")
        return result

    # ------------------------------------------------------------------
    # 2. Daily
    # ------------------------------------------------------------------

    def _daily_for_hotel(self, hotel_id: str) -> Dict:
        summary = self.reporter.daily_summary(hotel_id)
        config = self.repository.get_hotel_config(hotel_id)
        if config is not None and config.automation.update_frequency == "DAILY":
            summary["price_update"] = self.update_hotel_prices(hotel_id, DAILY_REASON)
        return summary

    def daily_yield_calculation(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Daily yield calculation")
        return self._for_each_hotel("daily_yield_calculation", self._daily_for_hotel)

    # ------------------------------------------------------------------
    # 3. Weekly
    # ------------------------------------------------------------------

    def _weekly_for_hotel(self, hotel_id: str) -> Dict:
        now = self.clock()
        today = now.date()
        self.analyzer.clear_cache(hotel_id)
        snapshot = self.analyzer.analyze(hotel_id, today - timedelta(days=28),
                                         today - timedelta(days=1), use_cache=False)
        self.repository.save_demand_pattern(
            hotel_id, snapshot.seasonal_index, snapshot.weekly_pattern,
            snapshot.trend_direction, snapshot.trend_momentum, at=now,
        )
        result = {
            "seasonal_index": snapshot.seasonal_index,
            "weekly_pattern": snapshot.weekly_pattern,
            "trend_direction": snapshot.trend_direction,
            "trend_momentum": snapshot.trend_momentum,
        }
        config = self.repository.get_hotel_config(hotel_id)
        if config is not None and config.automation.update_frequency == "WEEKLY":
            result["price_update"] = self.update_hotel_prices(hotel_id, WEEKLY_REASON)
        return result

    def weekly_demand_analysis(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Weekly demand analysis")
        return self._for_each_hotel("weekly_demand_analysis", self._weekly_for_hotel)

    # ------------------------------------------------------------------
    # 4. Monthly
    # ------------------------------------------------------------------

    def refresh_price_calendar(self, hotel_id: str, days: int = PRICING_HORIZON_DAYS) -> int:
        """Recompute and cache the plain nightly price for the next `days` days."""
        today = self.clock().date()
        config = self.calculator.hotel_config(hotel_id)
        rules = self.repository.get_rules(hotel_id)
        count = 0
        for _, room in self.repository.get_rooms(hotel_id).iterrows():
            for day in date_range(today, today + timedelta(days=days - 1)):
                self.calculator.price(hotel_id, room["room_type"], day, config=config,
                                      rules=rules, base_price=float(room["base_price"]),
                                      use_cache=False)
                count += 1
        return count

    def _monthly_for_hotel(self, hotel_id: str) -> Dict:
        now = self.clock()
        self.analyzer.clear_cache(hotel_id)
        self.calculator.cache.invalidate(hotel_id)
        index = self.analyzer.seasonal_index(hotel_id)
        season = self.analyzer.classify_seasons(index)[now.month]
        quotes = self.refresh_price_calendar(hotel_id)
        self.sink.emit(SEASONAL_PRICING_UPDATE, {
            "month": now.strftime("%B %Y"),
            "seasonal_index": round(index[now.month], 3),
            "season": season,
            "quotes_refreshed": quotes,
            "message": "Seasonal pricing has been updated for your hotel",
        }, hotel_id=hotel_id)
        return {"season": season, "seasonal_index": index[now.month], "quotes_refreshed": quotes}

    def monthly_seasonal_update(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Monthly seasonal update")
        result = self._for_each_hotel("monthly_seasonal_update", self._monthly_for_hotel)
        result["pruned"] = self.calculator.cache.prune()
        return result

    # ------------------------------------------------------------------
    # 5. Real-time spikes
    # ------------------------------------------------------------------

    def _spike_for_hotel(self, hotel_id: str) -> Dict:
        now = self.clock()
        restored = self.monitor.expire_spikes(hotel_id, now)
        spike = self.monitor.detect_spike(hotel_id, now)
        adjustments = []
        if spike.detected:
            config = self.repository.get_hotel_config(hotel_id)
            if config is None or config.automation.auto_apply:
                adjustments = self.monitor.handle_spike(spike, config)
            else:
                logger.info(f"  Hotel {hotel_id}: spike detected, auto-apply off")
        return {"spike": spike.to_dict(), "adjustments": adjustments, "restored": restored}

    def real_time_adjustments(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Real-time adjustments")
        return self._for_each_hotel("real_time_adjustments", self._spike_for_hotel)

    # ------------------------------------------------------------------
    # 6. Performance monitoring
    # ------------------------------------------------------------------

    def _monitor_hotel(self, hotel_id: str) -> Dict:
        alerts = self.monitor.scan_degraded_rules(hotel_id, self.clock())
        return {"alerts": [a.to_dict() for a in alerts]}

    def performance_monitoring(self) -> Dict:
        logger.info("=" * 60)
        logger.info("YIELD JOB: Performance monitoring")
        result = self._for_each_hotel("performance_monitoring", self._monitor_hotel)
        global_alerts = self.monitor.scan_degraded_rules(None, self.clock())
        result["global_alerts"] = [a.to_dict() for a in global_alerts]
        total = sum(len(r["alerts"]) for r in result["results"].values()) + len(global_alerts)
        if total:
            logger.warning(f"  {total} performance alerts raised")
        result["alerts"] = total
        return result
