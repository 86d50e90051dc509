"""
Tests for the scheduled yield jobs, run directly against a temp SQLite store.

With no bookings, today's (Thursday, same-day) price blends to 0.9425 of
base: STANDARD 94.25 and DELUXE 188.50.
"""
import time
from datetime import timedelta

import pandas as pd
import pytest

from conftest import NOW, make_bookings
from agents.monitor_agent import SPIKE_EXPIRED_REASON, SPIKE_REASON, spike_boost
from agents.yield_jobs import capped_price, run_per_hotel
from utils.events import DEMAND_SPIKE, PERFORMANCE_ALERT, PRICE_CHANGED, SEASONAL_PRICING_UPDATE
from utils.exceptions import UnknownJobError
from utils.hotel_config import AutomationSettings, HotelYieldConfig
from utils.repository import room_price
from utils.rules import PricingContext, RuleSet, evaluate_rule


def current_prices(repository, hotel_id="H1"):
    rooms = repository.get_rooms(hotel_id)
    return dict(zip(rooms["room_type"], rooms["current_price"].astype(float)))


def add_spike_bookings(repository, current, baseline_per_week=1):
    """`current` bookings in the trailing hour; `baseline_per_week` in that hour on prior Thursdays."""
    rows = []
    for weeks in (1, 2, 3, 4):
        created = NOW - timedelta(weeks=weeks, minutes=30)
        rows += [("STANDARD", "2026-12-01", 1, 1, 100.0, created)] * baseline_per_week
    rows += [
        ("STANDARD", "2026-12-01", 1, 1, 100.0, NOW - timedelta(minutes=5 + i), "PENDING")
        for i in range(current)
    ]
    repository.add_bookings(make_bookings(rows))


class TestPerHotelExecution:

    def test_one_failure_does_not_stop_siblings(self):
        def task(hotel_id):
            if hotel_id == "B":
                raise RuntimeError("no rooms table")
            return hotel_id.lower()

        outcomes = run_per_hotel(["A", "B", "C"], task, timeout=0, pause=0)
        assert [o.ok for o in outcomes] == [True, False, True]
        assert outcomes[2].result == "c"
        assert outcomes[1].error == "RuntimeError: no rooms table"

    def test_slow_hotel_times_out(self):
        def task(hotel_id):
            if hotel_id == "SLOW":
                time.sleep(0.5)
            return "done"

        outcomes = run_per_hotel(["SLOW", "FAST"], task, timeout=0.05, pause=0)
        assert not outcomes[0].ok
        assert outcomes[0].error.startswith("HotelTimeoutError: Hotel SLOW exceeded")
        assert outcomes[1].ok

    def test_pause_between_batches(self):
        pauses = []
        run_per_hotel(list("ABCDE"), lambda h: None, timeout=0, batch_size=2, pause=0.1,
                      sleep=pauses.append)
        assert pauses == [0.1, 0.1]

    def test_unknown_job_name(self, jobs):
        with pytest.raises(UnknownJobError):
            jobs.handler("nightly_audit")

    @pytest.mark.parametrize("target,reference,expected", [
        (94.25, 150.0, 120.0),
        (200.0, 100.0, 120.0),
        (105.0, 100.0, 105.0),
    ])
    def test_capped_price(self, target, reference, expected):
        assert capped_price(target, reference, 20) == pytest.approx(expected)

    @pytest.mark.parametrize("current,expected", [(130.0, 130.0), (None, 100.0), (0.0, 100.0)])
    def test_room_price_falls_back_to_base(self, current, expected):
        room = pd.Series({"room_type": "STANDARD", "base_price": 100.0, "current_price": current})
        assert room_price(room) == expected


class TestHourlyPriceUpdate:

    def test_small_change_is_not_applied(self, jobs, repository, sink, hotel):
        repository.update_current_price("H1", "STANDARD", 92.0)
        repository.update_current_price("H1", "DELUXE", 185.0)

        result = jobs.hourly_price_update()

        outcome = result["results"]["H1"]
        assert outcome["computed"] == 2
        assert outcome["applied"] == 0
        assert current_prices(repository) == {"STANDARD": 92.0, "DELUXE": 185.0}
        assert repository.get_price_changes("H1").empty
        assert sink.of_category(PRICE_CHANGED) == []

    def test_significant_change_is_applied(self, jobs, repository, sink, hotel):
        result = jobs.hourly_price_update()

        assert result["adjustments"] == 2
        assert current_prices(repository) == {"STANDARD": 94.25, "DELUXE": 188.5}
        changes = repository.get_price_changes("H1")
        assert set(changes["reason"]) == {"hourly_adjustment"}
        events = sink.of_category(PRICE_CHANGED)
        assert len(events) == 1
        assert len(events[0].payload["adjustments"]) == 2

    def test_daily_change_cap_holds_across_runs(self, jobs, repository, clock, hotel):
        repository.update_current_price("H1", "STANDARD", 150.0)
        jobs.hourly_price_update()
        assert current_prices(repository)["STANDARD"] == 120.0

        clock.advance(hours=1)
        result = jobs.hourly_price_update()
        # already moved 20% off this morning's 150
        assert current_prices(repository)["STANDARD"] == 120.0
        assert result["results"]["H1"]["applied"] == 0

    def test_capped_move_below_threshold_is_not_applied(self, jobs, repository, hotel):
        # STANDARD started the day at 122; the cap floor of 97.60 is only 2.4% below 100
        repository.record_price_change("H1", "STANDARD", 122.0, 100.0, "manual",
                                       at=NOW - timedelta(hours=2))

        outcome = jobs.hourly_price_update()["results"]["H1"]

        assert [a["room_type"] for a in outcome["adjustments"]] == ["DELUXE"]
        assert current_prices(repository) == {"STANDARD": 100.0, "DELUXE": 188.5}

    def test_auto_apply_off_only_suggests(self, jobs, repository, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", automation=AutomationSettings(auto_apply=False)))
        outcome = jobs.hourly_price_update()["results"]["H1"]
        assert outcome["applied"] == 0
        assert {s["room_type"] for s in outcome["suggested"]} == {"STANDARD", "DELUXE"}
        assert current_prices(repository) == {"STANDARD": 100.0, "DELUXE": 200.0}

    def test_update_frequency_routes_hotels(self, jobs, repository, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", automation=AutomationSettings(
            update_frequency="MANUAL")))
        assert jobs.hourly_price_update()["hotels"] == 0

        repository.save_hotel(HotelYieldConfig(hotel_id="H1", automation=AutomationSettings(
            update_frequency="DAILY")))
        assert jobs.hourly_price_update()["hotels"] == 0
        daily = jobs.daily_yield_calculation()
        assert daily["results"]["H1"]["price_update"]["applied"] == 2
        assert set(repository.get_price_changes("H1")["reason"]) == {"daily_adjustment"}

    def test_disabled_hotel_is_skipped(self, jobs, repository, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", enabled=False))
        assert jobs.hourly_price_update()["hotels"] == 0


class TestRealTimeAdjustments:

    @pytest.mark.parametrize("ratio,boost", [(3, 1.5), (2, 1.3)])
    def test_spike_boost(self, ratio, boost):
        assert spike_boost(ratio) == pytest.approx(boost)

    def test_triple_demand_boosts_by_capped_fifty_percent(self, jobs, repository, sink, hotel):
        add_spike_bookings(repository, current=3)

        outcome = jobs.real_time_adjustments()["results"]["H1"]

        assert outcome["spike"]["detected"]
        assert outcome["spike"]["ratio"] == pytest.approx(3.0)
        assert current_prices(repository) == {"STANDARD": 150.0, "DELUXE": 300.0}
        event = sink.of_category(DEMAND_SPIKE)[0]
        assert event.payload["boost_pct"] == 50.0
        assert event.payload["expires_at"] == (NOW + timedelta(hours=2)).isoformat()

    def test_double_demand_boosts_thirty_percent(self, jobs, repository, hotel):
        add_spike_bookings(repository, current=2)
        jobs.real_time_adjustments()
        assert current_prices(repository) == {"STANDARD": 130.0, "DELUXE": 260.0}

    def test_no_baseline_means_no_spike(self, jobs, repository, sink, hotel):
        add_spike_bookings(repository, current=5, baseline_per_week=0)
        outcome = jobs.real_time_adjustments()["results"]["H1"]
        assert not outcome["spike"]["detected"]
        assert outcome["adjustments"] == []
        assert sink.of_category(DEMAND_SPIKE) == []

    def test_boost_holds_then_expires(self, jobs, repository, clock, hotel):
        add_spike_bookings(repository, current=3)
        jobs.real_time_adjustments()

        # hourly updates leave boosted rooms alone
        assert jobs.hourly_price_update()["results"]["H1"]["computed"] == 0
        assert current_prices(repository)["STANDARD"] == 150.0

        clock.advance(hours=2)
        outcome = jobs.real_time_adjustments()["results"]["H1"]
        assert {r["room_type"] for r in outcome["restored"]} == {"STANDARD", "DELUXE"}
        assert current_prices(repository) == {"STANDARD": 100.0, "DELUXE": 200.0}
        reasons = list(repository.get_price_changes("H1").sort_values("id")["reason"])
        assert reasons == [SPIKE_REASON] * 2 + [SPIKE_EXPIRED_REASON] * 2

    def test_boost_is_restored_after_an_overnight_gap(self, jobs, repository, clock, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", automation=AutomationSettings(
            update_frequency="DAILY")))
        add_spike_bookings(repository, current=3)
        jobs.real_time_adjustments()
        assert current_prices(repository) == {"STANDARD": 150.0, "DELUXE": 300.0}

        # no real-time run until the next evening
        clock.advance(hours=20)
        outcome = jobs.real_time_adjustments()["results"]["H1"]

        assert {r["room_type"] for r in outcome["restored"]} == {"STANDARD", "DELUXE"}
        assert current_prices(repository) == {"STANDARD": 100.0, "DELUXE": 200.0}
        assert jobs.monitor.active_spike_rooms("H1") == set()

    def test_auto_apply_off_detects_without_boosting(self, jobs, repository, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", automation=AutomationSettings(auto_apply=False)))
        add_spike_bookings(repository, current=3)
        outcome = jobs.real_time_adjustments()["results"]["H1"]
        assert outcome["spike"]["detected"]
        assert outcome["adjustments"] == []
        assert current_prices(repository)["STANDARD"] == 100.0


class TestPeriodicJobs:

    def test_daily_job_writes_pricing_history(self, jobs, repository, hotel):
        repository.add_bookings(make_bookings([
            ("STANDARD", "2026-10-14", 1, 2, 200.0, "2026-03-01 09:00"),
        ]))
        result = jobs.daily_yield_calculation()

        summary = result["results"]["H1"]
        assert summary["date"] == "2026-10-14"
        assert summary["occupancy_rate"] == pytest.approx(13.33)
        assert summary["adr"] == 100.0
        assert [r["type"] for r in summary["recommendations"]] == ["DISCOUNT"]
        # HOURLY hotels get no price update from the daily job
        assert "price_update" not in summary

        history = repository.get_pricing_history("H1")
        assert list(history["date"]) == ["2026-10-14"]
        overview = jobs.reporter.history_overview("H1", days=7)
        assert overview["days"] == 1
        assert overview["total_revenue"] == 200.0

    def test_weekly_job_saves_demand_pattern(self, jobs, repository, hotel):
        result = jobs.weekly_demand_analysis()
        assert result["succeeded"] == 1
        pattern = repository.get_latest_demand_pattern("H1")
        assert pattern["trend_direction"] == "flat"
        assert pattern["seasonal_index"][1] == 1.0
        assert pattern["computed_at"] == NOW

    def test_monthly_job_refreshes_price_calendar(self, jobs, repository, sink, hotel):
        result = jobs.monthly_seasonal_update()

        assert result["results"]["H1"]["quotes_refreshed"] == 60
        calendar = repository.get_price_calendar("H1", NOW.date(), NOW.date() + timedelta(days=29))
        assert len(calendar) == 60
        event = sink.of_category(SEASONAL_PRICING_UPDATE)[0]
        assert event.hotel_id == "H1"
        assert event.payload["month"] == "October 2026"
        assert result["pruned"] == 0

    def test_performance_job_flags_losing_rules(self, jobs, repository, sink, hotel):
        context = PricingContext(date=NOW.date(), room_type="STANDARD")
        for rule_id, hotel_id in (("LOSS", "H1"), ("GLOBAL_LOSS", None), ("FRESH", "H1")):
            rule = RuleSet(rule_id=rule_id, name=rule_id, kind="PROMOTIONAL",
                           adjustment_type="PERCENTAGE", adjustment_value=-10,
                           valid_from=NOW - timedelta(days=5), valid_until=NOW + timedelta(days=5),
                           hotel_id=hotel_id)
            if rule_id != "FRESH":
                evaluate_rule(rule, 100.0, context, NOW - timedelta(days=1))
            repository.save_rule(rule)

        result = jobs.performance_monitoring()

        assert [a["rule_id"] for a in result["results"]["H1"]["alerts"]] == ["LOSS"]
        assert [a["rule_id"] for a in result["global_alerts"]] == ["GLOBAL_LOSS"]
        assert result["alerts"] == 2
        assert len(sink.of_category(PERFORMANCE_ALERT)) == 2
