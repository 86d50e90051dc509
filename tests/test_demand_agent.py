"""
Tests for DemandAnalyzer: occupancy metrics, seasonality, trend, forecast
and live booking signals, all computed from bookings in a temp SQLite store.
"""
import threading
from datetime import date, timedelta

import pytest

from conftest import NOW, make_bookings
from config.model_config import MIN_SEASONAL_INDEX


@pytest.fixture
def stays(repository, hotel):
    """3 STANDARD rooms for Oct 1-2 and one DELUXE room on Oct 2."""
    repository.add_bookings(make_bookings([
        ("STANDARD", "2026-10-01", 2, 3, 600.0, "2026-09-01 12:00"),
        ("DELUXE", "2026-10-02", 1, 1, 250.0, "2026-09-20 08:00"),
        ("DELUXE", "2026-10-01", 1, 1, 999.0, "2026-09-20 08:00", "CANCELLED"),
    ]))


class TestOccupancy:

    def test_no_history_gives_neutral_snapshot(self, analyzer, hotel):
        snapshot = analyzer.analyze("H1", "2026-10-15", "2026-10-21")
        assert snapshot.occupancy_rate == 0.0
        assert snapshot.adr == 0.0
        assert snapshot.revpar == 0.0
        assert set(snapshot.seasonal_index.values()) == {1.0}
        assert snapshot.trend_direction == "flat"
        assert snapshot.performance == "POOR"
        assert len(snapshot.forecast) == 7

    def test_unknown_hotel_does_not_raise(self, analyzer):
        snapshot = analyzer.analyze("NOPE", "2026-10-01", "2026-10-02")
        assert snapshot.total_room_nights == 0
        assert snapshot.occupancy_rate == 0.0

    def test_window_must_not_be_reversed(self, analyzer, hotel):
        with pytest.raises(ValueError):
            analyzer.analyze("H1", "2026-10-02", "2026-10-01")

    def test_occupancy_adr_revpar(self, analyzer, stays):
        snapshot = analyzer.analyze("H1", "2026-10-01", "2026-10-02")
        # 3 + 4 occupied of 15 rooms x 2 nights; revenue 300 + 300 + 250
        assert snapshot.occupied_room_nights == 7
        assert snapshot.total_room_nights == 30
        assert snapshot.occupancy_rate == pytest.approx(7 / 30 * 100)
        assert snapshot.revenue == pytest.approx(850.0)
        assert snapshot.adr == pytest.approx(850.0 / 7)
        assert snapshot.revpar == pytest.approx(850.0 / 30)
        assert snapshot.occupancy_by_room_type["STANDARD"] == pytest.approx(30.0)
        assert snapshot.occupancy_by_room_type["DELUXE"] == pytest.approx(10.0)
        assert snapshot.recommendations[0]["action"].startswith("Consider reducing prices")

    def test_occupancy_on_one_date(self, analyzer, stays):
        assert analyzer.occupancy_on("H1", "2026-10-02") == pytest.approx(4 / 15 * 100)
        assert analyzer.occupancy_on("H1", date(2026, 10, 2), "STANDARD") == pytest.approx(30.0)
        assert analyzer.occupancy_on("H1", "2026-10-03") == 0.0

    def test_results_are_cached_until_cleared(self, analyzer, stays):
        first = analyzer.analyze("H1", "2026-10-01", "2026-10-02")
        assert analyzer.analyze("H1", "2026-10-01", "2026-10-02") is first
        analyzer.clear_cache("H1")
        assert analyzer.analyze("H1", "2026-10-01", "2026-10-02") is not first

    def test_expired_entries_are_dropped_on_write(self, analyzer, clock):
        analyzer._cached(("analysis", "H1", 1), lambda: "old")
        analyzer._cached(("seasonal", "H2"), lambda: "old")
        clock.advance(minutes=31)
        analyzer._cached(("analysis", "H1", 2), lambda: "new")
        assert list(analyzer._cache) == [("analysis", "H1", 2)]

    def test_cache_survives_concurrent_clears(self, analyzer):
        errors = []

        def writer(n):
            try:
                for i in range(500):
                    analyzer._cached(("analysis", "H1", n, i), lambda: i)
            except RuntimeError as e:
                errors.append(e)

        def clearer():
            try:
                for _ in range(500):
                    analyzer.clear_cache("H1")
            except RuntimeError as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads.append(threading.Thread(target=clearer))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []


class TestSeasonality:

    def test_seasonal_index_from_history(self, analyzer, repository, hotel):
        repository.add_bookings(make_bookings([
            ("STANDARD", "2026-03-10", 2, 1, 200.0, "2026-02-01 10:00"),
            ("STANDARD", "2026-07-01", 10, 4, 4000.0, "2026-05-01 10:00"),
        ]))
        index = analyzer.seasonal_index("H1")
        assert index[7] > 1.25
        assert index[3] < 1.0
        # observed without demand / never observed
        assert index[4] == MIN_SEASONAL_INDEX
        assert index[12] == 1.0

        classes = analyzer.classify_seasons(index)
        assert classes[7] == "PEAK_SEASON"
        assert classes[4] == "LOW_SEASON"
        assert classes[12] == "SHOULDER_SEASON"


class TestTrend:

    def test_growing_weekly_volume_is_increasing(self, analyzer, repository, hotel):
        rows = []
        for weeks_ago, count in ((4, 1), (3, 2), (2, 3), (1, 4)):
            created = NOW - timedelta(weeks=weeks_ago)
            rows += [("STANDARD", "2026-12-01", 1, 1, 100.0, created)] * count
        repository.add_bookings(make_bookings(rows))

        direction, momentum = analyzer.trend("H1")
        assert direction == "increasing"
        assert momentum > 0.05

    def test_no_bookings_is_flat(self, analyzer, hotel):
        assert analyzer.trend("H1") == ("flat", 0.0)

    def test_booking_pace_buckets(self, analyzer, stays):
        pace = analyzer.booking_pace("H1")
        # lead times of 30 and 12 days
        assert pace["30"] == 1
        assert pace["14"] == 1
        assert sum(pace.values()) == 2


class TestForecast:

    def test_prior_patterns_without_history(self, analyzer, hotel):
        snapshot = analyzer.analyze("H1", "2026-10-15", "2026-10-21")

        thursday = snapshot.forecast_for("2026-10-15")
        # 0.7 base x 1.0 October x 0.85 Thursday x 1.5 same day
        assert thursday.demand_score == pytest.approx(0.89, abs=0.01)
        assert thursday.recommendation["action"] == "INCREASE_PRICE"
        assert thursday.recommendation["intensity"] == "HIGH"

        monday = snapshot.forecast_for("2026-10-19")
        assert monday.occupancy_probability == 49
        assert monday.recommendation == {
            "action": "DECREASE_PRICE", "intensity": "MEDIUM", "reason": "Below average demand",
        }
        assert snapshot.forecast_summary["total_days"] == 7

    @pytest.mark.parametrize("lead,expected", [(0, 1.5), (2, 1.1), (7, 1.0), (45, 0.7), (400, 0.7)])
    def test_lead_time_demand_multiplier(self, analyzer, lead, expected):
        assert analyzer.lead_time_demand_multiplier(lead) == expected


class TestLiveSignals:

    def test_hourly_baseline_and_last_hour(self, analyzer, repository, hotel):
        rows = [
            ("STANDARD", "2026-11-01", 1, 1, 100.0, NOW - timedelta(weeks=w, minutes=30))
            for w in (1, 2, 3, 4)
        ]
        rows.append(("STANDARD", "2026-11-01", 1, 1, 100.0, NOW - timedelta(weeks=1, minutes=10)))
        rows += [
            ("STANDARD", "2026-11-01", 1, 1, 100.0, NOW - timedelta(minutes=m), "PENDING")
            for m in (5, 20, 50)
        ]
        rows.append(("STANDARD", "2026-11-01", 1, 1, 100.0, NOW - timedelta(minutes=61)))
        rows.append(("STANDARD", "2026-11-01", 1, 1, 100.0, NOW - timedelta(minutes=15), "CANCELLED"))
        repository.add_bookings(make_bookings(rows))

        assert analyzer.bookings_last_hour("H1") == 3
        assert analyzer.hourly_booking_average("H1") == pytest.approx(1.25)

    def test_no_baseline_is_zero(self, analyzer, hotel):
        assert analyzer.hourly_booking_average("H1") == 0.0
