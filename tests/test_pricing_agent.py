"""
Tests for PriceCalculator: factor blend, rules, clamp, cache and fallback.
"""
from datetime import date, timedelta

import pytest

from conftest import NOW
from agents.pricing_agent import PriceCalculator, blend, competitor_multiplier, demand_label
from config.thresholds import STRATEGY_WEIGHTS
from utils.exceptions import ConfigurationError
from utils.hotel_config import HotelYieldConfig
from utils.rules import CustomerSegmentConfig, RuleSet, SegmentDiscount

SATURDAY = date(2026, 10, 17)


def rule(rule_id, priority=1, **overrides):
    fields = dict(
        rule_id=rule_id,
        name=f"Rule {rule_id}",
        kind="PROMOTIONAL",
        adjustment_type="PERCENTAGE",
        adjustment_value=-10,
        valid_from=NOW - timedelta(days=1),
        valid_until=NOW + timedelta(days=30),
        priority=priority,
    )
    fields.update(overrides)
    return RuleSet(**fields)


class BrokenAnalyzer:
    def occupancy_on(self, hotel_id, day, room_type=None):
        raise RuntimeError("bookings table unavailable")


class TestBlend:

    def test_saturday_at_ninety_two_percent(self, calculator, hotel):
        """
        Scenario: STANDARD at 100, Saturday two days out, 92% occupancy,
        MODERATE weights. occupancy 1.30, day-of-week 1.25, lead time 1.30,
        everything else neutral:
        0.3*1.3 + 0.2 + 0.15*1.25 + 0.15 + 0.1*1.3 + 0.05 + 0.05 = 1.1575
        """
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        assert quote.final_price == pytest.approx(115.75)
        assert quote.factor("occupancy") == 1.30
        assert quote.factor("day_of_week") == 1.25
        assert quote.factor("lead_time") == 1.30
        assert quote.factor("blended") == pytest.approx(1.1575)
        assert quote.demand_level == "HIGH"
        assert not quote.fallback

    def test_weights_change_with_strategy(self):
        factors = {name: 1.0 for name in STRATEGY_WEIGHTS["MODERATE"]}
        factors["occupancy"] = 1.5
        assert blend(factors, STRATEGY_WEIGHTS["AGGRESSIVE"]) > blend(factors, STRATEGY_WEIGHTS["CONSERVATIVE"])

    @pytest.mark.parametrize("multiplier,label", [
        (1.6, "PEAK"), (1.3, "VERY_HIGH"), (1.1, "HIGH"), (1.0, "NORMAL"), (0.7, "LOW"), (0.5, "VERY_LOW"),
    ])
    def test_demand_label(self, multiplier, label):
        assert demand_label(multiplier) == label

    @pytest.mark.parametrize("market,expected", [(None, 1.0), (70.0, 0.95), (140.0, 1.05), (100.0, 1.0)])
    def test_competitor_multiplier(self, market, expected):
        assert competitor_multiplier(100.0, market) == expected

    def test_competitor_feed_used_when_enabled(self, repository, analyzer, clock, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", competitor_pricing_enabled=True))
        calculator = PriceCalculator(repository, analyzer=analyzer, clock=clock,
                                     competitor_feed=lambda hotel_id, room_type, day: 60.0)
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        assert quote.factor("competitor") == 0.95
        assert quote.final_price < 115.75

    def test_stay_length_discount(self, calculator, hotel):
        config = HotelYieldConfig.from_dict("H1", {
            "length_of_stay_discounts": [{"min_nights": 3, "max_nights": None, "discount_pct": 20}],
        })
        one = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, config=config)
        three = calculator.price("H1", "STANDARD", SATURDAY, stay_length=3, occupancy=92, config=config)
        assert three.factor("length_of_stay") == pytest.approx(0.8)
        # 0.05 weight on "other"
        assert three.final_price == pytest.approx(one.final_price - 100 * 0.05 * 0.2)


class TestRulesAndBounds:

    def test_rules_apply_in_priority_order(self, calculator, hotel):
        rules = [
            rule("FLOOR", priority=1, adjustment_type="ABSOLUTE_PRICE", adjustment_value=90),
            rule("PROMO", priority=9),
        ]
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, rules=rules)
        # PROMO first (115.75 -> 104.18), then FLOOR sets 90
        assert quote.final_price == 90.0
        names = [name for name, _ in quote.factors if name.startswith("rule:")]
        assert names == ["rule:PROMO", "rule:FLOOR"]
        assert rules[1].performance.applications_count == 1

    def test_expired_rule_contributes_nothing(self, calculator, hotel):
        expired = rule("OLD", valid_from=NOW - timedelta(days=30), valid_until=NOW)
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, rules=[expired])
        assert quote.final_price == pytest.approx(115.75)
        assert expired.performance.applications_count == 0

    def test_other_hotels_rules_ignored(self, calculator, hotel):
        foreign = rule("H2ONLY", hotel_id="H2")
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, rules=[foreign])
        assert quote.final_price == pytest.approx(115.75)

    def test_clamp_holds_under_extreme_rules(self, calculator, hotel):
        config = HotelYieldConfig(hotel_id="H1", price_constraints={"STANDARD": (80.0, 150.0)})
        up = [rule("UP", adjustment_type="MULTIPLIER", adjustment_value=10)]
        down = [rule("DOWN", adjustment_type="ABSOLUTE_PRICE", adjustment_value=1)]
        high = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, config=config, rules=up,
                                use_cache=False)
        low = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, config=config, rules=down,
                               use_cache=False)
        assert high.final_price == 150.0
        assert low.final_price == 80.0

    def test_stored_rules_are_loaded_and_counters_saved(self, repository, calculator, hotel):
        repository.save_rule(rule("STORED", hotel_id="H1"))
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        assert quote.final_price == pytest.approx(104.175, abs=0.01)
        stored = repository.get_rules("H1")[0]
        assert stored.performance.applications_count == 1

    def test_segment_rule(self, calculator, hotel):
        corporate = rule("CORP", kind="CUSTOMER_SEGMENT", adjustment_value=0,
                         config=CustomerSegmentConfig(segments=[SegmentDiscount("CORPORATE", 10.0)]))
        plain = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, rules=[corporate])
        segment = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92, rules=[corporate],
                                   customer_segment="CORPORATE")
        assert plain.final_price == pytest.approx(115.75)
        assert segment.final_price == pytest.approx(104.175, abs=0.01)


class TestCacheAndFallback:

    def test_repeat_call_returns_cached_quote(self, calculator, hotel):
        first = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        second = calculator.price("H1", "STANDARD", SATURDAY, occupancy=50)
        assert second is first
        stats = calculator.get_stats()
        assert stats["cache_hits"] == 1
        assert stats["calculations"] == 1

    def test_quote_reaches_price_calendar(self, repository, calculator, hotel):
        calculator.price("H1", "DELUXE", SATURDAY, occupancy=92)
        stored = repository.get_price_quote("H1", "DELUXE", SATURDAY)
        assert stored.final_price == pytest.approx(231.5)

    def test_multi_night_quotes_are_not_cached(self, calculator, hotel):
        calculator.price("H1", "STANDARD", SATURDAY, stay_length=3, occupancy=92)
        assert len(calculator.cache) == 0

    def test_cache_expires_after_an_hour(self, calculator, clock, hotel):
        first = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        clock.advance(hours=1)
        assert calculator.price("H1", "STANDARD", SATURDAY, occupancy=92) is not first

    def test_fallback_to_clamped_base_price(self, repository, clock, hotel):
        repository.save_hotel(HotelYieldConfig(hotel_id="H1", price_constraints={"STANDARD": (120.0, None)}))
        calculator = PriceCalculator(repository, analyzer=BrokenAnalyzer(), clock=clock)
        quote = calculator.price("H1", "STANDARD", SATURDAY)
        assert quote.fallback
        assert quote.final_price == 120.0
        assert quote.factors == []
        assert calculator.stats["fallbacks"] == 1
        # fallbacks are never cached
        assert len(calculator.cache) == 0

    def test_unreadable_hotel_config_prices_with_defaults(self, calculator, repository, hotel, monkeypatch):
        def broken(hotel_id):
            raise ConfigurationError(f"Hotel {hotel_id}: occupancy bands must start at 0%")

        monkeypatch.setattr(repository, "get_hotel_config", broken)
        quote = calculator.price("H1", "STANDARD", SATURDAY, occupancy=92)
        assert not quote.fallback
        assert quote.final_price == pytest.approx(115.75)

    def test_unknown_room_type_raises(self, calculator, hotel):
        with pytest.raises(ValueError):
            calculator.price("H1", "PENTHOUSE", SATURDAY, occupancy=50)

    def test_quote_stay(self, calculator, hotel):
        stay = calculator.quote_stay("H1", "STANDARD", SATURDAY, 2)
        assert stay["nights"] == 2
        assert [q.date for q in stay["quotes"]] == [SATURDAY, SATURDAY + timedelta(days=1)]
        assert stay["total"] == pytest.approx(sum(q.final_price for q in stay["quotes"]))
