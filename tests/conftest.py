"""
Shared pytest fixtures: a temporary SQLite store seeded with pandas frames,
a controllable clock and an in-memory event sink.
"""
from datetime import datetime, timedelta

import pandas as pd
import pytest

from agents.demand_agent import DemandAnalyzer
from agents.monitor_agent import MonitorAgent
from agents.pricing_agent import PriceCalculator
from agents.yield_jobs import YieldJobs
from utils.db_utils import get_sqlalchemy_engine
from utils.events import CollectingEventSink
from utils.hotel_config import HotelYieldConfig
from utils.pricing_cache import PricingCache
from utils.repository import YieldRepository

# Thursday
NOW = datetime(2026, 10, 15, 10, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_bookings(rows):
    """
    Build a bookings frame from (room_type, check_in, nights, quantity,
    total_amount, created_at[, status]) tuples.
    """
    records = []
    for i, row in enumerate(rows):
        room_type, check_in, nights, quantity, amount, created_at = row[:6]
        status = row[6] if len(row) > 6 else "CONFIRMED"
        check_in = pd.Timestamp(check_in)
        records.append({
            "booking_id": f"B{i:05d}",
            "hotel_id": "H1",
            "room_type": room_type,
            "quantity": quantity,
            "check_in": check_in,
            "check_out": check_in + pd.Timedelta(days=nights),
            "created_at": pd.Timestamp(created_at),
            "total_amount": amount,
            "status": status,
        })
    return pd.DataFrame(records)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def engine(tmp_path):
    return get_sqlalchemy_engine(f"sqlite:///{tmp_path / 'yield.db'}")


@pytest.fixture
def repository(engine):
    repo = YieldRepository(engine)
    repo.create_schema()
    return repo


@pytest.fixture
def sink():
    return CollectingEventSink()


@pytest.fixture
def hotel(repository):
    """Hotel H1: 10 STANDARD rooms at 100 and 5 DELUXE rooms at 200."""
    config = HotelYieldConfig(hotel_id="H1", name="Harbour Hotel")
    repository.save_hotel(config)
    repository.save_rooms(pd.DataFrame([
        {"hotel_id": "H1", "room_type": "STANDARD", "quantity": 10, "base_price": 100.0},
        {"hotel_id": "H1", "room_type": "DELUXE", "quantity": 5, "base_price": 200.0},
    ]))
    return config


@pytest.fixture
def analyzer(repository, clock):
    return DemandAnalyzer(repository, clock=clock)


@pytest.fixture
def cache(repository, clock):
    return PricingCache(store=repository, clock=clock)


@pytest.fixture
def calculator(repository, analyzer, cache, clock):
    return PriceCalculator(repository, analyzer=analyzer, cache=cache, clock=clock)


@pytest.fixture
def monitor(repository, analyzer, sink, clock):
    return MonitorAgent(repository, analyzer=analyzer, sink=sink, clock=clock)


@pytest.fixture
def jobs(repository, analyzer, calculator, monitor, sink, clock):
    return YieldJobs(repository, calculator=calculator, analyzer=analyzer, monitor=monitor,
                     sink=sink, clock=clock, hotel_timeout=0, batch_pause=0)
