"""
In-memory memo of the last calculated price per (hotel, room type, date).

The cache only saves work: dropping it forces recomputation but never
changes a price. An optional store receives every accepted quote
(write-through) so that booking surfaces can read prices from storage.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from config.thresholds import PRICE_FRESHNESS_SECONDS, PRICE_RETENTION_DAYS
from utils.feature_engineering import to_date

logger = logging.getLogger(__name__)

PriceKey = Tuple[str, str, date]


def price_key(hotel_id: str, room_type: str, day) -> PriceKey:
    return (str(hotel_id), room_type, to_date(day))


@dataclass
class PriceQuote:
    """Final price for one room type on one date, with its contributing factors."""
    hotel_id: str
    room_type: str
    date: date
    base_price: float
    final_price: float
    factors: List[Tuple[str, float]] = field(default_factory=list)
    demand_level: str = "NORMAL"
    computed_at: datetime = field(default_factory=datetime.now)
    fallback: bool = False

    @property
    def key(self) -> PriceKey:
        return price_key(self.hotel_id, self.room_type, self.date)

    def factor(self, name: str, default: float = 1.0) -> float:
        for factor_name, value in self.factors:
            if factor_name == name:
                return value
        return default

    def to_record(self) -> Dict:
        return {
            "hotel_id": self.hotel_id,
            "room_type": self.room_type,
            "date": self.date.isoformat(),
            "base_price": self.base_price,
            "final_price": self.final_price,
            "factors": [[name, value] for name, value in self.factors],
            "demand_level": self.demand_level,
            "computed_at": self.computed_at.isoformat(),
            "fallback": self.fallback,
        }

    @classmethod
    def from_record(cls, record: Dict) -> "PriceQuote":
        return cls(
            hotel_id=str(record["hotel_id"]),
            room_type=record["room_type"],
            date=to_date(record["date"]),
            base_price=float(record["base_price"]),
            final_price=float(record["final_price"]),
            factors=[(name, float(value)) for name, value in record.get("factors", [])],
            demand_level=record.get("demand_level", "NORMAL"),
            computed_at=datetime.fromisoformat(str(record["computed_at"])),
            fallback=bool(record.get("fallback", False)),
        )


class PricingCache:
    """
    Keyed, thread-safe quote store with a freshness window and a retention
    window.

    Writers to the same key resolve by `computed_at`: an older quote never
    replaces a newer one.
    """

    def __init__(self, freshness_seconds: float = PRICE_FRESHNESS_SECONDS,
                 retention_days: int = PRICE_RETENTION_DAYS, store=None,
                 clock: Callable[[], datetime] = None):
        self.freshness = timedelta(seconds=freshness_seconds)
        self.retention = timedelta(days=retention_days)
        self.store = store
        self.clock = clock or datetime.now
        self._entries: Dict[PriceKey, PriceQuote] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, quote: PriceQuote, now: datetime = None) -> bool:
        now = now or self.clock()
        return now - quote.computed_at < self.freshness

    def get(self, key: PriceKey) -> Tuple[Optional[PriceQuote], bool]:
        """Return (quote, True) for a fresh entry; expired entries are misses."""
        with self._lock:
            quote = self._entries.get(key)
            if quote is not None and self.is_fresh(quote):
                self.hits += 1
                return quote, True
            self.misses += 1
            return None, False

    def peek(self, key: PriceKey) -> Optional[PriceQuote]:
        """Last stored quote for `key`, fresh or not."""
        with self._lock:
            return self._entries.get(key)

    def put(self, key: PriceKey, quote: PriceQuote) -> bool:
        """Store `quote` unless a newer one is already held. Returns True if stored."""
        with self._lock:
            current = self._entries.get(key)
            if current is not None and current.computed_at > quote.computed_at:
                logger.debug(f"Discarding stale quote for {key}: newer entry already cached")
                return False
            self._entries[key] = quote

        if self.store is not None:
            try:
                self.store.save_price_quotes([quote])
            except Exception as e:
                # The in-memory entry stays valid; storage catches up on the next write
                logger.error(f"Price calendar write failed for {key}: {e}")
        return True

    def prune(self, retention_days: int = None) -> int:
        """Drop entries computed before the retention window. Returns the number removed."""
        retention = self.retention if retention_days is None else timedelta(days=retention_days)
        cutoff = self.clock() - retention
        with self._lock:
            expired = [k for k, q in self._entries.items() if q.computed_at < cutoff]
            for k in expired:
                del self._entries[k]

        if self.store is not None:
            try:
                self.store.prune_price_calendar(cutoff)
            except Exception as e:
                logger.error(f"Price calendar prune failed: {e}")

        if expired:
            logger.info(f"Pruned {len(expired)} cached quotes older than {cutoff:%Y-%m-%d}")
        return len(expired)

    def invalidate(self, hotel_id: str = None, room_type: str = None) -> int:
        """Forget quotes for a hotel (optionally one room type), or everything."""
        with self._lock:
            keys = [
                k for k in self._entries
                if (hotel_id is None or k[0] == str(hotel_id))
                and (room_type is None or k[1] == room_type)
            ]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def stats(self) -> Dict:
        total = self.hits + self.misses
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total * 100, 2) if total else 0.0,
        }
