"""
Outbound event interface.
The engine only hands events to a sink; delivery (sockets, email, queues)
belongs to whoever wires the sink in.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PRICE_CHANGED = "PRICE_CHANGED"
DEMAND_SPIKE = "DEMAND_SPIKE"
JOB_FAILURE = "JOB_FAILURE"
PERFORMANCE_ALERT = "PERFORMANCE_ALERT"
SEASONAL_PRICING_UPDATE = "SEASONAL_PRICING_UPDATE"

EVENT_CATEGORIES = (
    PRICE_CHANGED,
    DEMAND_SPIKE,
    JOB_FAILURE,
    PERFORMANCE_ALERT,
    SEASONAL_PRICING_UPDATE,
)


@dataclass
class YieldEvent:
    """A fire-and-forget notification with a machine-readable category."""
    category: str
    payload: Dict = field(default_factory=dict)
    hotel_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "category": self.category,
            "hotel_id": self.hotel_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class EventSink:
    """Base sink. Subclasses implement `deliver`; `emit` never raises."""

    def emit(self, category: str, payload: Dict = None,
             hotel_id: Optional[str] = None) -> YieldEvent:
        if category not in EVENT_CATEGORIES:
            raise ValueError(f"Unknown event category: {category}")
        event = YieldEvent(category=category, payload=payload or {}, hotel_id=hotel_id)
        try:
            self.deliver(event)
        except Exception as e:
            logger.error(f"Event delivery failed for {category} (hotel {hotel_id}): {e}")
        return event

    def deliver(self, event: YieldEvent):
        raise NotImplementedError


class LoggingEventSink(EventSink):
    """Writes every event to the log; the default when nothing else is wired."""

    def deliver(self, event: YieldEvent):
        level = logging.WARNING if event.category in (JOB_FAILURE, PERFORMANCE_ALERT) else logging.INFO
        logger.log(level, f"[event] {event.category} hotel={event.hotel_id} {event.payload}")


class CollectingEventSink(EventSink):
    """Keeps events in memory."""

    def __init__(self):
        self.events: List[YieldEvent] = []

    def deliver(self, event: YieldEvent):
        self.events.append(event)

    def of_category(self, category: str) -> List[YieldEvent]:
        return [e for e in self.events if e.category == category]

    def clear(self):
        self.events.clear()


class CallbackEventSink(EventSink):
    """Fans each event out to a list of callables."""

    def __init__(self, callbacks: List[Callable[[YieldEvent], None]] = None):
        self.callbacks = list(callbacks or [])

    def deliver(self, event: YieldEvent):
        for callback in self.callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event callback {getattr(callback, '__name__', callback)} failed: {e}")
