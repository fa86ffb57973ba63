from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    NETWORK_BUILT = "network_built"
    NETWORK_UPDATED = "network_updated"
    PATH_FOUND = "path_found"
    PATH_OPTIMIZED = "path_optimized"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    ERROR_OCCURRED = "error_occurred"
    PERFORMANCE_WARNING = "performance_warning"


@dataclass(frozen=True)
class NetworkBuiltPayload:
    version: int
    node_count: int
    edge_count: int
    build_time_ms: float


@dataclass(frozen=True)
class NetworkUpdatedPayload:
    version: int
    account_ids: tuple[str, ...]
    incremental: bool
    invalidated_entries: int


@dataclass(frozen=True)
class PathFoundPayload:
    buyer_id: str
    product_id: str
    quantity: int
    path_id: str
    overall_score: float
    elapsed_ms: float


@dataclass(frozen=True)
class PathOptimizedPayload:
    buyer_id: str
    product_id: str
    quantity: int
    strategy: str
    path_count: int
    pareto_size: int
    elapsed_ms: float


@dataclass(frozen=True)
class CachePayload:
    cache_name: str
    key: str


@dataclass(frozen=True)
class ErrorPayload:
    operation: str
    kind: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceWarningPayload:
    component: str
    metric: str
    value: float
    threshold: float


EventPayload = Union[
    NetworkBuiltPayload,
    NetworkUpdatedPayload,
    PathFoundPayload,
    PathOptimizedPayload,
    CachePayload,
    ErrorPayload,
    PerformanceWarningPayload,
]

PAYLOAD_TYPES: dict[EventType, type] = {
    EventType.NETWORK_BUILT: NetworkBuiltPayload,
    EventType.NETWORK_UPDATED: NetworkUpdatedPayload,
    EventType.PATH_FOUND: PathFoundPayload,
    EventType.PATH_OPTIMIZED: PathOptimizedPayload,
    EventType.CACHE_HIT: CachePayload,
    EventType.CACHE_MISS: CachePayload,
    EventType.ERROR_OCCURRED: ErrorPayload,
    EventType.PERFORMANCE_WARNING: PerformanceWarningPayload,
}


@dataclass(frozen=True)
class Event:
    type: EventType
    source: str
    payload: EventPayload
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[Event], None]


class EventBus:
    """
    In-process publish/subscribe channel keyed by EventType.

    Listeners run synchronously in emit order; an exception in one listener is
    logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = {t: [] for t in EventType}

    def subscribe(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, listener)

        return _unsubscribe

    def unsubscribe(self, event_type: EventType, listener: Listener) -> bool:
        try:
            self._listeners[event_type].remove(listener)
        except ValueError:
            return False
        return True

    def emit(self, event_type: EventType, source: str, payload: EventPayload) -> Event:
        expected = PAYLOAD_TYPES[event_type]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, got {type(payload).__name__}"
            )
        event = Event(type=event_type, source=source, payload=payload)
        # copy: listeners may unsubscribe themselves while being called
        for listener in list(self._listeners[event_type]):
            try:
                listener(event)
            except Exception:
                logger.exception(f"event listener failed event={event_type.value} source={source}")
        return event

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._listeners[event_type])
        return sum(len(v) for v in self._listeners.values())

    def clear(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()
