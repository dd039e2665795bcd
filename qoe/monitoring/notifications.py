"""
Typed notification channel for engine events.

The engine reports what it does through a single ``NotificationChannel``
instead of an inheritance-based event emitter. Consumers subscribe either
with a plain callback (optionally filtered by notification type) or with a
bounded ``asyncio.Queue`` they drain at their own pace.

Delivery is best effort and never disturbs a solve: a failing callback is
logged and skipped, and a full queue drops the notification with a warning.

Example:
    >>> channel = NotificationChannel()
    >>> channel.register(lambda n: print(n.type.value), types={NotificationType.FALLBACK_TRIGGERED})
    >>> queue = channel.subscribe()
    >>> channel.emit(FallbackTriggered(problem_id="p1", reason="timeout", fallback_algorithm="genetic_algorithm"))
"""

import asyncio
import logging
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """All notification types emitted by the engine."""

    OPTIMIZATION_STARTED = "optimization_started"
    OPTIMIZATION_COMPLETED = "optimization_completed"
    OPTIMIZATION_FAILED = "optimization_failed"
    FALLBACK_TRIGGERED = "fallback_triggered"
    QUANTUM_ADVANTAGE_DETECTED = "quantum_advantage_detected"
    PERFORMANCE_ALERT = "performance_alert"


@dataclass
class Notification:
    """Base class; every concrete notification pins its ``type``."""

    type: ClassVar[NotificationType]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class OptimizationStarted(Notification):
    problem_id: str
    realtime: bool = False
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.OPTIMIZATION_STARTED


@dataclass
class OptimizationCompleted(Notification):
    problem_id: str
    source: str
    fitness: float
    computation_time_ms: float
    cached: bool = False
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.OPTIMIZATION_COMPLETED


@dataclass
class OptimizationFailed(Notification):
    problem_id: str
    error: str
    stage: str
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.OPTIMIZATION_FAILED


@dataclass
class FallbackTriggered(Notification):
    problem_id: str
    reason: str
    fallback_algorithm: str
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.FALLBACK_TRIGGERED


@dataclass
class QuantumAdvantageDetected(Notification):
    problem_id: str
    quality_ratio: float
    speedup: float
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.QUANTUM_ADVANTAGE_DETECTED


@dataclass
class PerformanceAlert(Notification):
    metric: str
    value: float
    threshold: float
    severity: str
    message: str
    timestamp: float = field(default_factory=time.time)

    type: ClassVar[NotificationType] = NotificationType.PERFORMANCE_ALERT


NotificationCallback = Callable[[Notification], None]


class NotificationChannel:
    """
    Fan-out of engine notifications to callbacks and queues.

    Must be used from the event loop thread; the engine emits only from there.

    Args:
        queue_size: Capacity of each subscriber queue
        history_size: Number of recent notifications kept for inspection
    """

    def __init__(self, queue_size: int = 100, history_size: int = 200):
        self.queue_size = queue_size
        self._callbacks: List[Tuple[NotificationCallback, Optional[Set[NotificationType]]]] = []
        self._queues: Set[asyncio.Queue] = set()
        self._recent: deque = deque(maxlen=history_size)
        self._counts: Counter = Counter()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def register(self, callback: NotificationCallback,
                 types: Optional[Iterable[NotificationType]] = None) -> None:
        """
        Add a callback, optionally restricted to some notification types.

        Raises:
            TypeError: If ``callback`` is not callable
        """
        if not callable(callback):
            raise TypeError(f"Callback must be callable, got {type(callback)}")
        self._callbacks.append((callback, set(types) if types is not None else None))
        logger.debug(f"Registered notification callback: {callback}")

    def unregister(self, callback: NotificationCallback) -> None:
        self._callbacks = [(cb, types) for cb, types in self._callbacks if cb != callback]

    def subscribe(self) -> asyncio.Queue:
        """Return a new bounded queue receiving every notification."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def emit(self, notification: Notification) -> None:
        """Deliver a notification to every matching subscriber."""
        self._recent.append(notification)
        self._counts[notification.type] += 1

        for callback, types in list(self._callbacks):
            if types is not None and notification.type not in types:
                continue
            try:
                callback(notification)
            except Exception as e:
                logger.error(
                    f"Notification callback {getattr(callback, '__name__', callback)} "
                    f"failed on {notification.type.value}: {e}",
                    exc_info=True
                )

        for queue in list(self._queues):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping {notification.type.value}")

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def recent(self, notification_type: Optional[NotificationType] = None) -> List[Notification]:
        """Recently emitted notifications, oldest first."""
        if notification_type is None:
            return list(self._recent)
        return [n for n in self._recent if n.type == notification_type]

    def count(self, notification_type: NotificationType) -> int:
        """Total notifications of one type emitted since creation."""
        return self._counts[notification_type]

    def __len__(self) -> int:
        return len(self._callbacks) + len(self._queues)
