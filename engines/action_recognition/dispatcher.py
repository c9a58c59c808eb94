"""
Event Dispatcher — typed publish/subscribe for ActionEvents.

Each subscriber gets its own FIFO queue drained by a daemon worker thread,
so publish() never blocks on a slow subscriber and a failing subscriber
never affects the publisher or the other subscribers.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from engines.action_recognition.rules import display_name, severity

logger = logging.getLogger(__name__)

Subscriber = Callable[['ActionEvent'], None]

_STOP = object()


class ScoreMap(Mapping):
    """Read-only category → confidence mapping. Copyable and picklable."""

    def __init__(self, scores: Optional[Mapping[str, float]] = None):
        self._scores: Dict[str, float] = {k: float(v) for k, v in (scores or {}).items()}

    def __getitem__(self, category: str) -> float:
        return self._scores[category]

    def __iter__(self) -> Iterator[str]:
        return iter(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def __repr__(self) -> str:
        return f"ScoreMap({self._scores!r})"


@dataclass(frozen=True)
class ActionEvent:
    """Outcome of one inference cycle. Immutable once published."""
    label: Optional[str] = None
    confidence: float = 0.0
    timestamp: float = field(default_factory=time.time)
    frame_id: int = 0
    scores: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        # Own a read-only copy so subscribers can't alter a shared event
        object.__setattr__(self, 'scores', ScoreMap(self.scores))

    @property
    def detected(self) -> bool:
        return self.label is not None

    @property
    def display_name(self) -> Optional[str]:
        return display_name(self.label) if self.label else None

    @property
    def message(self) -> str:
        if not self.detected:
            return 'Normal activity'
        return f"Action Detected: {self.display_name}, Confidence: {self.confidence:.2f}"

    def to_dict(self) -> dict:
        return {
            'label': self.label,
            'display_name': self.display_name,
            'severity': severity(self.label) if self.label else 'low',
            'confidence': round(self.confidence, 2),
            'timestamp': self.timestamp,
            'frame_id': self.frame_id,
            'scores': {k: round(v, 4) for k, v in self.scores.items()},
            'message': self.message,
        }


class _Subscription:
    """Queue + worker thread delivering events to one callback in order."""

    def __init__(self, callback: Subscriber, name: str):
        self.callback = callback
        self.name = name
        self.queue: queue.Queue = queue.Queue()
        self.delivered = 0
        self.errors = 0
        self._thread = threading.Thread(target=self._run, name=f'subscriber-{name}', daemon=True)
        self._thread.start()

    def _run(self):
        while True:
            event = self.queue.get()
            try:
                if event is _STOP:
                    return
                self.callback(event)
                self.delivered += 1
            except Exception as e:
                self.errors += 1
                logger.error(f"Subscriber '{self.name}' failed: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    def stop(self, timeout: Optional[float] = None):
        self.queue.put(_STOP)
        self._thread.join(timeout)


class EventDispatcher:
    """
    Fire-and-forget delivery of ActionEvents to registered subscribers.
    Delivery order is FIFO per subscriber; no acknowledgement, no retry.
    """

    def __init__(self):
        self._subscriptions: Dict[int, _Subscription] = {}
        self._lock = threading.Lock()
        self._next_id = 0
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Subscriber, name: Optional[str] = None) -> int:
        """
        Register a callback. Returns a token for unsubscribe().
        """
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._subscriptions[token] = _Subscription(
                callback, name or getattr(callback, '__name__', f'sub{token}')
            )
        logger.debug(f"EventDispatcher: subscriber {token} registered")
        return token

    def unsubscribe(self, token: int, timeout: Optional[float] = None) -> None:
        """Remove a subscriber after it has drained its pending events."""
        with self._lock:
            subscription = self._subscriptions.pop(token, None)
        if subscription:
            subscription.stop(timeout)

    def publish(self, event: ActionEvent) -> None:
        """Queue the event for every current subscriber and return immediately."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self.published += 1
        for subscription in subscriptions:
            subscription.queue.put(event)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued event has been delivered.

        Returns:
            True if all queues drained before the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            subscriptions = list(self._subscriptions.values())

        for subscription in subscriptions:
            while subscription.queue.unfinished_tasks:
                if deadline is not None and time.monotonic() >= deadline:
                    return False
                time.sleep(0.005)
        return True

    def close(self, timeout: Optional[float] = None) -> None:
        """Deliver what is queued, then stop every worker thread."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.stop(timeout)

    def get_stats(self) -> dict:
        with self._lock:
            subscriptions: List[_Subscription] = list(self._subscriptions.values())
        return {
            'published': self.published,
            'subscribers': len(subscriptions),
            'delivered': sum(s.delivered for s in subscriptions),
            'subscriber_errors': sum(s.errors for s in subscriptions),
        }
