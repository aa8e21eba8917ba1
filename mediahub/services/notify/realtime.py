"""Fan-out of pipeline progress and completion events to observers."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

import requests

from mediahub.config import NotifierConfig

_LOGGER = logging.getLogger(__name__)

UPLOAD_PROGRESS = "upload_progress"
UPLOAD_COMPLETE = "upload_complete"
UPLOAD_ERROR = "upload_error"


@dataclass
class PipelineEvent:
    type: str
    asset_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    emitted_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


Observer = Callable[[PipelineEvent], None]

_STOP = object()


class RealtimeNotifier:
    """Bounded-queue notifier; ``publish`` never blocks the caller.

    A single daemon thread drains the queue and hands every event to the
    registered observers and, when configured, POSTs it to a webhook.
    When the queue is full the event is dropped.
    """

    def __init__(
        self,
        config: NotifierConfig | None = None,
        session: requests.Session | None = None,
        observers: List[Observer] | None = None,
    ) -> None:
        self._config = config or NotifierConfig()
        self._session = session or (requests.Session() if self._config.webhook_url else None)
        self._observers: List[Observer] = list(observers or [])
        self._queue: queue.Queue = queue.Queue(maxsize=self._config.queue_size)
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self.dropped = 0

    def subscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def publish(self, event_type: str, asset_id: str, data: Dict[str, Any] | None = None) -> bool:
        """Queue an event for delivery. Returns False if it had to be dropped."""
        self._ensure_worker()
        event = PipelineEvent(type=event_type, asset_id=asset_id, data=dict(data or {}))
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            _LOGGER.debug("Notifier queue full; dropped %s for %s", event_type, asset_id)
            return False
        return True

    def flush(self) -> None:
        """Block until every queued event has been dispatched."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        worker = self._worker
        if worker is None:
            return
        self._queue.put(_STOP)
        worker.join(timeout=timeout)
        self._worker = None

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._drain, name="mediahub-notifier", daemon=True)
                self._worker.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._dispatch(item)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: PipelineEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception:  # noqa: BLE001
                _LOGGER.warning("Observer %r failed on %s", observer, event.type, exc_info=True)

        if self._config.webhook_url and self._session is not None:
            try:
                response = self._session.post(
                    self._config.webhook_url,
                    json=event.as_dict(),
                    timeout=self._config.http_timeout,
                )
                response.raise_for_status()
            except requests.RequestException as exc:
                _LOGGER.warning("Webhook delivery failed for %s/%s: %s", event.type, event.asset_id, exc)
