#!/usr/bin/env python3
"""Fan-out publish/subscribe hub for live NetSentry observers.

- The capture loop and the TLS audit workers publish messages (packet, stats, ssl_audit).
- Every connected subscriber gets each message; one broken subscriber is pruned
  without affecting the others or the publisher.
- New subscribers are greeted with status + current snapshots, or with a single
  error when capture is unavailable.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol

from models import CaptureStatus, ErrorMessage, Message, StatusMessage

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    key: str

    def send(self, envelope: dict) -> None:
        ...

    def close(self) -> None:
        ...


StatusProvider = Callable[[], CaptureStatus]
SnapshotProvider = Callable[[], List[Message]]


class Broadcaster:
    def __init__(
        self,
        status_provider: Optional[StatusProvider] = None,
        snapshot_provider: Optional[SnapshotProvider] = None,
    ):
        self.status_provider = status_provider
        self.snapshot_provider = snapshot_provider
        self._subscribers: Dict[str, Subscriber] = {}
        self._backlogs: Dict[str, List[dict]] = {}
        self._lock = threading.Lock()

    def _status(self) -> CaptureStatus:
        if self.status_provider is None:
            return CaptureStatus(using_real_capture=False, capture_error="Capture not started")
        return self.status_provider()

    def subscribe(self, subscriber: Subscriber) -> bool:
        """Greet a new subscriber and register it; returns False if it was turned away.

        The snapshot is taken in the same locked step that parks the subscriber
        in a backlog, so anything published while the greeting is in flight is
        queued and delivered right after it.
        """
        status = self._status()
        if not status.using_real_capture:
            reason = status.capture_error or "Unknown error"
            try:
                subscriber.send(ErrorMessage(f"Real-time packet capture is not available: {reason}").to_envelope())
            except Exception as exc:
                logger.info("Could not deliver capture error to %s: %s", subscriber.key, exc)
            self._close(subscriber)
            return False

        key = subscriber.key
        with self._lock:
            greeting: List[Message] = [StatusMessage(status)]
            if self.snapshot_provider is not None:
                greeting.extend(self.snapshot_provider())
            self._backlogs[key] = []

        try:
            pending = [message.to_envelope() for message in greeting]
            while True:
                for envelope in pending:
                    subscriber.send(envelope)
                with self._lock:
                    pending = self._backlogs.get(key)
                    if pending is None:
                        # unsubscribed mid-greeting
                        return False
                    if not pending:
                        del self._backlogs[key]
                        self._subscribers[key] = subscriber
                        count = len(self._subscribers)
                        break
                    self._backlogs[key] = []
        except Exception as exc:
            logger.info("Subscriber %s failed during greeting: %s", key, exc)
            with self._lock:
                self._backlogs.pop(key, None)
            self._close(subscriber)
            return False

        logger.info("Subscriber connected: %s (%d live)", key, count)
        return True

    def unsubscribe(self, key: str) -> None:
        with self._lock:
            self._backlogs.pop(key, None)
            removed = self._subscribers.pop(key, None)
            count = len(self._subscribers)
        if removed is not None:
            logger.info("Subscriber disconnected: %s (%d live)", key, count)

    def publish(self, message: Message) -> int:
        """Deliver message to every live subscriber; returns how many received it.

        Subscribers still being greeted get it queued instead and are not counted.
        """
        envelope = message.to_envelope()
        with self._lock:
            subs = list(self._subscribers.values())
            for backlog in self._backlogs.values():
                backlog.append(envelope)

        delivered = 0
        dead: List[Subscriber] = []
        for sub in subs:
            try:
                sub.send(envelope)
                delivered += 1
            except Exception as exc:
                logger.info("Pruning subscriber %s after failed delivery: %s", sub.key, exc)
                dead.append(sub)

        if dead:
            with self._lock:
                for sub in dead:
                    if self._subscribers.get(sub.key) is sub:
                        del self._subscribers[sub.key]
            for sub in dead:
                self._close(sub)
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _close(self, subscriber: Subscriber) -> None:
        try:
            subscriber.close()
        except Exception as exc:
            logger.debug("Ignoring close failure for %s: %s", subscriber.key, exc)
