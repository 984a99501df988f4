#!/usr/bin/env python3
"""NetSentry console subscriber.

Connects to the Socket.IO stream, prints each envelope, and reconnects after
drops. Reconnection is an explicit state machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> WAITING -> CONNECTING ...

The delay is fixed (5 s, like the dashboard) or exponential with a cap.
"""

from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import socketio

from toolkit.logging_setup import setup_logging

logger = logging.getLogger(__name__)

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"
WAITING = "waiting"
STOPPED = "stopped"


@dataclass
class BackoffPolicy:
    base_delay: float = 5.0
    factor: float = 1.0
    max_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (1-based)."""
        n = max(1, int(attempt))
        return min(self.max_delay, self.base_delay * (self.factor ** (n - 1)))


FIXED_BACKOFF = BackoffPolicy()
EXPONENTIAL_BACKOFF = BackoffPolicy(base_delay=1.0, factor=2.0, max_delay=60.0)


class ReconnectStateMachine:
    """Tracks connection state and decides how long to wait before the next attempt."""

    _TRANSITIONS = {
        DISCONNECTED: {CONNECTING, STOPPED},
        CONNECTING: {CONNECTED, WAITING, STOPPED},
        CONNECTED: {WAITING, STOPPED},
        WAITING: {CONNECTING, STOPPED},
        STOPPED: set(),
    }

    def __init__(self, policy: BackoffPolicy = FIXED_BACKOFF):
        self.policy = policy
        self.state = DISCONNECTED
        self.attempts = 0

    def _move(self, new_state: str) -> None:
        if new_state not in self._TRANSITIONS[self.state]:
            raise ValueError(f"invalid transition {self.state} -> {new_state}")
        self.state = new_state

    def connecting(self) -> None:
        self._move(CONNECTING)

    def connected(self) -> None:
        self._move(CONNECTED)
        self.attempts = 0

    def lost(self) -> float:
        """Connection failed or dropped; returns seconds to wait before retrying."""
        self._move(WAITING)
        self.attempts += 1
        return self.policy.delay(self.attempts)

    def stop(self) -> None:
        if self.state != STOPPED:
            self._move(STOPPED)

    @property
    def stopped(self) -> bool:
        return self.state == STOPPED


def format_envelope(envelope: dict) -> str:
    kind = envelope.get("type", "?")
    data = envelope.get("data")
    if kind == "packet":
        return (
            f"[packet] {data['sourceIp']}:{data['sourcePort']} -> {data['destIp']}:{data['destPort']} "
            f"{data['protocol']} {data['size']}B{' (enc)' if data['encrypted'] else ''}"
        )
    if kind == "stats":
        return (
            f"[stats] total={data['totalPackets']} enc={data['encryptedCount']} "
            f"plain={data['unencryptedCount']} threats={len(data.get('threats', []))}"
        )
    if kind == "ssl_audit":
        return "[ssl_audit] " + ", ".join(f"{r['host']}={r['grade']}" for r in data)
    return f"[{kind}] {json.dumps(data)}"


class MonitorClient:
    def __init__(
        self,
        url: str,
        *,
        policy: BackoffPolicy = FIXED_BACKOFF,
        on_envelope: Optional[Callable[[dict], None]] = None,
    ):
        self.url = url
        self.machine = ReconnectStateMachine(policy)
        self.on_envelope = on_envelope or (lambda env: print(format_envelope(env)))
        self._wake = threading.Event()
        self.sio = socketio.Client(reconnection=False)
        self.sio.on("message", self._handle_message)

    def _handle_message(self, envelope) -> None:
        if isinstance(envelope, str):
            envelope = json.loads(envelope)
        self.on_envelope(envelope)

    def run(self) -> None:
        while not self.machine.stopped:
            self.machine.connecting()
            try:
                self.sio.connect(self.url)
            except socketio.exceptions.ConnectionError as exc:
                logger.warning("Connection to %s failed: %s", self.url, exc)
            else:
                self.machine.connected()
                logger.info("Connected to %s", self.url)
                self.sio.wait()
            if self.machine.stopped:
                break
            delay = self.machine.lost()
            logger.info("Disconnected; reconnecting in %.1fs", delay)
            self._wake.wait(delay)

    def stop(self) -> None:
        self.machine.stop()
        self._wake.set()
        if self.sio.connected:
            self.sio.disconnect()


def main() -> int:
    parser = argparse.ArgumentParser(description="NetSentry console subscriber")
    parser.add_argument("--url", default="http://localhost:3000")
    parser.add_argument("--backoff", choices=["fixed", "exponential"], default="fixed")
    args = parser.parse_args()

    setup_logging("INFO")
    policy = FIXED_BACKOFF if args.backoff == "fixed" else EXPONENTIAL_BACKOFF
    client = MonitorClient(args.url, policy=policy)
    try:
        client.run()
    except KeyboardInterrupt:
        client.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
