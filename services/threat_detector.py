"""
NetSentry threat detector.
Per-source stateful heuristics: port scan, flooding, encrypted traffic on
uncommon ports, oversized DNS, oversized TCP.
"""

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set

from constants import (
    DNS_MAX_SIZE,
    FLOOD_THRESHOLD,
    FLOOD_WINDOW_SECONDS,
    MAX_THREATS,
    MAX_TRACKED_SOURCES,
    PORT_SCAN_THRESHOLD,
    TCP_STORM_SIZE,
)
from models import SEVERITY_HIGH, SEVERITY_LOW, SEVERITY_MEDIUM, Packet, ThreatEvent
from toolkit.utils import iso_from_epoch, new_id

PORT_SCAN = "Port Scan"
FLOODING = "Flooding / DoS Attempt"
ENCRYPTED_UNCOMMON_PORT = "Encrypted Traffic on Uncommon Port"
ABNORMAL_DNS_SIZE = "Abnormal DNS Packet Size"
LARGE_TCP_PACKET = "Unusually Large TCP Packet"


@dataclass
class SourceState:
    """Detector memory for one source IP."""

    dest_ports: Set[int] = field(default_factory=set)
    # Holding threshold + 1 timestamps is enough to decide "more than threshold in window".
    window: Deque[float] = field(default_factory=lambda: deque(maxlen=FLOOD_THRESHOLD + 1))


class ThreatDetector:
    """Evaluates each packet against the rules in priority order; first match wins."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        max_sources: int = MAX_TRACKED_SOURCES,
        max_threats: int = MAX_THREATS,
    ):
        self._clock = clock
        self._max_sources = max(1, int(max_sources))
        self._sources: "OrderedDict[str, SourceState]" = OrderedDict()
        self._threats: Deque[ThreatEvent] = deque(maxlen=max(1, int(max_threats)))
        self._lock = threading.Lock()

    def _state_for(self, source_ip: str) -> SourceState:
        state = self._sources.get(source_ip)
        if state is None:
            state = SourceState()
            self._sources[source_ip] = state
            # Least recently active sources are forgotten first.
            while len(self._sources) > self._max_sources:
                self._sources.popitem(last=False)
        else:
            self._sources.move_to_end(source_ip)
        return state

    def _evaluate(self, packet: Packet, state: SourceState, now: float):
        state.dest_ports.add(packet.dest_port)
        if len(state.dest_ports) > PORT_SCAN_THRESHOLD:
            return PORT_SCAN, SEVERITY_MEDIUM

        window = state.window
        window.append(now)
        while window and now - window[0] > FLOOD_WINDOW_SECONDS:
            window.popleft()
        if len(window) > FLOOD_THRESHOLD:
            return FLOODING, SEVERITY_HIGH

        if packet.encrypted and packet.dest_port != 443 and packet.dest_port > 1024:
            return ENCRYPTED_UNCOMMON_PORT, SEVERITY_LOW
        if packet.protocol == "DNS" and packet.size > DNS_MAX_SIZE:
            return ABNORMAL_DNS_SIZE, SEVERITY_MEDIUM
        if packet.protocol == "TCP" and packet.size > TCP_STORM_SIZE:
            return LARGE_TCP_PACKET, SEVERITY_MEDIUM
        return None

    def inspect(self, packet: Packet) -> Optional[ThreatEvent]:
        """Update state for packet.source_ip and return at most one event."""
        now = self._clock()
        with self._lock:
            hit = self._evaluate(packet, self._state_for(packet.source_ip), now)
            if hit is None:
                return None
            kind, severity = hit
            event = ThreatEvent(
                id=new_id(),
                type=kind,
                source=packet.source_ip,
                timestamp=iso_from_epoch(now),
                severity=severity,
            )
            self._threats.append(event)
            return event

    def threats(self) -> List[ThreatEvent]:
        with self._lock:
            return list(self._threats)

    def tracked_sources(self) -> int:
        with self._lock:
            return len(self._sources)
