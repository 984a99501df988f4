"""
NetSentry stats aggregator.
Monotonic traffic counters updated once per decoded packet.
"""

import threading

from models import Packet, Stats


class StatsAggregator:
    """Running totals by protocol label and encryption verdict."""

    def __init__(self):
        self._stats = Stats()
        self._lock = threading.Lock()

    def record(self, packet: Packet) -> None:
        with self._lock:
            s = self._stats
            s.total_packets += 1
            s.protocol_counts[packet.protocol] = s.protocol_counts.get(packet.protocol, 0) + 1
            if packet.encrypted:
                s.encrypted_count += 1
            else:
                s.unencrypted_count += 1

    def snapshot(self) -> Stats:
        with self._lock:
            s = self._stats
            return Stats(
                total_packets=s.total_packets,
                protocol_counts=dict(s.protocol_counts),
                encrypted_count=s.encrypted_count,
                unencrypted_count=s.unencrypted_count,
            )
