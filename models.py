"""
NetSentry data models.
Dataclasses for packets, threat events, TLS audit results, traffic stats,
and the five message kinds streamed to subscribers.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Union


SEVERITY_LOW = "Low"
SEVERITY_MEDIUM = "Medium"
SEVERITY_HIGH = "High"


@dataclass(frozen=True)
class Packet:
    """One decoded IPv4 frame."""

    id: str
    timestamp: str
    source_ip: str
    dest_ip: str
    source_port: int
    dest_port: int
    protocol: str
    size: int
    encrypted: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "sourceIp": self.source_ip,
            "sourcePort": self.source_port,
            "destIp": self.dest_ip,
            "destPort": self.dest_port,
            "protocol": self.protocol,
            "size": self.size,
            "encrypted": self.encrypted,
        }


@dataclass(frozen=True)
class ThreatEvent:
    """Heuristic alert raised against a source IP."""

    id: str
    type: str
    source: str
    timestamp: str
    severity: str  # Low, Medium, High

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "timestamp": self.timestamp,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class SslAuditResult:
    """Outcome of a single TLS endpoint probe."""

    host: str
    issues: List[str]
    grade: str
    cert_valid_from: Optional[str] = None
    cert_valid_to: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "issues": list(self.issues),
            "grade": self.grade,
            "certValidFrom": self.cert_valid_from,
            "certValidTo": self.cert_valid_to,
        }


@dataclass
class Stats:
    """Running traffic counters."""

    total_packets: int = 0
    protocol_counts: Dict[str, int] = field(default_factory=dict)
    encrypted_count: int = 0
    unencrypted_count: int = 0

    def to_dict(self) -> dict:
        return {
            "totalPackets": self.total_packets,
            "protocolCounts": dict(self.protocol_counts),
            "encryptedCount": self.encrypted_count,
            "unencryptedCount": self.unencrypted_count,
        }


@dataclass(frozen=True)
class CaptureStatus:
    """Whether live capture is running, and why not when it is not."""

    using_real_capture: bool
    capture_error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"usingRealCapture": self.using_real_capture}
        if self.capture_error:
            data["captureError"] = self.capture_error
        return data


# -----------------------------
# Subscriber messages
# -----------------------------

@dataclass(frozen=True)
class PacketMessage:
    type: ClassVar[str] = "packet"
    packet: Packet

    def payload(self):
        return self.packet.to_dict()

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload()}


@dataclass(frozen=True)
class StatsMessage:
    type: ClassVar[str] = "stats"
    stats: Stats
    threats: List[ThreatEvent] = field(default_factory=list)

    def payload(self):
        data = self.stats.to_dict()
        data["threats"] = [t.to_dict() for t in self.threats]
        return data

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload()}


@dataclass(frozen=True)
class SslAuditMessage:
    type: ClassVar[str] = "ssl_audit"
    results: List[SslAuditResult] = field(default_factory=list)

    def payload(self):
        return [r.to_dict() for r in self.results]

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload()}


@dataclass(frozen=True)
class StatusMessage:
    type: ClassVar[str] = "status"
    status: CaptureStatus

    def payload(self):
        return self.status.to_dict()

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload()}


@dataclass(frozen=True)
class ErrorMessage:
    type: ClassVar[str] = "error"
    message: str

    def payload(self):
        return {"message": self.message}

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload()}


Message = Union[PacketMessage, StatsMessage, SslAuditMessage, StatusMessage, ErrorMessage]
