"""
NetSentry traffic analyzer.
Capture loop wiring: decode -> stats -> threat detection -> TLS audit trigger -> publish.
"""

import logging
import threading
from typing import List, Optional, Union

from capture import CaptureUnavailable
from decoder import decode_frame
from models import CaptureStatus, Message, Packet, PacketMessage, SslAuditMessage, StatsMessage
from services.broadcaster import Broadcaster
from services.jobs import TlsAuditor
from services.stats import StatsAggregator
from services.threat_detector import ThreatDetector

logger = logging.getLogger(__name__)


class TrafficAnalyzer:
    """Runs the per-packet pipeline and owns capture availability."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        auditor: TlsAuditor,
        *,
        detector: Optional[ThreatDetector] = None,
        stats: Optional[StatsAggregator] = None,
    ):
        self.broadcaster = broadcaster
        self.auditor = auditor
        self.detector = detector or ThreatDetector()
        self.stats = stats or StatsAggregator()
        self.source = None
        self.capture_thread: Optional[threading.Thread] = None
        self.is_capturing = False
        self.capture_available = False
        self.capture_error: Optional[str] = "Capture not started"
        self._lock = threading.Lock()
        self._pipeline_lock = threading.Lock()
        self._stop = threading.Event()

        if auditor.publish is None:
            auditor.publish = broadcaster.publish
        broadcaster.status_provider = self.capture_status
        broadcaster.snapshot_provider = self.snapshot_messages

    def start_capture(self, source) -> bool:
        """Open source and start the capture thread; False means degraded mode."""
        try:
            source.open()
        except CaptureUnavailable as exc:
            with self._lock:
                self.capture_available = False
                self.capture_error = str(exc) or "Unknown error"
            logger.error("Packet capture setup error: %s", self.capture_error)
            return False

        with self._lock:
            self.source = source
            self.capture_available = True
            self.capture_error = None
            self.is_capturing = True
        self._stop.clear()
        self.capture_thread = threading.Thread(
            target=self._capture_loop,
            args=(source,),
            name="capture",
            daemon=True,
        )
        self.capture_thread.start()
        logger.info("Capturing from %s", getattr(source, "description", source))
        return True

    def stop_capture(self) -> None:
        self._stop.set()
        if self.source is not None:
            self.source.close()
        if self.capture_thread:
            self.capture_thread.join(timeout=2)
        self.is_capturing = False
        self.auditor.shutdown()

    def _capture_loop(self, source) -> None:
        try:
            for raw, length, link_type in source.frames():
                if self._stop.is_set():
                    break
                self.process_frame(raw, length, link_type)
        except Exception as exc:
            if not self._stop.is_set():
                with self._lock:
                    self.capture_available = False
                    self.capture_error = str(exc) or type(exc).__name__
                logger.error("Capture error: %s", self.capture_error)
        finally:
            self.is_capturing = False

    def process_frame(self, raw: bytes, length: int, link_type: Union[str, int]) -> Optional[Packet]:
        packet = decode_frame(raw, length, link_type)
        if packet is None:
            return None

        with self._pipeline_lock:
            self.stats.record(packet)
            threat = self.detector.inspect(packet)
        if threat is not None:
            logger.debug("Threat %s from %s", threat.type, threat.source)
        if packet.protocol == "HTTPS":
            self.auditor.request_audit(packet.dest_ip)

        self.broadcaster.publish(PacketMessage(packet))
        self.broadcaster.publish(self.stats_message())
        return packet

    def capture_status(self) -> CaptureStatus:
        with self._lock:
            return CaptureStatus(
                using_real_capture=self.capture_available,
                capture_error=None if self.capture_available else self.capture_error,
            )

    def stats_message(self) -> StatsMessage:
        """Counters and threat list taken together, never mid-packet."""
        with self._pipeline_lock:
            return StatsMessage(self.stats.snapshot(), self.detector.threats())

    def snapshot_messages(self) -> List[Message]:
        return [self.stats_message(), SslAuditMessage(self.auditor.results())]
