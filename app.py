#!/usr/bin/env python3
"""
NetSentry - live intrusion detection and TLS posture monitor
Entry point: wires the pipeline components and runs the Socket.IO server.
"""

import argparse
import logging

from capture import LiveCaptureSource, PcapFileSource
from config import SCAPY_AVAILABLE, Settings
from services.broadcaster import Broadcaster
from services.jobs import TlsAuditor
from services.threat_detector import ThreatDetector
from tls.tls_audit import OpenSslDiagnostics
from toolkit.logging_setup import setup_logging
from traffic_analyzer import TrafficAnalyzer

import server

logger = logging.getLogger("netsentry")


def build(settings: Settings) -> TrafficAnalyzer:
    broadcaster = Broadcaster()
    auditor = TlsAuditor(OpenSslDiagnostics(), broadcaster.publish, max_workers=settings.audit_workers)
    analyzer = TrafficAnalyzer(
        broadcaster,
        auditor,
        detector=ThreatDetector(max_threats=settings.max_threats),
    )
    server.broadcaster = broadcaster
    server.analyzer = analyzer
    server.API_KEY = settings.api_key
    return analyzer


def main() -> int:
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="NetSentry - live IDS and TLS posture monitor")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    parser.add_argument("--interface", default=settings.interface, help="Capture interface")
    parser.add_argument("--pcap", default=settings.pcap_path, help="Replay a pcap file instead of live capture")
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.log_file)
    analyzer = build(settings)
    source = PcapFileSource(args.pcap) if args.pcap else LiveCaptureSource(args.interface)
    if not analyzer.start_capture(source):
        logger.warning("Real-time packet capture is not available. Error: %s", analyzer.capture_error)

    logger.info("Server running on %s:%s (scapy available: %s)", args.host, args.port, SCAPY_AVAILABLE)
    try:
        server.socketio.run(
            server.app,
            host=args.host,
            port=args.port,
            debug=settings.debug,
            allow_unsafe_werkzeug=True,
        )
    finally:
        analyzer.stop_capture()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
