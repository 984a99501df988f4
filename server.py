#!/usr/bin/env python3
"""
NetSentry - live intrusion detection and TLS posture monitor
Flask/Socket.IO surface: every Socket.IO client is a broadcaster subscriber,
plus a small read-only REST API over the same state.
"""

import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

from config import SCAPY_AVAILABLE


app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading", always_connect=True)
API_KEY = os.environ.get("NETSENTRY_API_KEY", "").strip()

# Set by app.py after creating instances
broadcaster = None
analyzer = None

SOCKET_NAMESPACE = "/"
ENVELOPE_EVENT = "message"


class SubscriberGone(Exception):
    pass


class SocketIOSubscriber:
    """Delivers envelopes to one Socket.IO client as `message` events."""

    def __init__(self, sio: SocketIO, sid: str):
        self.sio = sio
        self.key = sid

    def send(self, envelope: dict) -> None:
        if not self.sio.server.manager.is_connected(self.key, SOCKET_NAMESPACE):
            raise SubscriberGone(f"client {self.key} is no longer connected")
        self.sio.emit(ENVELOPE_EVENT, envelope, to=self.key, namespace=SOCKET_NAMESPACE)

    def close(self) -> None:
        self.sio.server.disconnect(self.key, namespace=SOCKET_NAMESPACE)


@app.before_request
def enforce_optional_api_key():
    """Optional API key guard. Disabled when NETSENTRY_API_KEY is unset."""
    if not API_KEY:
        return None
    if request.path == "/api/status":
        return None
    provided = request.headers.get("X-API-Key", "")
    if provided != API_KEY:
        return jsonify({"error": "Unauthorized"}), 401
    return None


@app.route("/api/status")
def get_status():
    status = analyzer.capture_status()
    return jsonify({
        "capturing": bool(analyzer.is_capturing),
        "using_real_capture": status.using_real_capture,
        "capture_error": status.capture_error,
        "subscribers": broadcaster.subscriber_count(),
        "audited_hosts": len(analyzer.auditor.audited_hosts()),
        "audit_failures": len(analyzer.auditor.failures()),
        "tracked_sources": analyzer.detector.tracked_sources(),
        "scapy_available": SCAPY_AVAILABLE,
        "api_key_enabled": bool(API_KEY),
    })


@app.route("/api/stats")
def get_stats():
    return jsonify(analyzer.stats_message().payload())


@app.route("/api/threats")
def get_threats():
    try:
        limit = max(1, int(request.args.get("limit", 100)))
    except ValueError:
        limit = 100
    threats = analyzer.detector.threats()[-limit:]
    return jsonify({"threats": [t.to_dict() for t in threats]})


@app.route("/api/ssl-audits")
def get_ssl_audits():
    return jsonify({
        "results": [r.to_dict() for r in analyzer.auditor.results()],
        "failures": analyzer.auditor.failures(),
    })


# WebSocket events for real-time updates
@socketio.on("connect")
def handle_connect():
    """Greet the client and register it, or send the capture error and close it."""
    broadcaster.subscribe(SocketIOSubscriber(socketio, request.sid))


@socketio.on("disconnect")
def handle_disconnect(reason=None):
    broadcaster.unsubscribe(request.sid)
