import socket
import struct
import threading
from datetime import datetime, timezone

import pytest

import server
from models import Packet
from services.broadcaster import Broadcaster
from services.jobs import TlsAuditor
from services.threat_detector import ThreatDetector
from tls.tls_audit import CertificateInfo, CertificateParseError, TlsProbeError
from traffic_analyzer import TrafficAnalyzer


def build_frame(
    src="10.0.0.5",
    dst="93.184.216.34",
    sport=51515,
    dport=443,
    proto=6,
    payload=b"",
    version=4,
):
    """Ethernet + IPv4 (no options) + TCP/UDP/ICMP frame."""
    eth = b"\xaa" * 6 + b"\xbb" * 6 + b"\x08\x00"
    if proto == 6:
        l4 = struct.pack("!HHIIBBHHH", sport, dport, 0, 0, 5 << 4, 0x18, 65535, 0, 0)
    elif proto == 17:
        l4 = struct.pack("!HHHH", sport, dport, 8 + len(payload), 0)
    else:
        l4 = b"\x08\x00\x00\x00\x00\x01\x00\x01"
    total = 20 + len(l4) + len(payload)
    ip = struct.pack(
        "!BBHHHBBH4s4s",
        (version << 4) | 5, 0, total, 1, 0, 64, proto, 0,
        socket.inet_aton(src), socket.inet_aton(dst),
    )
    return eth + ip + l4 + payload


class FakeSubscriber:
    def __init__(self, key, fail=False):
        self.key = key
        self.fail = fail
        self.received = []
        self.closed = False

    def send(self, envelope):
        if self.fail:
            raise ConnectionResetError("connection severed")
        self.received.append(envelope)

    def close(self):
        self.closed = True

    def types(self):
        return [env["type"] for env in self.received]


VALID_CERT = CertificateInfo(
    subject="CN=93.184.216.34,O=Example",
    common_name="93.184.216.34",
    not_before=datetime(2024, 1, 1, tzinfo=timezone.utc),
    not_after=datetime(2099, 1, 1, tzinfo=timezone.utc),
)


class FakeDiagnostics:
    """TLS provider stub: fixed transcripts per host, call counting, optional failures."""

    def __init__(self, transcripts=None, cert=VALID_CERT, default_transcript="", fail_hosts=()):
        self.transcripts = dict(transcripts or {})
        self.default_transcript = default_transcript
        self.cert = cert
        self.fail_hosts = set(fail_hosts)
        self.calls = []
        self._lock = threading.Lock()

    def handshake(self, host, *, port=443, timeout=10):
        with self._lock:
            self.calls.append((host, port, timeout))
        if host in self.fail_hosts:
            raise TlsProbeError("timeout after 10s")
        return self.transcripts.get(host, self.default_transcript)

    def parse_certificate(self, pem):
        if self.cert is None:
            raise CertificateParseError("unable to load certificate")
        return self.cert


class FakeSource:
    def __init__(self, frames=(), open_error=None, runtime_error=None):
        self._frames = list(frames)
        self.open_error = open_error
        self.runtime_error = runtime_error
        self.description = "fake"
        self.closed = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error

    def frames(self):
        for frame in self._frames:
            yield frame
        if self.runtime_error is not None:
            raise self.runtime_error

    def close(self):
        self.closed = True


@pytest.fixture()
def make_frame():
    return build_frame


@pytest.fixture()
def make_packet():
    def _make(**overrides):
        fields = dict(
            id="pkt-1",
            timestamp="2024-01-01T00:00:00+00:00",
            source_ip="10.0.0.5",
            dest_ip="10.0.0.9",
            source_port=51515,
            dest_port=80,
            protocol="HTTP",
            size=60,
            encrypted=False,
        )
        fields.update(overrides)
        return Packet(**fields)

    return _make


class FakeClock:
    def __init__(self, start=1_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def diagnostics():
    return FakeDiagnostics()


@pytest.fixture()
def pipeline(diagnostics, clock):
    """Analyzer wired to a fake TLS provider and a deterministic detector clock."""
    broadcaster = Broadcaster()
    auditor = TlsAuditor(diagnostics, broadcaster.publish, max_workers=4)
    analyzer = TrafficAnalyzer(broadcaster, auditor, detector=ThreatDetector(clock=clock))
    yield analyzer
    auditor.shutdown()


@pytest.fixture()
def live_pipeline(pipeline):
    """Pipeline whose capture opened successfully (source yields nothing)."""
    assert pipeline.start_capture(FakeSource())
    pipeline.capture_thread.join(timeout=2)
    return pipeline


@pytest.fixture()
def client_ctx(monkeypatch, live_pipeline):
    """Socket.IO + Flask test clients bound to an isolated pipeline."""
    monkeypatch.setattr(server, "analyzer", live_pipeline)
    monkeypatch.setattr(server, "broadcaster", live_pipeline.broadcaster)
    monkeypatch.setattr(server, "API_KEY", "", raising=False)
    sio_client = server.socketio.test_client(server.app)
    yield {
        "client": server.app.test_client(),
        "sio": sio_client,
        "analyzer": live_pipeline,
    }
    if sio_client.is_connected():
        sio_client.disconnect()
