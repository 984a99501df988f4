"""
NetSentry packet sources.
Live link-layer capture (scapy L2 listen socket) and offline pcap replay, both
yielding (raw_bytes, length, link_type) tuples for the frame decoder.
"""

import logging
import threading
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

from config import SCAPY_AVAILABLE
from constants import CAPTURE_FILTER, LINKTYPE_ETHERNET, MAX_FRAME_SIZE

logger = logging.getLogger(__name__)

Frame = Tuple[bytes, int, Union[str, int]]


class CaptureUnavailable(Exception):
    """The capture handle could not be opened; str(exc) is the reason shown to clients."""


class LiveCaptureSource:
    """Promiscuous capture on one interface, filtered to TCP/UDP."""

    def __init__(self, interface: Optional[str] = None, bpf_filter: str = CAPTURE_FILTER):
        self.interface = interface
        self.bpf_filter = bpf_filter
        self._sock = None
        self._closed = threading.Event()

    @property
    def description(self) -> str:
        return f"interface {self.interface or 'default'}"

    def open(self) -> None:
        if not SCAPY_AVAILABLE:
            raise CaptureUnavailable("Scapy not available. Install with: pip install scapy")
        from scapy.all import conf
        try:
            self._sock = conf.L2listen(iface=self.interface or conf.iface, filter=self.bpf_filter)
        except Exception as exc:
            raise CaptureUnavailable(f"{type(exc).__name__}: {exc}") from exc

    def frames(self) -> Iterator[Frame]:
        from scapy.all import Ether
        if self._sock is None:
            raise CaptureUnavailable("Capture handle is not open")
        while not self._closed.is_set():
            try:
                pkt = self._sock.recv(MAX_FRAME_SIZE)
            except Exception:
                if self._closed.is_set():
                    return
                raise
            if pkt is None:
                continue
            raw = bytes(pkt)[:MAX_FRAME_SIZE]
            link_type = LINKTYPE_ETHERNET if isinstance(pkt, Ether) else type(pkt).__name__.upper()
            yield raw, len(raw), link_type

    def close(self) -> None:
        self._closed.set()
        if self._sock is not None:
            try:
                self._sock.close()
            except Exception as exc:
                logger.debug("Error closing capture socket: %s", exc)


class PcapFileSource:
    """Replays a capture file through the same pipeline as live traffic."""

    def __init__(self, path: str):
        self.path = Path(path).expanduser()
        self._reader = None

    @property
    def description(self) -> str:
        return f"pcap {self.path}"

    def open(self) -> None:
        if not SCAPY_AVAILABLE:
            raise CaptureUnavailable("Scapy not available. Install with: pip install scapy")
        if not self.path.exists():
            raise CaptureUnavailable(f"pcap_not_found: {self.path}")
        from scapy.all import PcapReader
        try:
            self._reader = PcapReader(str(self.path))
        except Exception as exc:
            raise CaptureUnavailable(f"{type(exc).__name__}: {exc}") from exc

    def frames(self) -> Iterator[Frame]:
        if self._reader is None:
            raise CaptureUnavailable("Capture file is not open")
        link_type = int(getattr(self._reader, "linktype", 1))
        for pkt in self._reader:
            raw = bytes(pkt)[:MAX_FRAME_SIZE]
            yield raw, len(raw), link_type

    def close(self) -> None:
        if self._reader is not None:
            try:
                self._reader.close()
            except Exception as exc:
                logger.debug("Error closing pcap reader: %s", exc)
