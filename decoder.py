"""
NetSentry frame decoder.
Manual Ethernet/IPv4/TCP/UDP header parsing plus port-based protocol
classification and the encrypted-traffic verdict.
"""

import logging
from typing import Optional, Union

from constants import (
    DEFAULT_PROTOCOL,
    ENCRYPTED_PORTS,
    ETHERNET_HEADER_LEN,
    IPPROTO_TCP,
    IPPROTO_UDP,
    KNOWN_PORTS,
    LINKTYPE_ETHERNET,
    UDP_HEADER_LEN,
)
from models import Packet
from toolkit.utils import dotted_quad, new_id, utc_now_iso

logger = logging.getLogger(__name__)

# pcap DLT_EN10MB, accepted alongside the string form
_DLT_EN10MB = 1


def classify_protocol(source_port: int, dest_port: int) -> str:
    """Label a flow by its well-known port, source side first."""
    return KNOWN_PORTS.get(source_port) or KNOWN_PORTS.get(dest_port) or DEFAULT_PROTOCOL


def is_tls_handshake(payload: bytes) -> bool:
    """True when payload starts with a TLS handshake record header (0x16 0x03 0x01-0x04)."""
    if len(payload) < 3:
        return False
    return payload[0] == 0x16 and payload[1] == 0x03 and 0x01 <= payload[2] <= 0x04


def is_encrypted(source_port: int, dest_port: int, payload: bytes = b"") -> bool:
    """True for well-known encrypted ports or a TLS handshake payload."""
    if source_port in ENCRYPTED_PORTS or dest_port in ENCRYPTED_PORTS:
        return True
    return is_tls_handshake(payload)


def _is_ethernet(link_type: Union[str, int]) -> bool:
    if isinstance(link_type, int):
        return link_type == _DLT_EN10MB
    return str(link_type).upper() == LINKTYPE_ETHERNET


def _transport_payload(frame: bytes, transport_offset: int, proto: int) -> bytes:
    if proto == IPPROTO_TCP:
        if len(frame) <= transport_offset + 12:
            return b""
        data_offset = (frame[transport_offset + 12] >> 4) * 4
        return frame[transport_offset + data_offset:]
    return frame[transport_offset + UDP_HEADER_LEN:]


def parse_frame(frame: bytes, length: int, link_type: Union[str, int]) -> Optional[Packet]:
    """Decode one frame; returns None for non-Ethernet or non-IPv4 frames.

    Raises IndexError/ValueError on truncated buffers; use decode_frame()
    from the capture loop.
    """
    if not _is_ethernet(link_type):
        return None

    eth = ETHERNET_HEADER_LEN
    version = (frame[eth] & 0xF0) >> 4
    if version != 4:
        return None

    ip_header_len = (frame[eth] & 0x0F) * 4
    if ip_header_len < 20:
        raise ValueError(f"invalid IPv4 header length {ip_header_len}")
    proto = frame[eth + 9]
    src_raw = frame[eth + 12:eth + 16]
    dst_raw = frame[eth + 16:eth + 20]
    if len(dst_raw) < 4:
        raise ValueError("truncated IPv4 header")
    source_ip = dotted_quad(src_raw)
    dest_ip = dotted_quad(dst_raw)

    source_port = dest_port = 0
    encrypted = False
    transport_offset = eth + ip_header_len
    if proto in (IPPROTO_TCP, IPPROTO_UDP):
        ports = frame[transport_offset:transport_offset + 4]
        if len(ports) < 4:
            raise ValueError("truncated transport header")
        source_port = int.from_bytes(ports[0:2], "big")
        dest_port = int.from_bytes(ports[2:4], "big")
        encrypted = is_encrypted(source_port, dest_port, _transport_payload(frame, transport_offset, proto))

    return Packet(
        id=new_id(),
        timestamp=utc_now_iso(),
        source_ip=source_ip,
        dest_ip=dest_ip,
        source_port=source_port,
        dest_port=dest_port,
        protocol=classify_protocol(source_port, dest_port),
        size=int(length),
        encrypted=encrypted,
    )


def decode_frame(frame: bytes, length: int, link_type: Union[str, int]) -> Optional[Packet]:
    """Capture-loop boundary: malformed frames are logged and dropped, never raised."""
    try:
        return parse_frame(frame, length, link_type)
    except Exception as exc:
        logger.debug("Dropping malformed frame (%d bytes): %s", length, exc)
        return None
