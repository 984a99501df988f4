"""
NetSentry configuration.
Optional dependency flags plus environment-driven settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from constants import AUDIT_WORKERS, MAX_THREATS

try:
    from scapy.all import conf, Ether, PcapReader  # noqa: F401
    SCAPY_AVAILABLE = True
except ImportError:
    SCAPY_AVAILABLE = False


def _env_flag(name: str) -> bool:
    return str(os.environ.get(name, "")).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.environ.get(name, "")).strip())
    except ValueError:
        return default


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    interface: Optional[str] = None
    pcap_path: Optional[str] = None
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None
    api_key: str = ""
    max_threats: int = MAX_THREATS
    audit_workers: int = AUDIT_WORKERS

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.environ.get("NETSENTRY_HOST", "0.0.0.0"),
            port=_env_int("NETSENTRY_PORT", 3000),
            interface=os.environ.get("NETSENTRY_INTERFACE") or None,
            pcap_path=os.environ.get("NETSENTRY_PCAP") or None,
            debug=_env_flag("NETSENTRY_DEBUG"),
            log_level=os.environ.get("NETSENTRY_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_file=os.environ.get("NETSENTRY_LOG_FILE") or None,
            api_key=os.environ.get("NETSENTRY_API_KEY", "").strip(),
            max_threats=max(1, _env_int("NETSENTRY_MAX_THREATS", MAX_THREATS)),
            audit_workers=max(1, _env_int("NETSENTRY_AUDIT_WORKERS", AUDIT_WORKERS)),
        )
