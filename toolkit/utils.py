#!/usr/bin/env python3
"""Common helpers shared by the NetSentry pipeline modules."""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def iso_from_epoch(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def dotted_quad(raw: bytes) -> str:
    return ".".join(str(b) for b in raw[:4])


def elapsed_ms(start_ts: float) -> float:
    return (time.time() - start_ts) * 1000.0
