#!/usr/bin/env python3
"""TLS posture audit (active probe of endpoints seen in traffic).

Implements:
- a diagnostics provider interface (handshake transcript + certificate parsing)
- the OpenSSL CLI provider (s_client / x509), as used for certificate inspection elsewhere
- transcript scanning, leaf certificate checks, and letter grading

The grade is a pure function of the number of issues found.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from constants import TLS_PORT, TLS_PROBE_TIMEOUT
from models import SslAuditResult

logger = logging.getLogger(__name__)


class TlsProbeError(Exception):
    """Handshake could not be completed (timeout, refused, tool missing)."""


class CertificateParseError(Exception):
    """Leaf certificate could not be decoded."""


@dataclass(frozen=True)
class CertificateInfo:
    subject: str
    common_name: Optional[str]
    not_before: datetime
    not_after: datetime


class TlsDiagnostics(Protocol):
    def handshake(self, host: str, *, port: int = TLS_PORT, timeout: float = TLS_PROBE_TIMEOUT) -> str:
        ...

    def parse_certificate(self, pem: str) -> CertificateInfo:
        ...


# (pattern, issue) checked against the s_client transcript, in report order.
_TRANSCRIPT_ISSUES = [
    (re.compile(r"TLSv1(?:\.[01])?(?![.\d])", re.I), "TLS 1.0/1.1 supported"),
    (re.compile(r"RC4", re.I), "Weak cipher: RC4"),
    (re.compile(r"self[- ]signed", re.I), "Self-signed certificate"),
    (re.compile(r"verify error", re.I), "Verification errors present"),
]
_NEGOTIATED_CIPHER = re.compile(r"Cipher\s*:\s*(?!0000|\(NONE\))\S", re.I)
_NULL_CIPHER = re.compile(r"Cipher is NULL", re.I)
_COMPRESSION = re.compile(r"Compression:\s*YES", re.I)
_PEM_BLOCK = re.compile(r"-+BEGIN CERTIFICATE-+.*?-+END CERTIFICATE-+", re.S)
_CN = re.compile(r"(?:^|[,/]\s*)CN\s*=\s*([^,/]+)")

GRADES = ("A+", "A", "B", "C")
LOWEST_GRADE = "D"


def grade_for(issue_count: int) -> str:
    if issue_count < 0:
        raise ValueError("issue_count must be >= 0")
    return GRADES[issue_count] if issue_count < len(GRADES) else LOWEST_GRADE


def scan_transcript(transcript: str) -> List[str]:
    issues = [issue for pattern, issue in _TRANSCRIPT_ISSUES if pattern.search(transcript)]
    if not _NEGOTIATED_CIPHER.search(transcript):
        issues.append("No valid cipher negotiated")
    if _NULL_CIPHER.search(transcript):
        issues.append("NULL cipher used")
    if _COMPRESSION.search(transcript):
        issues.append("Compression enabled (CRIME attack risk)")
    return issues


def extract_leaf_certificate(transcript: str) -> Optional[str]:
    m = _PEM_BLOCK.search(transcript)
    return m.group(0) if m else None


def common_name_from_subject(subject: str) -> Optional[str]:
    m = _CN.search(subject or "")
    return m.group(1).strip() if m else None


def certificate_issues(host: str, cert: CertificateInfo, now: datetime) -> List[str]:
    issues = []
    if cert.not_after < now:
        issues.append("Certificate expired")
    if cert.subject and cert.common_name != host:
        issues.append(f"Certificate CN mismatch: {cert.subject}")
    return issues


def audit_transcript(
    host: str,
    transcript: str,
    diagnostics: TlsDiagnostics,
    *,
    now: Optional[datetime] = None,
) -> SslAuditResult:
    """Turn one handshake transcript into a graded SslAuditResult."""
    now = now or datetime.now(timezone.utc)
    issues = scan_transcript(transcript)
    valid_from = valid_to = None

    pem = extract_leaf_certificate(transcript)
    if pem is None:
        issues.append("No certificate returned")
    else:
        try:
            cert = diagnostics.parse_certificate(pem)
        except CertificateParseError as exc:
            logger.debug("Certificate parse failed for %s: %s", host, exc)
            issues.append("Error parsing certificate")
        else:
            valid_from = cert.not_before.isoformat()
            valid_to = cert.not_after.isoformat()
            issues.extend(certificate_issues(host, cert, now))

    return SslAuditResult(
        host=host,
        issues=issues,
        grade=grade_for(len(issues)),
        cert_valid_from=valid_from,
        cert_valid_to=valid_to,
    )


# ------------------------------
# OpenSSL CLI provider
# ------------------------------

def _parse_openssl_date(value: str) -> datetime:
    # e.g. "Jan  1 00:00:00 2025 GMT"
    return datetime.strptime(value.strip(), "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)


def parse_x509_fields(text: str) -> CertificateInfo:
    """Parse `openssl x509 -noout -subject -startdate -enddate` output."""
    fields = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip().lower()] = value.strip()
    if "notbefore" not in fields or "notafter" not in fields:
        raise CertificateParseError("validity dates missing from x509 output")
    try:
        not_before = _parse_openssl_date(fields["notbefore"])
        not_after = _parse_openssl_date(fields["notafter"])
    except ValueError as exc:
        raise CertificateParseError(str(exc)) from exc
    subject = fields.get("subject", "")
    return CertificateInfo(
        subject=subject,
        common_name=common_name_from_subject(subject),
        not_before=not_before,
        not_after=not_after,
    )


class OpenSslDiagnostics:
    """Runs `openssl s_client` / `openssl x509` as subprocesses."""

    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or shutil.which("openssl") or "openssl"

    def handshake(self, host: str, *, port: int = TLS_PORT, timeout: float = TLS_PROBE_TIMEOUT) -> str:
        cmd = [self.binary, "s_client", "-connect", f"{host}:{int(port)}", "-servername", host]
        try:
            res = subprocess.run(cmd, input=b"", capture_output=True, timeout=max(1, timeout))
        except subprocess.TimeoutExpired as exc:
            raise TlsProbeError(f"timeout after {timeout}s") from exc
        except OSError as exc:
            raise TlsProbeError(f"exec_failed_{type(exc).__name__}: {exc}") from exc
        if res.returncode != 0:
            err = res.stderr.decode("utf-8", errors="ignore").strip().splitlines()
            raise TlsProbeError(f"s_client exited {res.returncode}: {err[-1] if err else 'no output'}")
        return res.stdout.decode("utf-8", errors="ignore")

    def parse_certificate(self, pem: str) -> CertificateInfo:
        cmd = [self.binary, "x509", "-noout", "-subject", "-startdate", "-enddate", "-nameopt", "RFC2253"]
        try:
            res = subprocess.run(cmd, input=pem, capture_output=True, text=True, timeout=3)
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise CertificateParseError(f"x509 failed: {type(exc).__name__}") from exc
        if res.returncode != 0:
            raise CertificateParseError((res.stderr or "").strip() or f"x509 exited {res.returncode}")
        return parse_x509_fields(res.stdout)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="One-off TLS posture audit of a host:443")
    parser.add_argument("host")
    parser.add_argument("--timeout", type=int, default=TLS_PROBE_TIMEOUT)
    parser.add_argument("--openssl", default=None, help="Path to the openssl binary (default: from PATH)")
    args = parser.parse_args(argv)

    diagnostics = OpenSslDiagnostics(args.openssl)
    try:
        transcript = diagnostics.handshake(args.host, timeout=args.timeout)
    except TlsProbeError as exc:
        print(json.dumps({"host": args.host, "error": str(exc)}, indent=2))
        return 2
    result = audit_transcript(args.host, transcript, diagnostics)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
