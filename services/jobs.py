"""
NetSentry background TLS audit jobs.
At-most-once probing per host, executed off the capture thread.
"""

import concurrent.futures
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set

from constants import AUDIT_WORKERS, TLS_PORT, TLS_PROBE_TIMEOUT
from models import SslAuditMessage, SslAuditResult
from tls.tls_audit import TlsDiagnostics, TlsProbeError, audit_transcript
from toolkit.utils import elapsed_ms

logger = logging.getLogger(__name__)


class TlsAuditor:
    """Background audit manager: dedupes hosts, runs probes on a worker pool, publishes results."""

    def __init__(
        self,
        diagnostics: TlsDiagnostics,
        publish: Optional[Callable[[SslAuditMessage], object]] = None,
        *,
        max_workers: int = AUDIT_WORKERS,
        timeout: float = TLS_PROBE_TIMEOUT,
    ):
        self.diagnostics = diagnostics
        self.publish = publish
        self.timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="tls-audit",
        )
        self._lock = threading.Lock()
        # Held across append + publish; lists go out in the order they grew.
        self._publish_lock = threading.Lock()
        self._audited: Set[str] = set()
        self._results: List[SslAuditResult] = []
        self._failures: Dict[str, str] = {}
        self._futures: List[concurrent.futures.Future] = []
        self._accepting = True

    def request_audit(self, host: str) -> bool:
        """Start a probe for host unless one was already started; returns True if started."""
        with self._lock:
            if not self._accepting or host in self._audited:
                return False
            self._audited.add(host)
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(self._executor.submit(self._run, host))
        logger.info("Running SSL audit for: %s", host)
        return True

    def _run(self, host: str) -> None:
        try:
            self._audit(host)
        except Exception:
            logger.exception("SSL audit for %s aborted", host)

    def _audit(self, host: str) -> None:
        start = time.time()
        try:
            transcript = self.diagnostics.handshake(host, port=TLS_PORT, timeout=self.timeout)
        except TlsProbeError as exc:
            # Host stays in the audited set: no retry, nothing published.
            with self._lock:
                self._failures[host] = str(exc)
            logger.warning("SSL audit probe failed for %s: %s", host, exc)
            return

        result = audit_transcript(host, transcript, self.diagnostics)
        logger.info(
            "SSL audit for %s graded %s (%d issues, %.0f ms)",
            host, result.grade, len(result.issues), elapsed_ms(start),
        )
        with self._publish_lock:
            with self._lock:
                self._results.append(result)
                message = SslAuditMessage(list(self._results))
            if self.publish is not None:
                self.publish(message)

    def results(self) -> List[SslAuditResult]:
        with self._lock:
            return list(self._results)

    def audited_hosts(self) -> Set[str]:
        with self._lock:
            return set(self._audited)

    def failures(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._failures)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until every probe submitted so far has finished."""
        with self._lock:
            pending = list(self._futures)
        concurrent.futures.wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        """Stop accepting new audits; in-flight probes run to completion."""
        with self._lock:
            self._accepting = False
        self._executor.shutdown(wait=False)
