"""Background scans with last-request-wins semantics.

A caller that re-scans while a previous scan is still running (switching
project, refreshing a list) only ever sees the newest result: submitting a
new scan cancels the previous job's token, and a superseded job raises
ScanCancelledError instead of handing back stale views.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from . import config
from .errors import ScanCancelledError
from .scanner import CancelToken
from .types import EntityKind, ResolvedScan

logger = logging.getLogger(__name__)

ScanCallable = Callable[[EntityKind, "Path | None", CancelToken], ResolvedScan]


class ScanJob:
    """Handle for one submitted scan."""

    def __init__(self, seq: int, kind: EntityKind, project: Path | None, token: CancelToken, future: Future):
        self.seq = seq
        self.kind = kind
        self.project = project
        self.token = token
        self.future = future

    @property
    def superseded(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()
        self.future.cancel()

    def result(self, timeout: float | None = None) -> ResolvedScan:
        """Wait for the scan.

        Raises:
            ScanCancelledError: a newer request replaced this one.
        """
        try:
            views = self.future.result(timeout)
        except Exception as e:
            if self.token.cancelled:
                raise ScanCancelledError(f"Scan #{self.seq} of {self.kind} was superseded") from e
            raise
        if self.token.cancelled:
            raise ScanCancelledError(f"Scan #{self.seq} of {self.kind} was superseded")
        return views


class ScanCoordinator:
    """Runs scans on a thread pool; each submit supersedes the previous one."""

    def __init__(self, max_workers: int | None = None, scan_fn: ScanCallable | None = None):
        if max_workers is None:
            max_workers = int(config.load_config().get("scan", {}).get("max_workers", 1) or 1)
        if scan_fn is None:
            from .service import scan_kind

            scan_fn = scan_kind
        self._scan_fn = scan_fn
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ccswitch-scan")
        self._lock = threading.Lock()
        self._seq = 0
        self._current: ScanJob | None = None

    def submit(self, kind: EntityKind, project: Path | None = None) -> ScanJob:
        token = CancelToken()
        with self._lock:
            self._seq += 1
            previous = self._current
            if previous is not None and not previous.future.done():
                logger.debug("Superseding scan #%d (%s)", previous.seq, previous.kind)
            if previous is not None:
                previous.token.cancel()
            future = self._executor.submit(self._scan_fn, kind, project, token)
            job = ScanJob(self._seq, kind, project, token, future)
            self._current = job
        return job

    def scan(self, kind: EntityKind, project: Path | None = None) -> ResolvedScan:
        """Submit and wait. Raises ScanCancelledError if superseded meanwhile."""
        return self.submit(kind, project).result()

    @property
    def current(self) -> ScanJob | None:
        with self._lock:
            return self._current

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._current is not None:
                self._current.token.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ScanCoordinator":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
