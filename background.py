"""Cancellable background "score now" task for the real-time driver."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

from airpark_model import Params
from fastscore import ScoreResult, ScoringCancelled, score_params

log = logging.getLogger(__name__)


class BackgroundScorer:
    """Runs at most one :func:`score_params` call off the caller's thread.

    ``busy`` reports whether a run is in flight; ``result`` holds the last
    completed :class:`ScoreResult`. A failed run leaves its exception in
    ``error``; a cancelled run sets ``cancelled``.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None) -> None:
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="fastscore")
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._cancel = threading.Event()
        self.result: Optional[ScoreResult] = None
        self.error: Optional[BaseException] = None
        self.cancelled = False

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._future is not None and not self._future.done()

    def submit(self, params: Params, n: int, **opts: Any) -> bool:
        """Start scoring ``params`` with ``n`` aircraft; False if already busy."""

        with self._lock:
            if self._future is not None and not self._future.done():
                return False
            self._cancel = threading.Event()
            self.error = None
            self.cancelled = False
            cancel = self._cancel
            self._future = self._executor.submit(score_params, params, n=int(n), cancel=cancel, **opts)
            self._future.add_done_callback(self._on_done)
        log.info("background scoring started for %d aircraft", n)
        return True

    def _on_done(self, future: Future) -> None:
        try:
            result = future.result()
        except ScoringCancelled:
            self.cancelled = True
            log.info("background scoring cancelled")
            return
        except Exception as exc:  # noqa: BLE001
            self.error = exc
            log.exception("background scoring failed")
            return
        self.result = result

    def cancel(self) -> None:
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[ScoreResult]:
        """Block until the current run finishes; returns the result slot."""

        with self._lock:
            future = self._future
        if future is None:
            return self.result
        try:
            result = future.result(timeout=timeout)
        except ScoringCancelled:
            self.cancelled = True
            return self.result
        self.result = result
        return result

    def shutdown(self) -> None:
        self.cancel()
        self._executor.shutdown(wait=True)


__all__ = ["BackgroundScorer"]
