"""Debounced background saves."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Run ``callback`` once ``delay`` seconds after the last ``trigger()``.

    Every trigger cancels the previously scheduled run, so a burst of edits
    collapses into a single call. Errors raised by the callback are logged
    and swallowed; the next trigger simply tries again.
    """

    def __init__(self, delay: float, callback: Callable, timer_factory=threading.Timer):
        self.delay = delay
        self.callback = callback
        self._timer_factory = timer_factory
        self._timer = None
        self._pending_args: Optional[tuple] = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self, *args, **kwargs) -> None:
        with self._lock:
            self._cancel_locked()
            self._pending_args = (args, kwargs)
            timer = self._timer_factory(self.delay, self._fire)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def flush(self) -> bool:
        """Run the pending call now. Returns False when nothing was pending."""
        with self._lock:
            if self._timer is None:
                return False
            self._cancel_locked(keep_args=True)
        self._fire()
        return True

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self, keep_args: bool = False) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not keep_args:
            self._pending_args = None

    def _fire(self) -> None:
        with self._lock:
            call = self._pending_args
            self._pending_args = None
            self._timer = None
        if call is None:
            return
        args, kwargs = call
        try:
            self.callback(*args, **kwargs)
        except Exception:
            logger.warning('Auto-save failed; will retry on the next change', exc_info=True)
