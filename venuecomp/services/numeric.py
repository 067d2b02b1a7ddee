# services/numeric.py - Numeric instability reporting and escalation
import logging
import threading
import warnings
from contextlib import contextmanager

from venuecomp.domain.errors import NumericInstabilityError, NumericInstabilityWarning

logger = logging.getLogger(__name__)


class NumericGuard:
    """Counts skipped non-finite terms and aborts once they recur too often within one pass"""

    def __init__(self, tolerance: int = 5):
        self.tolerance = tolerance
        self.count = 0
        self._depth = 0
        self._lock = threading.Lock()

    @contextmanager
    def scope(self):
        """One counting pass; the count restarts on entry unless an outer pass is active"""
        with self._lock:
            if self._depth == 0:
                self.count = 0
            self._depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._depth -= 1

    def report(self, message: str) -> None:
        with self._lock:
            self.count += 1
            count = self.count

        logger.warning(f"⚠️  Numeric instability ({count}/{self.tolerance}): {message}")
        warnings.warn(message, NumericInstabilityWarning, stacklevel=2)

        if count > self.tolerance:
            raise NumericInstabilityError(
                f"Numeric instability occurred {count} times (tolerance {self.tolerance}); last: {message}"
            )
