# services/cache.py - Compute-once-per-key map shared by worker threads
import threading
from typing import Callable, Dict, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class OnceCache(Generic[K, V]):
    """
    Insert-if-absent cache. Values are computed outside the lock, so two threads
    may race on the same key; the first stored value wins and every caller
    gets that value back. Callers must supply deterministic compute functions.
    """

    def __init__(self):
        self._values: Dict[K, V] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, key: K, compute: Callable[[K], V]) -> V:
        value = self._values.get(key)
        if value is not None:
            return value

        value = compute(key)
        with self._lock:
            return self._values.setdefault(key, value)

    def __contains__(self, key) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
