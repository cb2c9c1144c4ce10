"""One-time initialization handle for expensive process-wide resources.

OnceCell holds an optional value that is produced by exactly one caller:
the first thread to call get_or_init() runs the factory while concurrent
callers block on the lock, then every caller sees the same value. The
fast path after initialization takes no lock.

Used for:
    - The perceptual model (load once, possibly minutes on a cold cache)
    - The pixel backend selected by the capability probe

Factories should not raise for expected failures; return a value that
records the failure instead (the perceptual engine stores a "load failed"
state so a failed load is never retried). If a factory does raise, the cell
stays empty and the exception propagates to that caller.
"""

import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar('T')


class OnceCell(Generic[T]):
    """Lock-guarded, write-once container."""

    __slots__ = ('_value', '_set', '_lock')

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._set = False
        self._lock = threading.Lock()

    def get_or_init(self, factory: Callable[[], T]) -> T:
        if self._set:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if not self._set:
                self._value = factory()
                self._set = True
            return self._value  # type: ignore[return-value]

    def get(self) -> Optional[T]:
        """Current value, or None when not initialized yet."""
        return self._value if self._set else None

    def is_set(self) -> bool:
        return self._set

    def take(self) -> Optional[T]:
        """Empty the cell and return the previous value (for dispose/close)."""
        with self._lock:
            value = self._value if self._set else None
            self._value = None
            self._set = False
            return value
