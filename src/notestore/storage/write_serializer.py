"""Process-wide gate that lets one mutating operation run at a time."""
import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class WriteSerializer:
    """Mutual-exclusion gate for engine mutations.

    Reentrant, so a caller that holds the gate may call engine operations
    that take it again. Use as ``with serializer:`` or ``serializer.hold()``;
    either form releases on every exit path.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # Written only by the holding thread
        self._owner: Optional[int] = None
        self._depth = 0

    def acquire(self) -> None:
        self._lock.acquire()
        self._owner = threading.get_ident()
        self._depth += 1

    def release(self) -> None:
        if self._owner != threading.get_ident():
            raise RuntimeError("Cannot release a write gate held by another thread")
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
        self._lock.release()

    def __enter__(self) -> "WriteSerializer":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @contextmanager
    def hold(self) -> Iterator["WriteSerializer"]:
        """Hold the gate for the duration of the block."""
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def is_held_by_current_thread(self) -> bool:
        """True if the calling thread currently holds the gate."""
        return self._owner == threading.get_ident()


# Default gate shared by every engine in this process
write_serializer = WriteSerializer()
