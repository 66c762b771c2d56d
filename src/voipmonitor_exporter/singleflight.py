"""At-most-one in-flight call, shared by concurrent callers."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Collapse concurrent calls into one execution.

    The first caller runs the function; callers arriving while it runs block
    until it finishes and receive the same result or exception. Nothing is
    remembered once the call completes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._inflight is not None

    def do(self, func: Callable[[], T]) -> T:
        """Run func, or wait for the call already in flight.

        Args:
            func: Function to execute when no call is in flight.

        Returns:
            Result of the shared call.
        """
        with self._lock:
            future = self._inflight
            leader = future is None
            if leader:
                future = self._inflight = Future()

        if not leader:
            return future.result()

        try:
            result = func()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight = None
