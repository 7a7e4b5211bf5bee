"""
Single-flight call coalescing.

While one call is in flight, concurrent callers wait for it and share
its outcome instead of starting their own.
"""

import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar('T')


class _Call(Generic[T]):
    def __init__(self):
        self.done = threading.Event()
        self.result: Optional[T] = None
        self.error: Optional[BaseException] = None


class SingleFlight(Generic[T]):
    """
    Mutex-guarded single-flight primitive.

    Example:
        refresher = SingleFlight()
        token = refresher.do(fetch_new_token)  # concurrent callers share one fetch
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._call: Optional[_Call[T]] = None

    def do(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` unless a call is already in flight, then share its outcome.

        Raises:
            Exception: Whatever the in-flight call raised, for every waiter
        """
        with self._lock:
            call = self._call
            leader = call is None
            if leader:
                call = _Call()
                self._call = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._call = None
            call.done.set()
        return call.result

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._call is not None
