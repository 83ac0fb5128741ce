import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable, Optional

from .log import log_line

class Subscription:
    """
    Handle for a long-lived listener.
    unsubscribe() is idempotent: teardown runs exactly once, whoever calls first.
    """
    def __init__(self, teardown: Callable[[], None], name: str = ""):
        self._teardown = teardown
        self._lock = threading.Lock()
        self._active = True
        self.name = name

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> bool:
        """Returns True only for the call that actually tore the listener down."""
        with self._lock:
            if not self._active:
                return False
            self._active = False
        try:
            self._teardown()
        except Exception as e:
            log_line(f"SUBSCRIPTION | teardown failed | name={self.name} | err={e!r}", "ERROR")
        return True

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class OneShot:
    """
    Handle for a one-shot background request.
    It always resolves: with the work's value, with `default` if the work
    raised, or with `default` immediately when cancel() is called.
    """
    def __init__(self, default: Any = None):
        self._default = default
        self._future: Future = Future()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def resolve(self, value: Any) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(value)
            return True

    def cancel(self) -> None:
        self._cancelled.set()
        self.resolve(self._default)

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        return self._future.result(timeout)

    def add_done_callback(self, fn: Callable[[Any], None]) -> None:
        self._future.add_done_callback(lambda f: fn(f.result()))


def run_one_shot(executor: Executor, work: Callable[["OneShot"], Any], default: Any = None, name: str = "") -> OneShot:
    """Submit `work(handle)` to the executor; the handle lets the work check for cancellation."""
    handle = OneShot(default)

    def _run() -> None:
        if handle.cancelled:
            return
        try:
            value = work(handle)
        except Exception as e:
            log_line(f"ONE_SHOT | failed | name={name} | err={e!r}", "WARN")
            value = default
        handle.resolve(value)

    executor.submit(_run)
    return handle
