"""Single-flight deduplication of concurrent scans."""

import logging
import threading
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)


class _Call:
    """One in-flight execution and the waiters attached to it."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: Any = None
        self.error: BaseException | None = None
        self.waiters = 0


class SingleFlight:
    """
    Collapse concurrent calls for the same key into one execution.

    The first caller for a key runs `fn`; callers arriving while it runs block
    until it finishes and get the same value (the same object), or the same
    exception re-raised. Once the call completes the key is forgotten, so the
    next request starts a fresh execution.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[Hashable, _Call] = {}

    def do(self, key: Hashable, fn: Callable[[], Any]) -> tuple[Any, bool]:
        """
        Run `fn` once per in-flight `key`.

        Returns:
            Tuple of (value, shared) where shared is True when the value was
            produced for another caller as well
        """
        with self._lock:
            call = self._calls.get(key)
            if call is not None:
                call.waiters += 1
                leader = False
            else:
                call = _Call()
                self._calls[key] = call
                leader = True

        if not leader:
            logger.debug("Attaching to in-flight call for %s", key)
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.value, True

        try:
            call.value = fn()
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                del self._calls[key]
                shared = call.waiters > 0
            call.done.set()

        return call.value, shared

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls
