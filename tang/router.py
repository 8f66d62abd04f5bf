"""Routes QA hosts (ref, repository) to running preview backends.

One worker thread owns the LRU cache and serves requests from a queue, one
at a time, so a lookup can never race with a spawn or an eviction.
"""

import logging
import queue
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Callable, Optional

from .config import BACKEND_CAPACITY
from .models import BackendKey

logger = logging.getLogger(__name__)

_RESOLVE = "resolve"
_KEYS = "keys"
_CLOSE = "close"


class BackendRouter:
    """Fixed-size LRU cache of backends, started on demand.

    `factory(key)` must return a started backend object with a `stop()`
    method; it is evicted (and stopped) once `capacity` newer keys are used.
    """

    def __init__(self, factory: Callable[[BackendKey], object], capacity: int = BACKEND_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.factory = factory
        self.capacity = capacity
        self._requests: "queue.Queue[tuple[str, Optional[BackendKey], Future]]" = queue.Queue()
        self._closed = False
        self._closing = threading.Lock()
        self._worker = threading.Thread(target=self._serve, name="backend-router", daemon=True)
        self._worker.start()

    def _submit(self, op: str, key: Optional[BackendKey] = None) -> Future:
        reply: Future = Future()
        with self._closing:
            if self._closed:
                raise RuntimeError("router is closed")
            if op == _CLOSE:
                self._closed = True
            self._requests.put((op, key, reply))
        return reply

    def _call(self, op: str, key: Optional[BackendKey] = None):
        return self._submit(op, key).result()

    def resolve(self, key: BackendKey):
        """Return the backend for `key`, spawning it if needed."""
        return self._call(_RESOLVE, key)

    def keys(self) -> list[BackendKey]:
        """Cached keys, least recently used first."""
        return self._call(_KEYS)

    def close(self) -> None:
        """Stop every cached backend and the worker thread."""
        try:
            reply = self._submit(_CLOSE)
        except RuntimeError:
            return
        reply.result()
        self._worker.join()

    def _serve(self) -> None:
        cache: "OrderedDict[BackendKey, object]" = OrderedDict()

        while True:
            op, key, reply = self._requests.get()
            try:
                if op == _RESOLVE:
                    reply.set_result(self._resolve(cache, key))
                elif op == _KEYS:
                    reply.set_result(list(cache))
                elif op == _CLOSE:
                    while cache:
                        _, backend = cache.popitem(last=False)
                        backend.stop()
                    reply.set_result(None)
                    return
            except Exception as e:
                logger.exception(f"Router request {op} {key} failed")
                reply.set_exception(e)

    def _resolve(self, cache: "OrderedDict[BackendKey, object]", key: BackendKey):
        backend = cache.get(key)
        if backend is not None:
            cache.move_to_end(key)
            return backend

        backend = self.factory(key)
        cache[key] = backend
        logger.info(f"Started backend for {key}")

        while len(cache) > self.capacity:
            evicted_key, evicted = cache.popitem(last=False)
            logger.info(f"Evicting backend for {evicted_key}")
            evicted.stop()
        return backend
