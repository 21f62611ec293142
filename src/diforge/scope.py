from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from types import TracebackType
from typing import Any

from typing_extensions import Self

from diforge.exceptions import DIForgeActivationError

logger = logging.getLogger(__name__)

# Tracks the ambient scope per logical call chain (threads and async tasks alike).
_current_scope: ContextVar[Scope | None] = ContextVar("diforge_current_scope", default=None)


class Scope:
    """Ambient lifetime boundary that owns the instances of scoped registrations.

    Enter a scope with ``with container.begin_scope():``. While it is active,
    every scoped registration resolves to one instance per scope. Closing the
    scope runs the callbacks registered with ``when_scope_ends`` in reverse
    registration order and discards the cached instances.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[Any, Any] = {}
        self._end_callbacks: list[Callable[[], None]] = []
        self._tokens: list[Token[Scope | None]] = []
        self._closed = False

    @staticmethod
    def current() -> Scope | None:
        """Return the scope active in the current logical call chain, if any."""
        return _current_scope.get()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_instance(self, key: Any, creator: Callable[[], Any]) -> Any:
        """Return the instance cached under ``key``, creating it once with ``creator``."""
        instance = self._instances.get(key)
        if instance is not None:
            return instance
        with self._lock:
            if self._closed:
                msg = "Cannot resolve scoped instances from a scope that has been closed."
                raise DIForgeActivationError(msg)
            instance = self._instances.get(key)
            if instance is None:
                instance = creator()
                self._instances[key] = instance
            return instance

    def when_scope_ends(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._end_callbacks.append(callback)

    def close(self) -> None:
        """Run end-of-scope callbacks and drop cached instances.

        Every callback runs even when an earlier one fails. The first error is
        raised once all of them have run.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            callbacks = list(reversed(self._end_callbacks))
            self._end_callbacks.clear()
            self._instances.clear()
        logger.debug("Closing scope with %d end callback(s)", len(callbacks))
        first_error: Exception | None = None
        for callback in callbacks:
            try:
                callback()
            except Exception as error:
                logger.debug("End-of-scope callback %r failed: %s", callback, error)
                if first_error is None:
                    first_error = error
        if first_error is not None:
            raise first_error

    def __enter__(self) -> Self:
        self._tokens.append(_current_scope.set(self))
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        _current_scope.reset(self._tokens.pop())
        self.close()


@contextmanager
def activate_scope(scope: Scope) -> Generator[Scope, None, None]:
    """Make ``scope`` ambient for the duration of the block without closing it."""
    token = _current_scope.set(scope)
    try:
        yield scope
    finally:
        _current_scope.reset(token)


__all__ = ["Scope", "activate_scope"]
