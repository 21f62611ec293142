from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING

from diforge.exceptions import DIForgeCyclicDependencyError

if TYPE_CHECKING:
    from diforge.producer import InstanceProducer

# Guards entered by the current logical call chain (threads and async tasks alike).
# The set is never mutated in place: every change rebinds the variable, so contexts copied
# for new tasks or worker threads only see the guards entered before the copy was taken.
_entered_guards: ContextVar[frozenset[CyclicDependencyGuard]] = ContextVar(
    "diforge_entered_guards",
    default=frozenset(),
)


class CyclicDependencyGuard:
    """Detect re-entrant builds of one producer within one logical call chain.

    Two threads (or two async tasks) entering the same producer never see each
    other's state. A producer drops its guard once an instance was produced
    successfully and creates a new one whenever its plan is replaced.
    """

    __slots__ = ("producer",)

    def __init__(self, producer: InstanceProducer) -> None:
        self.producer = producer

    def check(self) -> None:
        """Enter the guarded section.

        Raises:
            DIForgeCyclicDependencyError: If the current call chain already
                entered this guard.

        """
        entered = _entered_guards.get()
        if self in entered:
            raise DIForgeCyclicDependencyError(self.producer)
        _entered_guards.set(entered | {self})

    def reset(self) -> None:
        """Return to the initial state so a later independent call is not seen as recursive."""
        entered = _entered_guards.get()
        if self in entered:
            _entered_guards.set(entered - {self})

    @property
    def depth(self) -> int:
        return 1 if self in _entered_guards.get() else 0


__all__ = ["CyclicDependencyGuard"]
