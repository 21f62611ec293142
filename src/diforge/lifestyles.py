from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar, Final

from diforge.exceptions import DIForgeActivationError
from diforge.expressions import CachedExpression, Expression
from diforge.scope import Scope
from diforge.type_checks import friendly_name

if TYPE_CHECKING:
    from diforge.plans import ConstructionPlan

_MISSING: Final[Any] = object()


class Lifestyle:
    """Policy governing how long a produced instance is reused.

    ``length`` orders lifestyles by how long their instances live. A component
    must not depend on a component with a shorter lifestyle; the
    lifestyle-mismatch analyzer compares these values.
    """

    TRANSIENT: ClassVar[Lifestyle]
    """A new instance is created every time the service is requested."""

    SCOPED: ClassVar[Lifestyle]
    """One instance per active ``Scope``."""

    SINGLETON: ClassVar[Lifestyle]
    """One instance for the lifetime of the container."""

    def __init__(self, name: str, length: int) -> None:
        self.name = name
        self.length = length

    def apply(self, expression: Expression, plan: ConstructionPlan) -> Expression:
        """Wrap the instance-creation ``expression`` with this lifestyle's caching."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"Lifestyle.{self.name.upper()}"


class TransientLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("transient", 1)

    def apply(self, expression: Expression, plan: ConstructionPlan) -> Expression:
        return expression


class ScopedLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("scoped", 500)

    def apply(self, expression: Expression, plan: ConstructionPlan) -> Expression:
        return CachedExpression(
            cache=ScopedCache(plan.implementation_type),
            creator=expression,
            lifestyle_name=self.name,
        )


class SingletonLifestyle(Lifestyle):
    def __init__(self) -> None:
        super().__init__("singleton", 1000)

    def apply(self, expression: Expression, plan: ConstructionPlan) -> Expression:
        return CachedExpression(cache=SingletonCache(), creator=expression, lifestyle_name=self.name)


class SingletonCache:
    """Lock-guarded, create-once storage for a single plan."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instance: Any = _MISSING

    def get_instance(self, creator: Callable[[], Any]) -> Any:
        instance = self._instance
        if instance is not _MISSING:
            return instance
        with self._lock:
            if self._instance is _MISSING:
                self._instance = creator()
            return self._instance


class ScopedCache:
    """Per-plan key into the ambient ``Scope``."""

    def __init__(self, implementation_type: Any) -> None:
        self.implementation_type = implementation_type

    def get_instance(self, creator: Callable[[], Any]) -> Any:
        scope = Scope.current()
        if scope is None:
            msg = (
                f"{friendly_name(self.implementation_type)} is registered with the scoped "
                "lifestyle, but the instance is requested outside the context of an active scope."
            )
            raise DIForgeActivationError(msg)
        return scope.get_instance(self, creator)


Lifestyle.TRANSIENT = TransientLifestyle()
Lifestyle.SCOPED = ScopedLifestyle()
Lifestyle.SINGLETON = SingletonLifestyle()


__all__ = [
    "Lifestyle",
    "ScopedCache",
    "ScopedLifestyle",
    "SingletonCache",
    "SingletonLifestyle",
    "TransientLifestyle",
]
