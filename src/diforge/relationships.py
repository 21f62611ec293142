from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from diforge.type_checks import friendly_name

if TYPE_CHECKING:
    from diforge.lifestyles import Lifestyle
    from diforge.producer import InstanceProducer


@dataclass(frozen=True, slots=True)
class InjectionTargetInfo:
    """A constructor/factory parameter or a property that receives a dependency."""

    kind: Literal["parameter", "property"]
    name: str
    target_type: Any
    has_default: bool = False

    def __str__(self) -> str:
        return f"{self.kind} '{self.name}' of type {friendly_name(self.target_type)}"


@dataclass(frozen=True, slots=True)
class InjectionConsumerInfo:
    """Describe who consumes a dependency: the implementation and its injection target."""

    implementation_type: Any
    target: InjectionTargetInfo

    def __str__(self) -> str:
        return f"{self.target} of {friendly_name(self.implementation_type)}"


@dataclass(frozen=True, slots=True, eq=False)
class KnownRelationship:
    """A dependency edge discovered while building a construction plan.

    ``lifestyle`` is the lifestyle of the consuming plan at the time the edge was
    recorded. ``dependency`` is the producer supplying the injected value.
    """

    implementation_type: Any
    lifestyle: Lifestyle
    consumer: InjectionConsumerInfo
    dependency: InstanceProducer

    def _identity(self) -> tuple[Any, ...]:
        return (self.implementation_type, id(self.lifestyle), self.consumer, id(self.dependency))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KnownRelationship):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())


__all__ = ["InjectionConsumerInfo", "InjectionTargetInfo", "KnownRelationship"]
