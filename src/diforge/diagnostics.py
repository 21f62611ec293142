from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from diforge.type_checks import friendly_name

if TYPE_CHECKING:
    from diforge.producer import InstanceProducer
    from diforge.relationships import KnownRelationship


class DiagnosticType(enum.Enum):
    LIFESTYLE_MISMATCH = "lifestyle_mismatch"


@dataclass(frozen=True, slots=True)
class LifestyleMismatchDiagnosticResult:
    """A component that depends on a component with a shorter lifestyle.

    The dependency is captured by the consumer and outlives its intended lifetime.
    """

    service_type: Any
    description: str
    relationship: KnownRelationship
    diagnostic_type: DiagnosticType = DiagnosticType.LIFESTYLE_MISMATCH


class LifestyleMismatchAnalyzer:
    """Report relationships where the consumer outlives its dependency."""

    def analyze(self, producers: Iterable[InstanceProducer]) -> list[LifestyleMismatchDiagnosticResult]:
        """Return one result per mismatching relationship of ``producers``, in order.

        Args:
            producers: Producers whose recorded relationships are inspected.

        """
        results: list[LifestyleMismatchDiagnosticResult] = []
        seen: set[KnownRelationship] = set()
        for producer in producers:
            for relationship in producer.get_relationships():
                if relationship in seen or not has_lifestyle_mismatch(relationship):
                    continue
                seen.add(relationship)
                results.append(
                    LifestyleMismatchDiagnosticResult(
                        service_type=producer.service_type,
                        description=_describe(relationship),
                        relationship=relationship,
                    ),
                )
        return results


def has_lifestyle_mismatch(relationship: KnownRelationship) -> bool:
    return relationship.lifestyle.length > relationship.dependency.lifestyle.length


def _describe(relationship: KnownRelationship) -> str:
    dependency = relationship.dependency
    return (
        f"{friendly_name(relationship.implementation_type)} ({relationship.lifestyle.name}) depends on "
        f"{friendly_name(dependency.service_type)}"
        + (
            f" implemented by {friendly_name(dependency.final_implementation_type)}"
            if dependency.final_implementation_type != dependency.service_type
            else ""
        )
        + f" ({dependency.lifestyle.name})."
    )


__all__ = [
    "DiagnosticType",
    "LifestyleMismatchAnalyzer",
    "LifestyleMismatchDiagnosticResult",
    "has_lifestyle_mismatch",
]
