from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from diforge.compiler import ExpressionCompiler
from diforge.exceptions import DIForgeConfigurationError
from diforge.lifestyles import Lifestyle
from diforge.properties import DEFAULT_MAX_ARGUMENTS, PropertyInfo

PropertySelectionBehavior = Callable[[Any, PropertyInfo], bool]
"""Callable deciding whether a property of an implementation type is injected implicitly."""


@dataclass(frozen=True, slots=True, kw_only=True)
class ContainerOptions:
    """Container-wide settings, fixed when the container is created.

    Attributes:
        resolve_unregistered_concrete_types: Construct unregistered concrete
            classes on request with the default lifestyle.
        suppress_lifestyle_mismatch_verification: Skip the lifestyle-mismatch
            check that runs when a producer is compiled.
        default_lifestyle: Lifestyle of registrations that omit ``lifestyle``.
        max_property_injection_arguments: Maximum number of arguments of one
            generated property-injection delegate. Larger property sets are
            chained over several delegates.
        expression_compiler: Compiler turning expressions into factories.
        property_selection_behavior: Optional predicate selecting properties to
            inject in addition to the ones named at registration.

    """

    resolve_unregistered_concrete_types: bool = True
    suppress_lifestyle_mismatch_verification: bool = False
    default_lifestyle: Lifestyle = Lifestyle.TRANSIENT
    max_property_injection_arguments: int = DEFAULT_MAX_ARGUMENTS
    expression_compiler: ExpressionCompiler = field(default_factory=ExpressionCompiler)
    property_selection_behavior: PropertySelectionBehavior | None = None

    def __post_init__(self) -> None:
        if self.max_property_injection_arguments < 2:
            msg = (
                "max_property_injection_arguments must be at least 2 (one property plus the "
                f"instance), got {self.max_property_injection_arguments}."
            )
            raise DIForgeConfigurationError(msg)
        if not isinstance(self.default_lifestyle, Lifestyle):
            msg = f"default_lifestyle must be a Lifestyle, got {self.default_lifestyle!r}."
            raise DIForgeConfigurationError(msg)


__all__ = ["ContainerOptions", "PropertySelectionBehavior"]
