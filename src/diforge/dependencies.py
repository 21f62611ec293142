from __future__ import annotations

import inspect
from collections.abc import Callable
from inspect import Parameter
from typing import Any, get_type_hints

from diforge.exceptions import DIForgeConfigurationError
from diforge.relationships import InjectionTargetInfo
from diforge.type_checks import friendly_name, is_runtime_class

_IMPLICIT_FIRST_PARAMETER_NAMES = {"self", "cls"}


class DependenciesExtractor:
    """Extract type-hinted constructor and factory parameters.

    Every parameter without a default must be annotated; parameters with a
    default are reported with ``has_default=True`` so the caller can decide to
    leave them to Python.
    """

    def __init__(self) -> None:
        self._cache: dict[Any, tuple[InjectionTargetInfo, ...]] = {}

    def get_parameters(self, target: Callable[..., Any]) -> tuple[InjectionTargetInfo, ...]:
        """Return the injectable parameters of a class constructor or a factory.

        Args:
            target: Concrete class or factory callable.

        """
        cached = self._cache.get(target)
        if cached is not None:
            return cached

        function = self._get_init_func(target)
        try:
            type_hints = get_type_hints(function, include_extras=True)
        except (AttributeError, NameError, TypeError) as error:
            msg = f"Unable to resolve the type annotations of {friendly_name(target)}: {error}"
            raise DIForgeConfigurationError(msg) from error

        result: list[InjectionTargetInfo] = []
        for parameter in self._parameters(function, skip_first=is_runtime_class(target)):
            if parameter.kind in (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD):
                continue
            has_default = parameter.default is not Parameter.empty
            annotation = type_hints.get(parameter.name, Parameter.empty)
            if annotation is Parameter.empty:
                if has_default:
                    continue
                msg = (
                    f"Unable to infer dependency for required parameter '{parameter.name}' "
                    f"of {friendly_name(target)}. Add a type annotation."
                )
                raise DIForgeConfigurationError(msg)
            result.append(
                InjectionTargetInfo(
                    kind="parameter",
                    name=parameter.name,
                    target_type=annotation,
                    has_default=has_default,
                ),
            )

        parameters = tuple(result)
        self._cache[target] = parameters
        return parameters

    def _parameters(self, function: Callable[..., Any], *, skip_first: bool) -> tuple[Parameter, ...]:
        try:
            parameters = tuple(inspect.signature(function).parameters.values())
        except (TypeError, ValueError):
            return ()
        if skip_first and parameters and parameters[0].name in _IMPLICIT_FIRST_PARAMETER_NAMES:
            return parameters[1:]
        return parameters

    def _get_init_func(self, target: Callable[..., Any]) -> Any:
        if is_runtime_class(target):
            return target.__init__
        return target


__all__ = ["DependenciesExtractor"]
