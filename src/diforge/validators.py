from __future__ import annotations

import inspect
from collections.abc import Hashable
from typing import Any

from diforge.exceptions import DIForgeConfigurationError
from diforge.type_checks import friendly_name, is_assignable, is_open_generic


class RegistrationValidator:
    """Validates service/implementation pairs before producers and plans are created."""

    def validate_not_none(self, value: object, parameter_name: str) -> None:
        if value is None:
            msg = f"Argument '{parameter_name}' must not be None."
            raise DIForgeConfigurationError(msg)

    def validate_service_type(self, service_type: object, parameter_name: str = "service_type") -> None:
        """Validate that a service identity is usable as a registration key."""
        self.validate_not_none(service_type, parameter_name)
        if not isinstance(service_type, Hashable):
            msg = f"Service type {service_type!r} must be hashable."
            raise DIForgeConfigurationError(msg)
        if is_open_generic(service_type):
            msg = (
                f"The supplied type {friendly_name(service_type)} is an open generic type. "
                f"Argument '{parameter_name}' must be a closed type."
            )
            raise DIForgeConfigurationError(msg)

    def validate_assignable(
        self,
        service_type: Any,
        implementation_type: Any,
        parameter_name: str = "service_type",
    ) -> None:
        if not is_assignable(service_type, implementation_type):
            msg = (
                f"The supplied type {friendly_name(implementation_type)} does not inherit from "
                f"{friendly_name(service_type)} (argument '{parameter_name}')."
            )
            raise DIForgeConfigurationError(msg)

    def validate_concrete_type(self, concrete_type: object) -> None:
        """Validate that a concrete implementation is instantiable."""
        if not inspect.isclass(concrete_type):
            msg = f"Implementation must be a class, got {concrete_type!r}."
            raise DIForgeConfigurationError(msg)

        if inspect.isabstract(concrete_type) or getattr(concrete_type, "_is_protocol", False):
            msg = f"Implementation '{concrete_type.__qualname__}' cannot be an abstract class."
            raise DIForgeConfigurationError(msg)

    def validate_factory(self, factory: object) -> None:
        self.validate_not_none(factory, "factory")
        if not callable(factory):
            msg = f"Factory must be callable, got {factory!r}."
            raise DIForgeConfigurationError(msg)

    def validate_decorator(self, service_type: Any, decorator_type: Any, parameter_types: list[Any]) -> None:
        """Validate that ``decorator_type`` implements and wraps ``service_type``."""
        self.validate_concrete_type(decorator_type)
        self.validate_assignable(service_type, decorator_type, "decorator_type")
        wrapped = [parameter for parameter in parameter_types if parameter == service_type]
        if len(wrapped) != 1:
            msg = (
                f"For {friendly_name(decorator_type)} to be a decorator of "
                f"{friendly_name(service_type)}, its constructor must have exactly one parameter "
                f"of type {friendly_name(service_type)}, found {len(wrapped)}."
            )
            raise DIForgeConfigurationError(msg)


__all__ = ["RegistrationValidator"]
