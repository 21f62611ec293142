from __future__ import annotations

from typing import TYPE_CHECKING, Any

from diforge.type_checks import friendly_name

if TYPE_CHECKING:
    from diforge.diagnostics import LifestyleMismatchDiagnosticResult
    from diforge.producer import InstanceProducer


class DIForgeError(Exception):
    """Represent a base class for all diforge-specific failures.

    Catch this type when you want to handle any diforge error path without
    matching each concrete exception class individually.
    """


class DIForgeConfigurationError(DIForgeError):
    """Signal invalid construction inputs.

    Raised synchronously by registration APIs and producer construction, for
    example when a service type is ``None`` or an open generic, when the
    implementation type is not assignable to the service type, when an injected
    property has no setter or is static, or when the container is mutated after
    the first resolution locked it.

    Typical fixes include registering closed service types, implementations that
    derive from (or structurally match) the service type, and settable instance
    properties.
    """


class DIForgeActivationError(DIForgeError):
    """Signal a failure while producing an instance or compiling its factory.

    Raised by ``InstanceProducer.produce_instance``/``build_plan`` when a
    factory throws, returns ``None``, or the expression cannot be compiled.
    The original failure is available through ``__cause__``.
    """


class DIForgeCyclicDependencyError(DIForgeActivationError):
    """Signal that a producer was re-entered while it was being built.

    ``originating_producer`` is the producer whose guard detected the cycle.
    Enclosing plans append their implementation types to ``types`` while the
    error bubbles up, until it reaches the originating producer again.
    """

    def __init__(self, originating_producer: InstanceProducer, types: list[Any] | None = None) -> None:
        self.originating_producer = originating_producer
        self.types: list[Any] = list(types) if types is not None else []
        self.is_complete = False
        super().__init__(self._build_message())

    def add_type_to_cycle(self, implementation_type: Any) -> None:
        """Record one more type of the cycle, innermost first."""
        if self.is_complete:
            return
        self.types.insert(0, implementation_type)
        self.args = (self._build_message(),)

    def complete(self) -> DIForgeCyclicDependencyError:
        """Return a copy that no longer accepts types of the chain."""
        completed = DIForgeCyclicDependencyError(self.originating_producer, self.types)
        completed.is_complete = True
        return completed

    def _build_message(self) -> str:
        service_type = self.originating_producer.service_type
        if not self.types:
            return (
                f"The configuration is invalid. The type {friendly_name(service_type)} is "
                "directly or indirectly depending on itself."
            )
        chain = " -> ".join(friendly_name(item) for item in [*self.types, self.types[0]])
        return (
            f"The configuration is invalid. The type {friendly_name(service_type)} is directly or "
            f"indirectly depending on itself. The cyclic graph contains the following types: {chain}."
        )


class DIForgeDiagnosticError(DIForgeError):
    """Signal a diagnostic violation found while compiling a producer.

    The structured diagnostic is available as ``result``. Raised inline when the
    lifestyle-mismatch analyzer reports a captive dependency, unless the
    container was created with ``suppress_lifestyle_mismatch_verification=True``.
    Callers see it as the ``__cause__`` of the ``DIForgeActivationError`` the
    producer raises.
    """

    def __init__(self, message: str, result: LifestyleMismatchDiagnosticResult) -> None:
        super().__init__(message)
        self.result = result


class DIForgeVerificationError(DIForgeError):
    """Signal that an explicit verification pass found an invalid registration.

    Raised by ``Container.verify`` and ``InstanceProducer.run_extra_verification``.
    The failing cause is available through ``__cause__``.
    """


class DIForgeInvalidOperationError(DIForgeError):
    """Signal an API call made in a state that does not support it.

    For example visualising an object graph before its expression was built.
    """


__all__ = [
    "DIForgeActivationError",
    "DIForgeConfigurationError",
    "DIForgeCyclicDependencyError",
    "DIForgeDiagnosticError",
    "DIForgeError",
    "DIForgeInvalidOperationError",
    "DIForgeVerificationError",
]
