from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar, overload

from diforge.autoregistration import ConcreteTypeAutoregistrationPolicy
from diforge.compiler import ExpressionCompiler
from diforge.decoration import DecoratorInterceptor
from diforge.dependencies import DependenciesExtractor
from diforge.events import ExpressionBuiltEventArgs, ExpressionBuiltHandler
from diforge.exceptions import DIForgeActivationError, DIForgeConfigurationError
from diforge.expressions import Expression
from diforge.lifestyles import Lifestyle
from diforge.options import ContainerOptions, PropertySelectionBehavior
from diforge.plans import ConstructorPlan, FactoryPlan, InstancePlan
from diforge.producer import InstanceProducer
from diforge.properties import DEFAULT_MAX_ARGUMENTS
from diforge.relationships import InjectionConsumerInfo
from diforge.scope import Scope
from diforge.type_checks import friendly_name, is_assignable
from diforge.validators import RegistrationValidator

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Container:
    """Map service types to instance producers and hand out fully wired instances.

    Registrations are made up front with ``register``, ``register_factory``
    and ``register_instance``. The first resolution locks the container: from
    then on registrations, decorators and expression-built handlers can no
    longer be added. Unregistered concrete classes are constructed on request
    unless ``resolve_unregistered_concrete_types=False``.

    Every producer compiles its factory lazily and exactly once, guarded by the
    container-wide ``compile_lock``.
    """

    def __init__(
        self,
        *,
        resolve_unregistered_concrete_types: bool = True,
        suppress_lifestyle_mismatch_verification: bool = False,
        default_lifestyle: Lifestyle = Lifestyle.TRANSIENT,
        max_property_injection_arguments: int = DEFAULT_MAX_ARGUMENTS,
        expression_compiler: ExpressionCompiler | None = None,
        property_selection_behavior: PropertySelectionBehavior | None = None,
    ) -> None:
        """Initialize a container and configure default registration behavior.

        Args:
            resolve_unregistered_concrete_types: Construct unregistered concrete
                classes on request. Disable for strict mode where every service
                must be registered explicitly.
            suppress_lifestyle_mismatch_verification: Do not fail when a component
                depends on a component with a shorter lifestyle.
            default_lifestyle: Lifestyle of registrations that omit ``lifestyle``.
            max_property_injection_arguments: Argument ceiling of one generated
                property-injection delegate.
            expression_compiler: Compiler turning expressions into factories.
            property_selection_behavior: Predicate ``(implementation_type, property)``
                selecting properties to inject implicitly.

        Examples:
            .. code-block:: python

                container = Container()

                strict_container = Container(resolve_unregistered_concrete_types=False)

        """
        self.options = ContainerOptions(
            resolve_unregistered_concrete_types=resolve_unregistered_concrete_types,
            suppress_lifestyle_mismatch_verification=suppress_lifestyle_mismatch_verification,
            default_lifestyle=default_lifestyle,
            max_property_injection_arguments=max_property_injection_arguments,
            expression_compiler=expression_compiler or ExpressionCompiler(),
            property_selection_behavior=property_selection_behavior,
        )
        self.compile_lock = threading.RLock()
        self.dependencies_extractor = DependenciesExtractor()

        self._validator = RegistrationValidator()
        self._autoregistration_policy = ConcreteTypeAutoregistrationPolicy()
        self._registrations: dict[Any, InstanceProducer] = {}
        self._unregistered_producers: dict[Any, InstanceProducer] = {}
        self._external_producers: list[InstanceProducer] = []
        self._external_producers_lock = threading.Lock()
        self._expression_built_handlers: list[ExpressionBuiltHandler] = []
        self._locked = False

    # region Registration Methods

    def register(
        self,
        service_type: Any,
        implementation_type: Any = None,
        *,
        lifestyle: Lifestyle | None = None,
        properties: Sequence[str] = (),
    ) -> InstanceProducer:
        """Register a concrete class constructed through its annotated ``__init__``.

        Re-registering the same service type overrides the previous registration.

        Args:
            service_type: Service type (or hashable key) to bind.
            implementation_type: Concrete class to construct. Defaults to
                ``service_type``.
            lifestyle: Lifestyle of the registration. Defaults to the
                container's ``default_lifestyle``.
            properties: Names of properties to inject after construction.

        Raises:
            DIForgeConfigurationError: If the service type is invalid, the
                implementation is abstract or not assignable, a property cannot
                be injected, or the container is locked.

        Examples:
            .. code-block:: python

                container.register(Repository, SqlRepository, lifestyle=Lifestyle.SCOPED)
                container.register(Service, properties=["clock"])

        """
        implementation = service_type if implementation_type is None else implementation_type
        self._validator.validate_service_type(service_type)
        self._validator.validate_concrete_type(implementation)
        self._validator.validate_assignable(service_type, implementation, "implementation_type")

        with self._registration_mutation():
            plan = ConstructorPlan(self, implementation, self._lifestyle_or_default(lifestyle), properties)
            return self._add(InstanceProducer(service_type, plan))

    def register_factory(
        self,
        service_type: Any,
        factory: Callable[..., Any],
        *,
        lifestyle: Lifestyle | None = None,
    ) -> InstanceProducer:
        """Register a factory whose annotated parameters are injected.

        Args:
            service_type: Service type (or hashable key) to bind.
            factory: Callable returning the instance.
            lifestyle: Lifestyle of the registration. Defaults to the
                container's ``default_lifestyle``.

        Examples:
            .. code-block:: python

                def build_client(settings: Settings) -> Client:
                    return Client(settings.url)

                container.register_factory(Client, build_client, lifestyle=Lifestyle.SINGLETON)

        """
        self._validator.validate_service_type(service_type)
        self._validator.validate_factory(factory)

        with self._registration_mutation():
            plan = FactoryPlan(self, factory, service_type, self._lifestyle_or_default(lifestyle))
            return self._add(InstanceProducer(service_type, plan))

    def register_instance(self, service_type: Any, instance: Any) -> InstanceProducer:
        """Register a prebuilt instance returned for every request of ``service_type``."""
        self._validator.validate_service_type(service_type)
        self._validator.validate_not_none(instance, "instance")
        self._validator.validate_assignable(service_type, type(instance), "instance")

        with self._registration_mutation():
            return self._add(InstanceProducer(service_type, InstancePlan(self, instance)))

    def add_producer(self, producer: InstanceProducer) -> InstanceProducer:
        """Register a producer created by the caller for its own service type."""
        self._validator.validate_not_none(producer, "producer")
        if producer.container is not self:
            msg = f"The producer for {friendly_name(producer.service_type)} belongs to a different container."
            raise DIForgeConfigurationError(msg)

        with self._registration_mutation():
            return self._add(producer)

    def decorate(
        self,
        service_type: Any,
        decorator_type: Any,
        *,
        lifestyle: Lifestyle | None = None,
    ) -> None:
        """Wrap every instance of ``service_type`` in ``decorator_type``.

        The decorator's constructor must take exactly one parameter annotated
        with ``service_type``; it receives the decorated instance. Decorators
        apply in registration order, so the last one registered is outermost.

        Args:
            service_type: Service type to decorate.
            decorator_type: Concrete class implementing ``service_type``.
            lifestyle: Lifestyle of the decorator. Defaults to the container's
                ``default_lifestyle``.

        Examples:
            .. code-block:: python

                container.register(Repository, SqlRepository)
                container.decorate(Repository, CachingRepository)

        """
        self._validator.validate_service_type(service_type)
        self._validator.validate_concrete_type(decorator_type)
        parameters = self.dependencies_extractor.get_parameters(decorator_type)
        self._validator.validate_decorator(
            service_type,
            decorator_type,
            [parameter.target_type for parameter in parameters],
        )
        self.add_expression_built_handler(DecoratorInterceptor(self, service_type, decorator_type, lifestyle))

    def add_expression_built_handler(self, handler: ExpressionBuiltHandler) -> None:
        """Add a handler invoked once per producer right after its expression is built.

        Handlers run in the order they were added, each receiving the result of
        the previous one.
        """
        self._validator.validate_not_none(handler, "handler")
        with self._registration_mutation():
            self._expression_built_handlers.append(handler)

    def _add(self, producer: InstanceProducer) -> InstanceProducer:
        if producer.service_type in self._registrations:
            logger.debug("Overriding registration of %s", friendly_name(producer.service_type))
        self._registrations[producer.service_type] = producer
        return producer

    def _lifestyle_or_default(self, lifestyle: Lifestyle | None) -> Lifestyle:
        return lifestyle if lifestyle is not None else self.options.default_lifestyle

    @contextmanager
    def _registration_mutation(self) -> Generator[None, None, None]:
        with self.compile_lock:
            if self._locked:
                msg = (
                    "The container can't be changed after the first call to get_instance, "
                    "get_registration, verify, or any producer. Register all services before "
                    "resolving them."
                )
                raise DIForgeConfigurationError(msg)
            yield

    # endregion Registration Methods

    # region Resolution

    @overload
    def get_instance(self, service_type: type[T]) -> T: ...

    @overload
    def get_instance(self, service_type: Any) -> Any: ...

    def get_instance(self, service_type: Any) -> Any:
        """Return an instance of ``service_type``.

        Raises:
            DIForgeActivationError: If no valid registration exists or creating
                the instance failed. A lifestyle mismatch is raised as one, with
                the ``DIForgeDiagnosticError`` as its ``__cause__``.
            DIForgeCyclicDependencyError: If the graph depends on itself.

        """
        producer = self.get_registration(service_type, throw_on_failure=True)
        return producer.produce_instance()  # type: ignore[union-attr]

    def get_registration(self, service_type: Any, *, throw_on_failure: bool = False) -> InstanceProducer | None:
        """Return the producer for ``service_type``.

        Unregistered concrete types are registered implicitly when allowed and
        returned only when their graph can be built.

        Args:
            service_type: Service type to look up.
            throw_on_failure: Raise instead of returning ``None`` when no valid
                producer exists.

        """
        self._validator.validate_service_type(service_type)
        self.lock()

        producer = self._get_instance_producer_for_type(service_type)
        is_valid = producer is not None and producer.is_valid
        if not is_valid and throw_on_failure:
            self._throw_invalid_registration(service_type, producer)
        return producer if is_valid else None

    def get_producer_for(self, consumer: InjectionConsumerInfo) -> InstanceProducer:
        """Return the producer supplying the dependency described by ``consumer``.

        The producer is returned even when it is invalid, so building it raises
        the underlying error.

        Raises:
            DIForgeActivationError: If the dependency is not registered and cannot
                be registered implicitly.

        """
        target_type = consumer.target.target_type
        self._validator.validate_service_type(target_type, consumer.target.name)

        producer = self._get_instance_producer_for_type(target_type)
        if producer is None:
            msg = (
                f"The {consumer} could not be injected: no registration for type "
                f"{friendly_name(target_type)} could be found."
            )
            raise DIForgeActivationError(msg)
        return producer

    def get_current_registrations(self) -> tuple[InstanceProducer, ...]:
        """Return the explicit registrations followed by the implicitly registered producers."""
        with self.compile_lock:
            return (*self._registrations.values(), *self._unregistered_producers.values())

    def is_registered(self, service_type: Any) -> bool:
        return service_type in self._registrations

    def begin_scope(self) -> Scope:
        """Return a new scope; use it as a context manager to make it ambient.

        Examples:
            .. code-block:: python

                with container.begin_scope():
                    unit_of_work = container.get_instance(UnitOfWork)

        """
        return Scope()

    def _get_instance_producer_for_type(self, service_type: Any) -> InstanceProducer | None:
        producer = self._registrations.get(service_type)
        if producer is not None:
            return producer

        if not self.options.resolve_unregistered_concrete_types:
            return None
        if not self._autoregistration_policy.is_eligible_concrete(service_type):
            return None

        with self.compile_lock:
            producer = self._unregistered_producers.get(service_type)
            if producer is None:
                plan = ConstructorPlan(self, service_type, self.options.default_lifestyle)
                producer = InstanceProducer(service_type, plan, register_external_producer=False)
                producer.is_container_auto_registered = True
                producer.ensure_type_will_be_explicitly_verified()
                self._unregistered_producers[service_type] = producer
                logger.debug("Implicitly registered concrete type %s", friendly_name(service_type))
            return producer

    def _throw_invalid_registration(self, service_type: Any, producer: InstanceProducer | None) -> None:
        service_name = friendly_name(service_type)
        if producer is None:
            msg = f"No registration for type {service_name} could be found."
            if not self.options.resolve_unregistered_concrete_types:
                msg += " Resolution of unregistered concrete types is disabled."
            raise DIForgeActivationError(msg)

        msg = (
            f"No registration for type {service_name} could be found and an implicit registration "
            f"could not be made. {producer.exception}"
        )
        raise DIForgeActivationError(msg) from producer.exception

    # endregion Resolution

    # region Locking, hooks and verification

    def lock(self) -> None:
        """Prevent further registrations. Called implicitly by the first resolution."""
        if self._locked:
            return
        with self.compile_lock:
            if not self._locked:
                self._locked = True
                logger.debug("Container locked with %d registration(s)", len(self._registrations))

    @property
    def is_locked(self) -> bool:
        return self._locked

    def on_expression_built(
        self,
        producer: InstanceProducer,
        expression: Expression,
    ) -> ExpressionBuiltEventArgs | None:
        """Run the expression-built handlers for ``producer``.

        Returns:
            The rewritten event args, or ``None`` when no handler changed anything.

        Raises:
            DIForgeConfigurationError: If a handler returned a plan whose
                implementation type does not implement the service type.

        """
        handlers = tuple(self._expression_built_handlers)
        if not handlers:
            return None

        args = ExpressionBuiltEventArgs(
            producer=producer,
            service_type=producer.service_type,
            expression=expression,
            plan=producer.plan,
            lifestyle=producer.lifestyle,
        )
        rewritten = False
        for handler in handlers:
            result = handler(args)
            if result is None:
                continue
            if not is_assignable(producer.service_type, result.plan.implementation_type):
                msg = (
                    f"An expression-built handler replaced the plan of {friendly_name(producer.service_type)} "
                    f"with one creating {friendly_name(result.plan.implementation_type)}, which does not "
                    f"implement {friendly_name(producer.service_type)}."
                )
                raise DIForgeConfigurationError(msg)
            args = result
            rewritten = True
        return args if rewritten else None

    def register_external_producer(self, producer: InstanceProducer) -> None:
        """Track a producer created outside the registration methods so ``verify`` covers it."""
        with self._external_producers_lock:
            self._external_producers.append(producer)

    def verify(self) -> None:
        """Build and create every registered service, then run the extra verifiers.

        Instances are created inside a verification scope, so scoped registrations
        are covered too.

        Raises:
            DIForgeVerificationError: If any registration is invalid.

        """
        self.lock()
        with self._external_producers_lock:
            external = tuple(self._external_producers)
        with self.compile_lock:
            producers = tuple(dict.fromkeys((*self._registrations.values(), *external)))

        for producer in producers:
            producer.verify_expression_building()

        with self.begin_scope() as scope:
            for producer in producers:
                producer.verify_instance_creation()
            for producer in producers:
                if producer.must_be_explicitly_verified:
                    producer.run_extra_verification(scope)

        logger.info("Verified %d producer(s)", len(producers))

    # endregion Locking, hooks and verification


__all__ = ["Container"]
