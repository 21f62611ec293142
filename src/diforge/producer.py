from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Final

from diforge.cycle_guard import CyclicDependencyGuard
from diforge.diagnostics import LifestyleMismatchAnalyzer
from diforge.exceptions import (
    DIForgeActivationError,
    DIForgeConfigurationError,
    DIForgeCyclicDependencyError,
    DIForgeDiagnosticError,
    DIForgeInvalidOperationError,
    DIForgeVerificationError,
)
from diforge.lifestyles import Lifestyle, ScopedLifestyle, SingletonLifestyle
from diforge.plans import ConstructionPlan, ExpressionPlan
from diforge.scope import Scope, activate_scope
from diforge.type_checks import friendly_name
from diforge.validators import RegistrationValidator
from diforge.visualization import VisualizationOptions, visualize_object_graph

if TYPE_CHECKING:
    from diforge.container import Container
    from diforge.expressions import Expression
    from diforge.relationships import KnownRelationship

logger = logging.getLogger(__name__)

_VALIDATOR: Final = RegistrationValidator()


class CompileState(enum.Enum):
    UNCOMPILED = "uncompiled"
    COMPILING = "compiling"
    COMPILED = "compiled"


class ErrorKind(enum.Enum):
    """Failure categories seen at the producer boundary."""

    CYCLE = "cycle"
    DIAGNOSTIC = "diagnostic"
    CONFIGURATION = "configuration"
    ACTIVATION = "activation"
    FOREIGN = "foreign"

    @classmethod
    def of(cls, error: BaseException) -> ErrorKind:
        if isinstance(error, DIForgeCyclicDependencyError):
            return cls.CYCLE
        if isinstance(error, DIForgeDiagnosticError):
            return cls.DIAGNOSTIC
        if isinstance(error, DIForgeConfigurationError):
            return cls.CONFIGURATION
        if isinstance(error, DIForgeActivationError):
            return cls.ACTIVATION
        return cls.FOREIGN


def _always(producer: InstanceProducer) -> bool:
    return True


def _when_auto_registered_or_pass_through(producer: InstanceProducer) -> bool:
    return producer.is_container_auto_registered or producer.plan.wraps_instance_creation_delegate


# Whether an error of the given kind is wrapped into a DIForgeActivationError naming the producer.
# Anything that is not already an activation failure is always wrapped, the original error becoming
# the ``__cause__``. Cycles still collecting their chain during a build are never wrapped.
WRAP_POLICY: Final[dict[ErrorKind, Callable[[InstanceProducer], bool]]] = {
    ErrorKind.CYCLE: _when_auto_registered_or_pass_through,
    ErrorKind.DIAGNOSTIC: _always,
    ErrorKind.CONFIGURATION: _always,
    ErrorKind.ACTIVATION: _when_auto_registered_or_pass_through,
    ErrorKind.FOREIGN: _always,
}


class InstanceProducer:
    """Turn one (service type, construction plan) pair into a cached, cycle-guarded factory.

    The plan is built into an expression lazily, exactly once, under the
    container's compile lock. The container's expression-built handlers may
    replace the plan (decoration) or override the lifestyle at that point, and
    the lifestyle-mismatch analyzer runs before the factory is cached. The first
    ``produce_instance`` call then swaps in the compiled factory so subsequent
    calls go straight to it.
    """

    def __init__(
        self,
        service_type: Any,
        plan: ConstructionPlan,
        *,
        register_external_producer: bool = True,
    ) -> None:
        """Validate the pair and create the producer.

        Args:
            service_type: Closed type (or hashable key) the producer supplies.
            plan: Plan describing how instances are built.
            register_external_producer: Track the producer on the plan's
                container so ``Container.verify`` covers it.

        Raises:
            DIForgeConfigurationError: If an argument is ``None``, the service
                type is an open generic, or the plan's implementation type is not
                assignable to the service type.

        """
        _VALIDATOR.validate_service_type(service_type)
        _VALIDATOR.validate_not_none(plan, "plan")
        _VALIDATOR.validate_assignable(service_type, plan.implementation_type)

        self.service_type = service_type
        self.implementation_type = plan.implementation_type
        self._plan = plan
        self._guard: CyclicDependencyGuard | None = CyclicDependencyGuard(self)
        self._lock = threading.Lock()

        self._compile_state = CompileState.UNCOMPILED
        self._expression: Expression | None = None
        self._compiled_creator: Callable[[], Any] | None = None
        self._instance_creator: Callable[[], Any] = self._build_and_replace_instance_creator_and_create_first_instance
        self._overridden_lifestyle: Lifestyle | None = None

        self._known_relationships: tuple[KnownRelationship, ...] | None = None
        self._verifiers: list[Callable[[Scope], None]] | None = None
        self._wrapped_producers: list[InstanceProducer] | None = None
        self._contains_scoped_components: bool | None = None

        # Explicit registrations are valid up front. Auto-registered ones are
        # reset to unknown so their graph is checked on first lookup.
        self._is_valid: bool | None = True
        self._exception: BaseException | None = None

        self.is_container_auto_registered = False
        self.is_decorated = False
        self.instance_successfully_created = False
        self.verifiers_are_successfully_called = False

        if register_external_producer:
            plan.container.register_external_producer(self)

    @classmethod
    def from_expression(
        cls,
        service_type: Any,
        expression: Expression,
        container: Container,
        *,
        implementation_type: Any = None,
        lifestyle: Lifestyle | None = None,
    ) -> InstanceProducer:
        """Create a pass-through producer around an already built expression.

        The expression-built handlers are not applied to it and it is not tracked
        as an external producer. Decoration uses it to keep the decorated
        expression visible to diagnostics.

        Args:
            service_type: Service type the expression supplies.
            expression: Prebuilt expression, lifestyle caching included.
            container: Container owning the producer.
            implementation_type: Type produced by the expression. Defaults to
                ``service_type``.
            lifestyle: Lifestyle reported for the expression. Defaults to
                transient.

        """
        _VALIDATOR.validate_not_none(expression, "expression")
        _VALIDATOR.validate_not_none(container, "container")
        plan = ExpressionPlan(
            container,
            expression,
            implementation_type if implementation_type is not None else service_type,
            lifestyle if lifestyle is not None else Lifestyle.TRANSIENT,
        )
        producer = cls(service_type, plan, register_external_producer=False)
        producer._expression = plan.build_expression()
        producer._compile_state = CompileState.COMPILED
        return producer

    # region Properties

    @property
    def plan(self) -> ConstructionPlan:
        return self._plan

    @property
    def container(self) -> Container:
        return self._plan.container

    @property
    def lifestyle(self) -> Lifestyle:
        return self._overridden_lifestyle or self._plan.lifestyle

    @property
    def final_implementation_type(self) -> Any:
        """Implementation type of the current plan, which differs from ``implementation_type`` after decoration."""
        return self._plan.implementation_type

    @property
    def is_expression_created(self) -> bool:
        return self._compile_state is CompileState.COMPILED

    @property
    def must_be_explicitly_verified(self) -> bool:
        return self._verifiers is not None

    @property
    def self_and_wrapped_producers(self) -> tuple[InstanceProducer, ...]:
        with self._lock:
            wrapped = tuple(self._wrapped_producers or ())
        return (*wrapped, self)

    @property
    def is_valid(self) -> bool:
        """Return whether the producer's expression can be built, computing it once."""
        if self._is_valid is None:
            self._exception = self._get_exception_if_invalid()
            self._is_valid = self._exception is None
        return self._is_valid

    @property
    def exception(self) -> BaseException | None:
        """Reason the producer is invalid, set by ``is_valid``."""
        return self._exception

    # endregion Properties

    # region Production

    def produce_instance(self, scope: Scope | None = None) -> Any:
        """Return a fully constructed instance of the service.

        Args:
            scope: Scope made ambient for the duration of the call. Defaults to
                the scope that is already active.

        Raises:
            DIForgeCyclicDependencyError: If the graph depends on itself.
            DIForgeActivationError: If building, compiling, or running the
                factory fails, or the factory returned ``None``.
                A lifestyle mismatch is raised as one, with the
                ``DIForgeDiagnosticError`` as its ``__cause__``.

        """
        if scope is not None:
            with activate_scope(scope):
                return self.produce_instance()

        self.container.lock()

        guard = self._guard
        if guard is not None:
            guard.check()

        try:
            instance = self._instance_creator()
        except Exception as error:
            if guard is not None:
                guard.reset()
            replacement = self._translate_error(error)
            if replacement is error:
                raise
            raise replacement from replacement.__cause__

        # Production succeeded, so the graph is acyclic until the plan is replaced.
        if guard is not None:
            guard.reset()
            self._guard = None

        if instance is None:
            msg = f"The registered delegate for type {friendly_name(self.service_type)} returned None."
            raise DIForgeActivationError(msg)
        return instance

    def build_plan(self) -> Expression:
        """Return the expression producing instances of the service, building it once.

        The cycle guard is only reset here, never dropped: a hand-written factory
        may still call back into the container when the expression runs.
        """
        self.container.lock()

        guard = self._guard
        if guard is not None:
            guard.check()

        try:
            return self._get_expression()
        except Exception as error:
            replacement = self._translate_error(error, building=True)
            if replacement is error:
                raise
            raise replacement from replacement.__cause__
        finally:
            if guard is not None:
                guard.reset()

    def _get_expression(self) -> Expression:
        if self._compile_state is CompileState.COMPILED:
            return self._expression  # type: ignore[return-value]

        with self.container.compile_lock:
            if self._compile_state is CompileState.COMPILED:
                return self._expression  # type: ignore[return-value]
            if self._compile_state is CompileState.COMPILING:
                raise DIForgeCyclicDependencyError(self)

            self._compile_state = CompileState.COMPILING
            try:
                expression = self._build_expression_internal()
            except BaseException:
                self._compile_state = CompileState.UNCOMPILED
                raise
            self._expression = expression
            self._compile_state = CompileState.COMPILED
            logger.debug("Built expression for %s: %s", friendly_name(self.service_type), expression)
            return expression

    def _build_expression_internal(self) -> Expression:
        expression = self._plan.build_expression()
        if expression is None:
            msg = f"The plan {self._plan!r} returned None from build_expression."
            raise DIForgeActivationError(msg)

        plan = self._plan
        with self._lock:
            wrapped_producers = None if self._wrapped_producers is None else list(self._wrapped_producers)

        try:
            built = self.container.on_expression_built(self, expression)
            if built is None:
                self._overridden_lifestyle = self.lifestyle
                self._analyze()
                return expression

            if built.plan is not plan:
                logger.debug(
                    "Replacing plan of %s: %r -> %r",
                    friendly_name(self.service_type),
                    plan,
                    built.plan,
                )
                self._plan = built.plan
                self._overridden_lifestyle = None
                self._guard = CyclicDependencyGuard(self)
            else:
                self._overridden_lifestyle = built.lifestyle
            self._analyze()
            return built.expression
        except BaseException:
            # A failed build leaves no trace of the rewrite, so a retry starts from the original plan.
            self._plan = plan
            self._overridden_lifestyle = None
            self.is_decorated = False
            with self._lock:
                self._wrapped_producers = wrapped_producers
            raise

    def _build_and_replace_instance_creator_and_create_first_instance(self) -> Any:
        creator = self._build_instance_creator()
        self._instance_creator = creator
        instance = creator()
        self.instance_successfully_created = True
        return instance

    def _build_instance_creator(self) -> Callable[[], Any]:
        creator = self._compiled_creator
        if creator is not None:
            return creator

        with self.container.compile_lock:
            if self._compiled_creator is not None:
                return self._compiled_creator

            expression = self._get_expression()
            try:
                creator = self.container.options.expression_compiler.compile(expression)
            except Exception as error:
                msg = (
                    f"Error occurred while trying to build a delegate for type "
                    f"{friendly_name(self.service_type)} using the expression \"{expression}\". {error}"
                )
                raise DIForgeActivationError(msg) from error

            self._analyze()
            self._compiled_creator = creator
            logger.debug("Compiled factory for %s", friendly_name(self.service_type))
            return creator

    def _analyze(self) -> None:
        if self.container.options.suppress_lifestyle_mismatch_verification:
            return
        results = LifestyleMismatchAnalyzer().analyze(self.self_and_wrapped_producers)
        if results:
            error = results[0]
            msg = (
                "A lifestyle mismatch has been detected. "
                f"{error.description} Examine the configuration of {friendly_name(error.service_type)}, "
                "or pass suppress_lifestyle_mismatch_verification=True to the container."
            )
            raise DIForgeDiagnosticError(msg, error)

    def _translate_error(self, error: Exception, *, building: bool = False) -> Exception:
        """Return the exception to raise instead of ``error``, which is ``error`` itself to propagate it.

        A cycle reaching its originating producer is completed first. While
        building, a cycle that did not originate here passes through untouched
        so outer plans can still add their types to the chain.
        """
        kind = ErrorKind.of(error)
        cause: Exception = error
        if kind is ErrorKind.CYCLE:
            if error.originating_producer is self:  # type: ignore[attr-defined]
                cause = error.complete()  # type: ignore[attr-defined]
                cause.__cause__ = error
            elif building:
                return error
        if not WRAP_POLICY[kind](self):
            return cause
        wrapped = DIForgeActivationError(self._build_activation_error_message(cause))
        wrapped.__cause__ = cause
        return wrapped

    def _build_activation_error_message(self, error: Exception) -> str:
        service_name = friendly_name(self.service_type)
        if self.is_container_auto_registered:
            return (
                f"No registration for type {service_name} could be found and an implicit "
                f"registration could not be made. {error}"
            )
        if self._plan.wraps_instance_creation_delegate:
            return f"The registered delegate for type {service_name} threw an exception. {error}"
        return f"Creating an instance of {service_name} failed. {error}"

    # endregion Production

    # region Relationships and verification

    def get_relationships(self) -> tuple[KnownRelationship, ...]:
        """Return the dependencies discovered while building the plan, or the replaced set."""
        known = self._known_relationships
        if known is not None:
            return known
        return self._plan.get_relationships()

    def replace_relationships(self, relationships: tuple[KnownRelationship, ...] | list[KnownRelationship]) -> None:
        self._known_relationships = tuple(dict.fromkeys(relationships))

    def contains_scoped_components_in_graph(self) -> bool:
        """Return whether the graph rooted at this producer contains a scoped component.

        Builds the expression of every producer it visits.
        """
        cached = self._contains_scoped_components
        if cached is None:
            cached = self._contains_scoped_components_in_graph({})
            self._contains_scoped_components = cached
        return cached

    def _contains_scoped_components_in_graph(self, visited: dict[InstanceProducer, bool]) -> bool:
        if self in visited:
            return visited[self]
        visited[self] = False

        if not self.is_expression_created:
            # Building may apply decorators, which can change the lifestyle.
            self.build_plan()

        lifestyle = self.lifestyle
        if isinstance(lifestyle, SingletonLifestyle):
            result = False
        elif isinstance(lifestyle, ScopedLifestyle):
            result = True
        else:
            result = any(
                relationship.dependency._contains_scoped_components_in_graph(visited)
                for relationship in self.get_relationships()
            )
        visited[self] = result
        return result

    def add_verifier(self, verifier: Callable[[Scope], None]) -> None:
        """Register a callback that only runs during explicit verification."""
        with self._lock:
            if self._verifiers is None:
                self._verifiers = []
            self._verifiers.append(verifier)

    def add_producer_to_verify(self, producer: InstanceProducer) -> None:
        """Track a wrapped producer whose relationships are analyzed together with this one."""
        with self._lock:
            if self._wrapped_producers is None:
                self._wrapped_producers = []
            self._wrapped_producers.append(producer)

    def run_extra_verification(self, scope: Scope) -> None:
        """Run every registered verifier against ``scope``.

        Raises:
            DIForgeVerificationError: If a verifier raised.

        """
        with self._lock:
            verifiers = tuple(self._verifiers or ())
        try:
            for verify in verifiers:
                verify(scope)
        except Exception as error:
            msg = (
                f"The configuration is invalid. Creating the instance for type "
                f"{friendly_name(self.service_type)} failed. {error}"
            )
            raise DIForgeVerificationError(msg) from error
        self.verifiers_are_successfully_called = True

    def verify_expression_building(self) -> Expression:
        try:
            return self.build_plan()
        except Exception as error:
            msg = (
                f"The configuration is invalid. Creating the instance for type "
                f"{friendly_name(self.service_type)} failed. {error}"
            )
            raise DIForgeVerificationError(msg) from error

    def verify_instance_creation(self) -> Any:
        try:
            return self.produce_instance()
        except Exception as error:
            msg = (
                f"The configuration is invalid. Creating the instance for type "
                f"{friendly_name(self.final_implementation_type)} failed. {error}"
            )
            raise DIForgeVerificationError(msg) from error

    def ensure_type_will_be_explicitly_verified(self) -> None:
        self._is_valid = None

    def _get_exception_if_invalid(self) -> BaseException | None:
        try:
            self.build_plan()
        except DIForgeCyclicDependencyError:
            raise
        except (DIForgeActivationError, DIForgeConfigurationError) as error:
            if isinstance(error.__cause__, DIForgeCyclicDependencyError):
                raise
            return error.__cause__ or error
        return None

    def visualize_graph(self, options: VisualizationOptions | None = None) -> str:
        """Render the object graph as indented text.

        Raises:
            DIForgeInvalidOperationError: If the expression has not been built yet.

        """
        if not self.is_expression_created:
            msg = (
                f"The object graph of {friendly_name(self.service_type)} can only be visualized after "
                "its expression is built. Call build_plan() or produce_instance() first."
            )
            raise DIForgeInvalidOperationError(msg)
        return visualize_object_graph(self, options or VisualizationOptions())

    # endregion Relationships and verification

    def __repr__(self) -> str:
        return (
            f"InstanceProducer(service_type={friendly_name(self.service_type)}, "
            f"lifestyle={self.lifestyle.name})"
        )


__all__ = ["WRAP_POLICY", "CompileState", "ErrorKind", "InstanceProducer"]
