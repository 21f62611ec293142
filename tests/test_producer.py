"""Tests for InstanceProducer production, plan building and error wrapping."""

import pytest

from diforge.container import Container
from diforge.exceptions import (
    DIForgeActivationError,
    DIForgeConfigurationError,
    DIForgeCyclicDependencyError,
    DIForgeDiagnosticError,
)
from diforge.expressions import ConstantExpression
from diforge.lifestyles import Lifestyle
from diforge.plans import ConstructorPlan
from diforge.producer import WRAP_POLICY, ErrorKind, InstanceProducer
from diforge.scope import Scope


class Clock:
    pass


class Repository:
    def __init__(self, clock: Clock) -> None:
        self.clock = clock


class Service:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository


class UnitOfWork:
    pass


class Failing:
    def __init__(self) -> None:
        msg = "inner failure"
        raise DIForgeActivationError(msg)


class TestProduceInstance:
    def test_transient_creates_new_instance_per_call(self, container: Container) -> None:
        """Transient producers create a new, fully wired instance per call."""
        producer = container.register(Service)

        first = producer.produce_instance()
        second = producer.produce_instance()

        assert first is not second
        assert isinstance(first.repository, Repository)
        assert isinstance(first.repository.clock, Clock)

    def test_singleton_returns_same_instance(self, container: Container) -> None:
        """Singleton producers return the same instance on every call."""
        producer = container.register(Clock, lifestyle=Lifestyle.SINGLETON)

        assert producer.produce_instance() is producer.produce_instance()

    def test_singleton_shared_between_consumers(self, container: Container) -> None:
        """A singleton injected into transient consumers is the instance the container returns."""
        container.register(Clock, lifestyle=Lifestyle.SINGLETON)
        container.register(Repository)

        first = container.get_instance(Repository)
        second = container.get_instance(Repository)

        assert first is not second
        assert first.clock is second.clock
        assert first.clock is container.get_instance(Clock)

    def test_first_production_sets_flags_and_locks_container(self, container: Container) -> None:
        """Producing locks the container and marks the producer as successfully created."""
        producer = container.register(Clock)
        assert not producer.instance_successfully_created

        producer.produce_instance()

        assert producer.instance_successfully_created
        assert producer.is_expression_created
        assert container.is_locked
        with pytest.raises(DIForgeConfigurationError):
            container.register(UnitOfWork)

    def test_produce_instance_with_scope(self, container: Container) -> None:
        """Passing a scope makes it ambient only for the duration of the call."""
        producer = container.register(UnitOfWork, lifestyle=Lifestyle.SCOPED)
        first_scope = Scope()
        second_scope = Scope()

        first = producer.produce_instance(first_scope)

        assert producer.produce_instance(first_scope) is first
        assert producer.produce_instance(second_scope) is not first
        assert Scope.current() is None

    def test_scoped_outside_scope_raises(self, container: Container) -> None:
        """Scoped producers fail outside an active scope."""
        producer = container.register(UnitOfWork, lifestyle=Lifestyle.SCOPED)

        with pytest.raises(DIForgeActivationError) as exc_info:
            producer.produce_instance()

        assert "outside the context of an active scope" in str(exc_info.value)


class TestNullResult:
    def test_factory_returning_none_raises_activation_error(self, container: Container) -> None:
        """A factory returning None fails with an error naming the service."""
        container.register_factory(Clock, lambda: None)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Clock)

        assert "Clock" in str(exc_info.value)
        assert "returned None" in str(exc_info.value)

    def test_none_is_rejected_on_every_call(self, container: Container) -> None:
        """Later calls reusing the compiled factory still reject None."""
        producer = container.register_factory(Clock, lambda: None)

        for _ in range(2):
            with pytest.raises(DIForgeActivationError):
                producer.produce_instance()


class TestErrorWrapping:
    def test_foreign_error_from_factory_is_wrapped(self, container: Container) -> None:
        """Errors that are not diforge errors are wrapped into an activation error."""

        def broken() -> Clock:
            msg = "boom"
            raise ValueError(msg)

        container.register_factory(Clock, broken)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Clock)

        assert "The registered delegate for type Clock threw an exception. boom" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_foreign_error_from_constructor_is_wrapped(self, container: Container) -> None:
        """Foreign errors raised by constructors of explicit registrations are wrapped too."""

        class Exploding:
            def __init__(self) -> None:
                msg = "constructor failed"
                raise RuntimeError(msg)

        container.register(Exploding)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Exploding)

        assert "constructor failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_activation_error_of_explicit_registration_propagates_unchanged(
        self,
        container: Container,
    ) -> None:
        """Activation errors are not re-wrapped for explicitly registered constructor plans."""
        container.register(Failing)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Failing)

        assert str(exc_info.value) == "inner failure"
        assert exc_info.value.__cause__ is None

    def test_activation_error_of_pass_through_plan_is_wrapped(self, container: Container) -> None:
        """Activation errors raised through a factory plan are wrapped."""

        def failing_factory() -> Clock:
            msg = "inner failure"
            raise DIForgeActivationError(msg)

        container.register_factory(Clock, failing_factory)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Clock)

        assert "threw an exception" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, DIForgeActivationError)
        assert str(exc_info.value.__cause__) == "inner failure"

    def test_activation_error_of_auto_registered_producer_is_wrapped(self, container: Container) -> None:
        """Activation errors of implicitly registered types are wrapped."""
        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Failing)

        assert "implicit registration could not be made" in str(exc_info.value)
        assert str(exc_info.value.__cause__) == "inner failure"

    def test_configuration_error_is_wrapped(self, container: Container) -> None:
        """Configuration errors found while building become activation errors naming the service."""

        class Unannotated:
            def __init__(self, value) -> None:  # type: ignore[no-untyped-def]
                self.value = value

        container.register(Unannotated)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Unannotated)

        assert str(exc_info.value).startswith("Creating an instance of Unannotated failed.")
        assert "'value'" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, DIForgeConfigurationError)

    def test_cycle_of_pass_through_plan_is_wrapped(self, container: Container) -> None:
        """A factory calling back into its own service fails with an activation error carrying the cycle."""
        producer = container.register_factory(Clock, lambda: container.get_instance(Clock))

        with pytest.raises(DIForgeActivationError) as exc_info:
            producer.produce_instance()

        cycle = exc_info.value.__cause__
        assert not isinstance(exc_info.value, DIForgeCyclicDependencyError)
        assert isinstance(cycle, DIForgeCyclicDependencyError)
        assert cycle.originating_producer is producer
        assert cycle.is_complete
        assert "threw an exception" in str(exc_info.value)

    def test_wrap_policy_covers_every_error_kind(self) -> None:
        """The wrap policy table has one rule per error kind."""
        assert set(WRAP_POLICY) == set(ErrorKind)

    def test_error_kind_classification(self, container: Container) -> None:
        """Errors are classified by their most specific diforge category."""
        producer = container.register(Clock)

        assert ErrorKind.of(DIForgeCyclicDependencyError(producer)) is ErrorKind.CYCLE
        assert ErrorKind.of(DIForgeConfigurationError("x")) is ErrorKind.CONFIGURATION
        assert ErrorKind.of(DIForgeActivationError("x")) is ErrorKind.ACTIVATION
        assert ErrorKind.of(KeyError("x")) is ErrorKind.FOREIGN


class TestGuardReset:
    def test_failed_production_does_not_look_recursive_later(self, container: Container) -> None:
        """A failing first call leaves no guard state behind for the next call."""
        calls: list[int] = []

        def flaky() -> Clock:
            calls.append(1)
            if len(calls) == 1:
                msg = "first call fails"
                raise RuntimeError(msg)
            return Clock()

        container.register_factory(Clock, flaky)

        with pytest.raises(DIForgeActivationError):
            container.get_instance(Clock)

        assert isinstance(container.get_instance(Clock), Clock)

    def test_failed_build_plan_raises_same_error_again(self, strict_container: Container) -> None:
        """A failed build resets the guard, so retrying reports the real error, not a cycle."""
        producer = strict_container.register(Service)

        for _ in range(2):
            with pytest.raises(DIForgeActivationError) as exc_info:
                producer.build_plan()
            assert not isinstance(exc_info.value, DIForgeCyclicDependencyError)
            assert "Repository" in str(exc_info.value)


class TestBuildPlan:
    def test_build_plan_is_memoized(self, container: Container) -> None:
        """The expression is built once and reused."""
        producer = container.register(Service)

        expression = producer.build_plan()

        assert producer.build_plan() is expression
        assert producer.is_expression_created

    def test_build_plan_does_not_create_instances(self, container: Container) -> None:
        """Building the expression never runs constructors."""
        created: list[object] = []

        class Tracked:
            def __init__(self) -> None:
                created.append(self)

        producer = container.register(Tracked)
        producer.build_plan()

        assert created == []
        assert not producer.instance_successfully_created

    def test_expression_renders_constructor_call(self, container: Container) -> None:
        """The built expression renders as nested constructor calls."""
        producer = container.register(Service)

        assert str(producer.build_plan()) == "Service(repository=Repository(clock=Clock()))"


class TestFromExpression:
    def test_from_expression_produces_expression_value(self, container: Container) -> None:
        """Pass-through producers return what their expression produces."""
        clock = Clock()
        producer = InstanceProducer.from_expression(Clock, ConstantExpression(clock), container)

        assert producer.is_expression_created
        assert producer.plan.wraps_instance_creation_delegate
        assert producer.produce_instance() is clock

    def test_from_expression_skips_expression_built_handlers(self, container: Container) -> None:
        """Expression-built handlers are not applied to pass-through producers."""
        seen: list[object] = []
        container.add_expression_built_handler(lambda args: seen.append(args.service_type))

        producer = InstanceProducer.from_expression(Clock, ConstantExpression(Clock()), container)
        producer.produce_instance()

        assert seen == []
        assert producer not in container.get_current_registrations()


class TestValidity:
    def test_explicit_registration_is_valid_without_building(self, container: Container) -> None:
        """Explicit registrations are considered valid up front."""
        producer = container.register(Service)

        assert producer.is_valid
        assert not producer.is_expression_created

    def test_explicit_verification_request_builds_on_next_check(self, container: Container) -> None:
        """Resetting validity makes the next check build the expression."""
        producer = container.register(Service)
        producer.ensure_type_will_be_explicitly_verified()

        assert producer.is_valid
        assert producer.is_expression_created
        assert producer.exception is None

    def test_invalid_auto_registration_records_exception(self, container: Container) -> None:
        """An implicitly registered type that cannot be built is invalid."""

        class NeedsName:
            def __init__(self, name: str) -> None:
                self.name = name

        assert container.get_registration(NeedsName) is None

        producer = container.get_current_registrations()[-1]
        assert producer.service_type is NeedsName
        assert not producer.is_valid
        assert isinstance(producer.exception, DIForgeActivationError)
        assert "str" in str(producer.exception)


class TestProducerConstruction:
    def test_rejects_unassignable_plan(self, container: Container) -> None:
        """The plan's implementation type must implement the service type."""
        with pytest.raises(DIForgeConfigurationError):
            InstanceProducer(Repository, ConstructorPlan(container, Clock, Lifestyle.TRANSIENT))

    def test_rejects_none_plan(self) -> None:
        """A producer needs a plan."""
        with pytest.raises(DIForgeConfigurationError):
            InstanceProducer(Clock, None)  # type: ignore[arg-type]

    def test_repr(self, container: Container) -> None:
        """The representation names the service type and the lifestyle."""
        producer = container.register(Clock, lifestyle=Lifestyle.SINGLETON)

        assert repr(producer) == "InstanceProducer(service_type=Clock, lifestyle=singleton)"

    def test_mismatch_is_wrapped_with_diagnostic_cause(self, container: Container) -> None:
        """A transient captured by a singleton fails activation with the diagnostic as cause."""
        container.register(Clock, lifestyle=Lifestyle.TRANSIENT)
        container.register(Repository, lifestyle=Lifestyle.SINGLETON)

        with pytest.raises(DIForgeActivationError) as exc_info:
            container.get_instance(Repository)

        assert not isinstance(exc_info.value, DIForgeDiagnosticError)
        assert isinstance(exc_info.value.__cause__, DIForgeDiagnosticError)
        assert exc_info.value.__cause__.result.service_type is Repository
        assert str(exc_info.value).startswith("Creating an instance of Repository failed.")
