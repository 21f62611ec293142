from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from diforge.exceptions import DIForgeCyclicDependencyError
from diforge.expressions import ConstantExpression, Expression, InvokeExpression, NewExpression
from diforge.lifestyles import Lifestyle
from diforge.properties import PropertyBatchBuilder, PropertyInfo, verify_properties
from diforge.relationships import InjectionConsumerInfo, InjectionTargetInfo, KnownRelationship

if TYPE_CHECKING:
    from diforge.container import Container
    from diforge.producer import InstanceProducer


class ConstructionPlan:
    """Declarative description of how to build one implementation under one lifestyle.

    ``build_expression`` runs the deferred build step once. The resulting
    expression and the relationships discovered while building it are frozen
    from then on. Decoration never mutates a plan: it hands the producer a new one.
    """

    wraps_instance_creation_delegate = False
    """Whether the plan only forwards to a user supplied delegate or a prebuilt expression."""

    def __init__(self, container: Container, implementation_type: Any, lifestyle: Lifestyle) -> None:
        self.container = container
        self.implementation_type = implementation_type
        self.lifestyle = lifestyle
        self._expression: Expression | None = None
        self._relationships: tuple[KnownRelationship, ...] = ()

    def build_expression(self) -> Expression:
        """Return the expression producing a lifestyle-managed instance.

        A cyclic dependency error raised by a dependency passes through with this
        plan's implementation type recorded in its chain.
        """
        expression = self._expression
        if expression is not None:
            return expression

        relationships: list[KnownRelationship] = []
        try:
            expression = self._apply_lifestyle(self.build_new_instance_expression(relationships))
        except DIForgeCyclicDependencyError as error:
            error.add_type_to_cycle(self.implementation_type)
            raise

        self._relationships = tuple(dict.fromkeys(relationships))
        self._expression = expression
        return expression

    def build_new_instance_expression(self, relationships: list[KnownRelationship]) -> Expression:
        """Return the expression creating a new instance, appending discovered edges to ``relationships``."""
        raise NotImplementedError

    def get_relationships(self) -> tuple[KnownRelationship, ...]:
        return self._relationships

    def _apply_lifestyle(self, expression: Expression) -> Expression:
        return self.lifestyle.apply(expression, self)

    def _get_dependency_producer(self, consumer: InjectionConsumerInfo) -> InstanceProducer:
        return self.container.get_producer_for(consumer)

    def _build_parameter_keywords(
        self,
        target: Callable[..., Any],
        relationships: list[KnownRelationship],
    ) -> tuple[tuple[str, Expression], ...]:
        keywords: list[tuple[str, Expression]] = []
        for parameter in self.container.dependencies_extractor.get_parameters(target):
            # Parameters with a default are only injected when explicitly registered.
            if parameter.has_default and not self.container.is_registered(parameter.target_type):
                continue
            consumer = InjectionConsumerInfo(implementation_type=self.implementation_type, target=parameter)
            producer = self._get_dependency_producer(consumer)
            keywords.append((parameter.name, producer.build_plan()))
            relationships.append(self._relationship(consumer, producer))
        return tuple(keywords)

    def _relationship(self, consumer: InjectionConsumerInfo, producer: InstanceProducer) -> KnownRelationship:
        return KnownRelationship(
            implementation_type=self.implementation_type,
            lifestyle=self.lifestyle,
            consumer=consumer,
            dependency=producer,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(implementation_type={self.implementation_type!r}, "
            f"lifestyle={self.lifestyle!r})"
        )


class ConstructorPlan(ConstructionPlan):
    """Create instances by calling the implementation's constructor.

    Constructor parameters are resolved by annotation. Explicitly named
    ``properties`` and properties picked by the container's property selection
    behavior are injected after construction.
    """

    def __init__(
        self,
        container: Container,
        implementation_type: Any,
        lifestyle: Lifestyle,
        properties: Sequence[str] = (),
    ) -> None:
        super().__init__(container, implementation_type, lifestyle)
        self.properties = tuple(PropertyInfo.from_type(implementation_type, name) for name in properties)
        verify_properties(self.properties)

    def build_new_instance_expression(self, relationships: list[KnownRelationship]) -> Expression:
        expression: Expression = NewExpression(
            implementation_type=self.implementation_type,
            keywords=self._build_parameter_keywords(self.implementation_type, relationships),
        )

        properties = self._select_properties()
        if not properties:
            return expression

        data = PropertyBatchBuilder.build_property_injection_expression(
            self.container,
            self.implementation_type,
            properties,
            expression,
        )
        for info, producer in zip(data.properties, data.producers, strict=True):
            target = InjectionTargetInfo(kind="property", name=info.name, target_type=info.property_type)
            consumer = InjectionConsumerInfo(implementation_type=self.implementation_type, target=target)
            relationships.append(self._relationship(consumer, producer))
        return data.expression

    def _select_properties(self) -> tuple[PropertyInfo, ...]:
        selected = {info.name: info for info in self.properties}
        behavior = self.container.options.property_selection_behavior
        if behavior is not None:
            for info in PropertyInfo.candidates_for(self.implementation_type):
                if info.name not in selected and behavior(self.implementation_type, info):
                    selected[info.name] = info
        return tuple(selected.values())


class DecoratorPlan(ConstructorPlan):
    """Construct ``implementation_type`` around the instance supplied by ``decoratee``.

    The constructor parameter annotated with ``decorated_type`` receives the
    decoratee's expression. Every other parameter is resolved as usual.
    """

    def __init__(
        self,
        container: Container,
        implementation_type: Any,
        lifestyle: Lifestyle,
        *,
        decorated_type: Any,
        decoratee: InstanceProducer,
    ) -> None:
        super().__init__(container, implementation_type, lifestyle)
        self.decorated_type = decorated_type
        self.decoratee = decoratee

    def _get_dependency_producer(self, consumer: InjectionConsumerInfo) -> InstanceProducer:
        if consumer.target.kind == "parameter" and consumer.target.target_type == self.decorated_type:
            return self.decoratee
        return super()._get_dependency_producer(consumer)


class FactoryPlan(ConstructionPlan):
    """Create instances by calling a user supplied factory with its annotated parameters."""

    wraps_instance_creation_delegate = True

    def __init__(
        self,
        container: Container,
        factory: Callable[..., Any],
        implementation_type: Any,
        lifestyle: Lifestyle,
    ) -> None:
        super().__init__(container, implementation_type, lifestyle)
        self.factory = factory

    def build_new_instance_expression(self, relationships: list[KnownRelationship]) -> Expression:
        return InvokeExpression(
            function=ConstantExpression(self.factory),
            keywords=self._build_parameter_keywords(self.factory, relationships),
        )


class InstancePlan(ConstructionPlan):
    """Always return one prebuilt instance."""

    def __init__(self, container: Container, instance: Any) -> None:
        super().__init__(container, type(instance), Lifestyle.SINGLETON)
        self.instance = instance

    def build_new_instance_expression(self, relationships: list[KnownRelationship]) -> Expression:
        return ConstantExpression(self.instance)

    def _apply_lifestyle(self, expression: Expression) -> Expression:
        return expression


class ExpressionPlan(ConstructionPlan):
    """Pass-through plan around an already built expression.

    The expression already carries its lifestyle caching, so ``lifestyle``
    is informational only.
    """

    wraps_instance_creation_delegate = True

    def __init__(
        self,
        container: Container,
        expression: Expression,
        implementation_type: Any,
        lifestyle: Lifestyle,
    ) -> None:
        super().__init__(container, implementation_type, lifestyle)
        self.expression = expression

    def build_new_instance_expression(self, relationships: list[KnownRelationship]) -> Expression:
        return self.expression

    def _apply_lifestyle(self, expression: Expression) -> Expression:
        return expression


__all__ = [
    "ConstructionPlan",
    "ConstructorPlan",
    "DecoratorPlan",
    "ExpressionPlan",
    "FactoryPlan",
    "InstancePlan",
]
