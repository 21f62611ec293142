from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Final, get_args, get_origin, get_type_hints

from diforge.exceptions import DIForgeActivationError, DIForgeConfigurationError
from diforge.expressions import (
    AssignAttributeExpression,
    ConstantExpression,
    Expression,
    InvokeExpression,
    LambdaExpression,
    ParameterExpression,
)
from diforge.relationships import InjectionConsumerInfo, InjectionTargetInfo
from diforge.type_checks import friendly_name, is_runtime_class

if TYPE_CHECKING:
    from diforge.container import Container
    from diforge.producer import InstanceProducer

logger = logging.getLogger(__name__)

DEFAULT_MAX_ARGUMENTS: Final[int] = 16
"""Parameter ceiling of one generated property-injection delegate."""

_MISSING: Final[Any] = object()
_NON_IDENTIFIER = re.compile(r"\W")


@dataclass(frozen=True, slots=True)
class PropertyInfo:
    """Describe one injectable attribute of an implementation type.

    A ``property`` is settable when it defines ``fset``. An attribute annotated
    with ``ClassVar`` is static. Any other annotated attribute is a settable
    instance attribute.
    """

    declaring_type: Any
    name: str
    property_type: Any
    has_setter: bool
    is_static: bool

    @classmethod
    def from_type(cls, implementation_type: Any, name: str) -> PropertyInfo:
        """Describe the attribute ``name`` of ``implementation_type``.

        Args:
            implementation_type: Class declaring (or inheriting) the attribute.
            name: Attribute name.

        """
        attribute = _find_class_attribute(implementation_type, name)
        if isinstance(attribute, property):
            return cls(
                declaring_type=implementation_type,
                name=name,
                property_type=_property_type(attribute),
                has_setter=attribute.fset is not None,
                is_static=False,
            )

        annotation = _class_annotations(implementation_type).get(name, _MISSING)
        if annotation is _MISSING:
            if attribute is _MISSING:
                msg = f"Type {friendly_name(implementation_type)} has no property named '{name}'."
            else:
                msg = (
                    f"The property '{name}' of type {friendly_name(implementation_type)} has no "
                    "type annotation, so its dependency cannot be determined."
                )
            raise DIForgeConfigurationError(msg)

        if annotation is ClassVar or get_origin(annotation) is ClassVar:
            arguments = get_args(annotation)
            return cls(
                declaring_type=implementation_type,
                name=name,
                property_type=arguments[0] if arguments else Any,
                has_setter=True,
                is_static=True,
            )

        return cls(
            declaring_type=implementation_type,
            name=name,
            property_type=annotation,
            has_setter=True,
            is_static=False,
        )

    @classmethod
    def candidates_for(cls, implementation_type: Any) -> tuple[PropertyInfo, ...]:
        """Return every public property and annotated attribute of ``implementation_type``."""
        names: dict[str, None] = {}
        for klass in reversed(getattr(implementation_type, "__mro__", ())):
            if klass is object:
                continue
            for name, value in vars(klass).items():
                if isinstance(value, property):
                    names.setdefault(name)
            for name in inspect.get_annotations(klass):
                names.setdefault(name)
        return tuple(
            cls.from_type(implementation_type, name) for name in names if not name.startswith("_")
        )

    def __str__(self) -> str:
        return f"{friendly_name(self.declaring_type)}.{self.name}"


@dataclass(frozen=True, slots=True)
class PropertyInjectionData:
    """Result of one property-batch build.

    ``delegates`` holds one compiled delegate per chained factory, outermost first.
    """

    expression: Expression
    producers: tuple[InstanceProducer, ...] = ()
    properties: tuple[PropertyInfo, ...] = ()
    delegates: tuple[Callable[..., Any], ...] = ()


def verify_properties(properties: Sequence[PropertyInfo]) -> None:
    """Raise ``DIForgeConfigurationError`` for the first property that cannot be injected."""
    for info in properties:
        if not info.has_setter:
            msg = (
                f"Property '{info.name}' of type {friendly_name(info.declaring_type)} can't be "
                "used for property injection, because it has no setter."
            )
            raise DIForgeConfigurationError(msg)
        if info.is_static:
            msg = (
                f"Property '{info.name}' of type {friendly_name(info.declaring_type)} can't be "
                "used for property injection, because it is static."
            )
            raise DIForgeConfigurationError(msg)


class PropertyBatchBuilder:
    """Build the expression that assigns injected properties to a new instance.

    Each generated delegate takes at most ``max_arguments`` positional
    arguments: one per property plus the instance being completed. Larger
    property sets are split into batches. With a ceiling of 4 and seven
    properties the result looks like::

        delegate1(dep1, dep2, dep3, delegate2(dep4, dep5, dep6, delegate3(dep7, Impl())))

    so the last batch runs first and the instance reaches the caller only after
    every batch assigned its properties.
    """

    def __init__(
        self,
        container: Container,
        implementation_type: Any,
        *,
        max_arguments: int = DEFAULT_MAX_ARGUMENTS,
    ) -> None:
        self._container = container
        self._implementation_type = implementation_type
        self._max_properties_per_delegate = max_arguments - 1

    @classmethod
    def build_property_injection_expression(
        cls,
        container: Container,
        implementation_type: Any,
        properties: Sequence[PropertyInfo],
        expression_to_wrap: Expression,
    ) -> PropertyInjectionData:
        """Wrap ``expression_to_wrap`` so that all ``properties`` are injected.

        Args:
            container: Container used to look up each property's producer.
            implementation_type: Type of the instance produced by ``expression_to_wrap``.
            properties: Properties to inject, in declaration order.
            expression_to_wrap: Expression producing the not yet property-injected instance.

        """
        verify_properties(properties)
        builder = cls(
            container,
            implementation_type,
            max_arguments=container.options.max_property_injection_arguments,
        )
        data = builder.build(expression_to_wrap, tuple(properties))
        logger.debug(
            "Injecting %d propert(ies) into %s using %d delegate(s)",
            len(data.properties),
            friendly_name(implementation_type),
            len(data.delegates),
        )
        return data

    def build(
        self,
        expression: Expression,
        properties: tuple[PropertyInfo, ...],
    ) -> PropertyInjectionData:
        if len(properties) > self._max_properties_per_delegate:
            rest = properties[self._max_properties_per_delegate :]
            properties = properties[: self._max_properties_per_delegate]
            data = self.build(expression, rest)
        else:
            data = PropertyInjectionData(expression=expression)

        producers = tuple(self._get_property_producer(info) for info in properties)
        arguments = (*(producer.build_plan() for producer in producers), data.expression)
        delegate = self._build_property_injection_delegate(properties)

        return PropertyInjectionData(
            expression=InvokeExpression(function=ConstantExpression(delegate), arguments=arguments),
            producers=(*producers, *data.producers),
            properties=(*properties, *data.properties),
            delegates=(delegate, *data.delegates),
        )

    def _build_property_injection_delegate(
        self,
        properties: tuple[PropertyInfo, ...],
    ) -> Callable[..., Any]:
        target = ParameterExpression(name="instance", parameter_type=self._implementation_type)
        dependencies = tuple(
            ParameterExpression(name=info.name, parameter_type=info.property_type)
            for info in properties
        )
        delegate = LambdaExpression(
            parameters=(*dependencies, target),
            body=tuple(
                AssignAttributeExpression(target=target, attribute=info.name, value=dependency)
                for info, dependency in zip(properties, dependencies, strict=True)
            ),
            result=target,
            name=self._delegate_name(),
        )

        try:
            return self._container.options.expression_compiler.compile_lambda(delegate)
        except (SyntaxError, TypeError, ValueError, RecursionError) as error:
            msg = (
                f"Unable to inject properties into type {friendly_name(self._implementation_type)}. "
                f"Building the property injection delegate failed: {error}"
            )
            raise DIForgeActivationError(msg) from error

    def _get_property_producer(self, info: PropertyInfo) -> InstanceProducer:
        consumer = InjectionConsumerInfo(
            implementation_type=self._implementation_type,
            target=InjectionTargetInfo(kind="property", name=info.name, target_type=info.property_type),
        )
        return self._container.get_producer_for(consumer)

    def _delegate_name(self) -> str:
        type_name = getattr(self._implementation_type, "__name__", "instance")
        return f"inject_{_NON_IDENTIFIER.sub('_', type_name)}_properties"


def _find_class_attribute(implementation_type: Any, name: str) -> Any:
    for klass in getattr(implementation_type, "__mro__", ()):
        if name in vars(klass):
            return vars(klass)[name]
    return _MISSING


def _class_annotations(implementation_type: Any) -> dict[str, Any]:
    if not is_runtime_class(implementation_type):
        return {}
    try:
        return get_type_hints(implementation_type, include_extras=True)
    except (AttributeError, NameError, TypeError) as error:
        msg = f"Unable to resolve the annotations of {friendly_name(implementation_type)}: {error}"
        raise DIForgeConfigurationError(msg) from error


def _property_type(attribute: property) -> Any:
    if attribute.fget is not None:
        try:
            return_type = get_type_hints(attribute.fget, include_extras=True).get("return", _MISSING)
        except (AttributeError, NameError, TypeError):
            return_type = _MISSING
        if return_type is not _MISSING:
            return return_type
    if attribute.fset is not None:
        try:
            hints = get_type_hints(attribute.fset, include_extras=True)
        except (AttributeError, NameError, TypeError):
            hints = {}
        setter_types = [value for key, value in hints.items() if key != "return"]
        if setter_types:
            return setter_types[0]
    return Any


__all__ = [
    "DEFAULT_MAX_ARGUMENTS",
    "PropertyBatchBuilder",
    "PropertyInfo",
    "PropertyInjectionData",
    "verify_properties",
]
