from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Protocol

from diforge.type_checks import friendly_name, is_runtime_class

_MAX_CONSTANT_REPR = 40


class InstanceCache(Protocol):
    """Lifestyle-owned storage consulted by a ``CachedExpression``."""

    def get_instance(self, creator: Callable[[], Any]) -> Any: ...


class Expression:
    """Base class for nodes describing how a value is built.

    Expressions are immutable. They are turned into executable callables by
    ``diforge.compiler.ExpressionCompiler``.
    """

    __slots__ = ()

    def children(self) -> tuple[Expression, ...]:
        return ()

    def walk(self) -> Iterator[Expression]:
        """Yield this node and all nested nodes, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True, slots=True)
class ConstantExpression(Expression):
    value: Any

    def render(self) -> str:
        if is_runtime_class(self.value) or callable(self.value):
            return getattr(self.value, "__qualname__", None) or friendly_name(self.value)
        text = repr(self.value)
        if len(text) > _MAX_CONSTANT_REPR:
            return f"{friendly_name(type(self.value))}(...)"
        return text


@dataclass(frozen=True, slots=True, eq=False)
class ParameterExpression(Expression):
    name: str
    parameter_type: Any = None

    def render(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class NewExpression(Expression):
    """Instantiate ``implementation_type`` with positional and keyword arguments."""

    implementation_type: Any
    arguments: tuple[Expression, ...] = ()
    keywords: tuple[tuple[str, Expression], ...] = ()

    def children(self) -> tuple[Expression, ...]:
        return (*self.arguments, *(value for _, value in self.keywords))

    def render(self) -> str:
        return f"{friendly_name(self.implementation_type)}({_render_arguments(self.arguments, self.keywords)})"


@dataclass(frozen=True, slots=True)
class InvokeExpression(Expression):
    """Call ``function`` with the given arguments."""

    function: Expression
    arguments: tuple[Expression, ...] = ()
    keywords: tuple[tuple[str, Expression], ...] = ()

    def children(self) -> tuple[Expression, ...]:
        return (self.function, *self.arguments, *(value for _, value in self.keywords))

    def render(self) -> str:
        return f"{self.function.render()}({_render_arguments(self.arguments, self.keywords)})"


@dataclass(frozen=True, slots=True)
class AssignAttributeExpression(Expression):
    """Statement node assigning ``value`` to ``target.attribute``."""

    target: Expression
    attribute: str
    value: Expression

    def children(self) -> tuple[Expression, ...]:
        return (self.target, self.value)

    def render(self) -> str:
        return f"{self.target.render()}.{self.attribute} = {self.value.render()}"


@dataclass(frozen=True, slots=True)
class LambdaExpression(Expression):
    """A function taking ``parameters``, running ``body`` and returning ``result``."""

    parameters: tuple[ParameterExpression, ...]
    body: tuple[Expression, ...]
    result: Expression
    name: str = "delegate"

    def children(self) -> tuple[Expression, ...]:
        return (*self.parameters, *self.body, self.result)

    def render(self) -> str:
        parameters = ", ".join(parameter.render() for parameter in self.parameters)
        statements = "; ".join(statement.render() for statement in self.body)
        if statements:
            return f"lambda {parameters}: ({statements}; {self.result.render()})"
        return f"lambda {parameters}: {self.result.render()}"


@dataclass(frozen=True, slots=True)
class CachedExpression(Expression):
    """Route ``creator`` through a lifestyle cache."""

    cache: InstanceCache
    creator: Expression
    lifestyle_name: str

    def children(self) -> tuple[Expression, ...]:
        return (self.creator,)

    def render(self) -> str:
        return f"{self.lifestyle_name}({self.creator.render()})"


def _render_arguments(
    arguments: tuple[Expression, ...],
    keywords: tuple[tuple[str, Expression], ...],
) -> str:
    parts = [argument.render() for argument in arguments]
    parts.extend(f"{name}={value.render()}" for name, value in keywords)
    return ", ".join(parts)


__all__ = [
    "AssignAttributeExpression",
    "CachedExpression",
    "ConstantExpression",
    "Expression",
    "InstanceCache",
    "InvokeExpression",
    "LambdaExpression",
    "NewExpression",
    "ParameterExpression",
]
