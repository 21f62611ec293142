"""Shared pytest fixtures for diforge tests."""

import threading
from typing import Any, Callable

import pytest

from diforge.compiler import ExpressionCompiler
from diforge.container import Container
from diforge.expressions import Expression, LambdaExpression
from diforge.lifestyles import Lifestyle


class CountingExpressionCompiler(ExpressionCompiler):
    """Expression compiler that records every factory and delegate it compiles."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.compiled: list[Expression] = []
        self.compiled_lambdas: list[LambdaExpression] = []

    def compile(self, expression: Expression) -> Callable[[], Any]:
        with self._lock:
            self.compiled.append(expression)
        return super().compile(expression)

    def compile_lambda(self, expression: LambdaExpression) -> Callable[..., Any]:
        with self._lock:
            self.compiled_lambdas.append(expression)
        return super().compile_lambda(expression)


@pytest.fixture()
def container() -> Container:
    """Default container resolving unregistered concrete types."""
    return Container()


@pytest.fixture()
def strict_container() -> Container:
    """Container with resolve_unregistered_concrete_types=False."""
    return Container(resolve_unregistered_concrete_types=False)


@pytest.fixture()
def singleton_container() -> Container:
    """Container with singleton as default lifestyle."""
    return Container(default_lifestyle=Lifestyle.SINGLETON)


@pytest.fixture()
def counting_compiler() -> CountingExpressionCompiler:
    """Expression compiler counting compilations."""
    return CountingExpressionCompiler()
