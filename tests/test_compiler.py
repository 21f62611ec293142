"""Tests for expression rendering and compilation into factories."""

import pytest

from diforge.compiler import ExpressionCompiler
from diforge.expressions import (
    AssignAttributeExpression,
    CachedExpression,
    ConstantExpression,
    InvokeExpression,
    LambdaExpression,
    NewExpression,
    ParameterExpression,
)
from diforge.lifestyles import SingletonCache


class Engine:
    pass


class Car:
    def __init__(self, engine: Engine, name: str = "car") -> None:
        self.engine = engine
        self.name = name


class Garage:
    car: Car


@pytest.fixture()
def compiler() -> ExpressionCompiler:
    return ExpressionCompiler()


class TestCompile:
    def test_new_expression_with_keywords(self, compiler: ExpressionCompiler) -> None:
        """Constructor calls receive nested expressions as keyword arguments."""
        expression = NewExpression(Car, keywords=(("engine", NewExpression(Engine)), ("name", ConstantExpression("x"))))

        factory = compiler.compile(expression)
        car = factory()

        assert isinstance(car, Car)
        assert isinstance(car.engine, Engine)
        assert car.name == "x"
        assert factory() is not car

    def test_invoke_expression_calls_function(self, compiler: ExpressionCompiler) -> None:
        """Invoke expressions call constant functions with positional arguments."""

        def make_car(engine: Engine) -> Car:
            return Car(engine, name="made")

        expression = InvokeExpression(ConstantExpression(make_car), arguments=(NewExpression(Engine),))

        assert compiler.compile(expression)().name == "made"

    def test_cached_expression_routes_through_cache(self, compiler: ExpressionCompiler) -> None:
        """Cached expressions create their value once through the lifestyle cache."""
        expression = CachedExpression(cache=SingletonCache(), creator=NewExpression(Engine), lifestyle_name="singleton")

        factory = compiler.compile(expression)

        assert factory() is factory()

    def test_factory_code_has_diagnostic_filename(self, compiler: ExpressionCompiler) -> None:
        """Generated code is recognisable in tracebacks."""
        factory = compiler.compile(NewExpression(Engine))

        assert factory.__code__.co_filename == "<diforge-factory>"
        assert factory.__name__ == "create_instance"

    def test_unbound_parameter_is_rejected(self, compiler: ExpressionCompiler) -> None:
        """Parameters are only valid inside the lambda declaring them."""
        with pytest.raises(ValueError, match="not bound"):
            compiler.compile(ParameterExpression("engine"))


class TestCompileLambda:
    def test_lambda_assigns_attributes_and_returns_result(self, compiler: ExpressionCompiler) -> None:
        """Lambda bodies run their statements before returning the result."""
        car = ParameterExpression("car", Car)
        garage = ParameterExpression("garage", Garage)
        expression = LambdaExpression(
            parameters=(car, garage),
            body=(AssignAttributeExpression(target=garage, attribute="car", value=car),),
            result=garage,
            name="inject_garage",
        )

        delegate = compiler.compile_lambda(expression)
        target = Garage()
        the_car = Car(Engine())

        assert delegate(the_car, target) is target
        assert target.car is the_car
        assert delegate.__name__ == "inject_garage"
        assert delegate.__code__.co_argcount == 2

    def test_parameters_with_same_name_stay_distinct(self, compiler: ExpressionCompiler) -> None:
        """Parameters are bound by identity, not by name."""
        first = ParameterExpression("value")
        second = ParameterExpression("value")
        expression = LambdaExpression(parameters=(first, second), body=(), result=second)

        assert compiler.compile_lambda(expression)(1, 2) == 2

    def test_nested_lambda_is_compiled_as_constant(self, compiler: ExpressionCompiler) -> None:
        """A lambda used as a value becomes a compiled delegate."""
        engine = ParameterExpression("engine", Engine)
        inner = LambdaExpression(parameters=(engine,), body=(), result=NewExpression(Car, arguments=(engine,)))
        expression = InvokeExpression(inner, arguments=(NewExpression(Engine),))

        assert isinstance(compiler.compile(expression)(), Car)


class TestRender:
    def test_render_nested_constructors(self) -> None:
        """Expressions render as the calls they perform."""
        expression = NewExpression(Car, keywords=(("engine", NewExpression(Engine)),))

        assert str(expression) == "Car(engine=Engine())"

    def test_render_cached_expression(self) -> None:
        """Cached expressions name their lifestyle."""
        expression = CachedExpression(cache=SingletonCache(), creator=NewExpression(Engine), lifestyle_name="singleton")

        assert str(expression) == "singleton(Engine())"

    def test_render_long_constant_is_abbreviated(self) -> None:
        """Long constant values are shortened to their type."""
        assert str(ConstantExpression("x" * 100)) == "str(...)"
        assert str(ConstantExpression(3)) == "3"

    def test_walk_yields_every_node(self) -> None:
        """walk visits nested nodes depth first."""
        engine = NewExpression(Engine)
        car = NewExpression(Car, keywords=(("engine", engine),))

        assert list(car.walk()) == [car, engine]
