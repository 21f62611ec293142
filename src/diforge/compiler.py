from __future__ import annotations

import ast
import itertools
import logging
import types
from collections.abc import Callable, Mapping, Sequence
from types import CodeType
from typing import Any, Final

from diforge.expressions import (
    AssignAttributeExpression,
    CachedExpression,
    ConstantExpression,
    Expression,
    InvokeExpression,
    LambdaExpression,
    NewExpression,
    ParameterExpression,
)

logger = logging.getLogger(__name__)

_FILENAME: Final[str] = "<diforge-factory>"
_LITERAL_TYPES: Final[tuple[type[Any], ...]] = (type(None), bool, int, float, str, bytes)


class ExpressionCompiler:
    """Compile expression trees into plain Python functions with ``ast``.

    Every constant referenced by an expression (types, user factories, caches,
    batch delegates) is bound through the generated function globals, so the
    compiled body only performs calls and attribute assignments.
    """

    def compile(self, expression: Expression) -> Callable[[], Any]:
        """Compile ``expression`` into a zero-argument factory.

        Args:
            expression: Expression describing the instance to create.

        """
        lowering = _ExpressionLowering(compiler=self)
        body: list[ast.stmt] = [ast.Return(value=lowering.lower(expression))]
        function = _compile_function(
            name="create_instance",
            arguments=_arguments(()),
            body=body,
            generated_globals=lowering.generated_globals,
        )
        logger.debug("Compiled factory for expression %s", expression)
        return function

    def compile_lambda(self, expression: LambdaExpression) -> Callable[..., Any]:
        """Compile a lambda expression into a function taking its parameters positionally.

        Args:
            expression: Lambda to compile.

        """
        lowering = _ExpressionLowering(compiler=self, parameters=expression.parameters)
        body = [lowering.lower_statement(statement) for statement in expression.body]
        body.append(ast.Return(value=lowering.lower(expression.result)))
        function = _compile_function(
            name=expression.name,
            arguments=_arguments(lowering.argument_names),
            body=body,
            generated_globals=lowering.generated_globals,
        )
        logger.debug(
            "Compiled delegate %s taking %d argument(s)",
            expression.name,
            len(expression.parameters),
        )
        return function


class _ExpressionLowering:
    def __init__(
        self,
        *,
        compiler: ExpressionCompiler,
        parameters: Sequence[ParameterExpression] = (),
    ) -> None:
        self._compiler = compiler
        self._counter = itertools.count()
        self.generated_globals: dict[str, Any] = {}
        self._constant_names: dict[int, str] = {}
        self._parameter_names = {
            parameter: f"_arg{index}" for index, parameter in enumerate(parameters)
        }
        self.argument_names = tuple(self._parameter_names.values())

    def lower(self, expression: Expression) -> ast.expr:
        if isinstance(expression, ConstantExpression):
            return self._constant(expression.value)
        if isinstance(expression, ParameterExpression):
            name = self._parameter_names.get(expression)
            if name is None:
                msg = f"Parameter '{expression.name}' is not bound by the enclosing delegate."
                raise ValueError(msg)
            return ast.Name(id=name, ctx=ast.Load())
        if isinstance(expression, NewExpression):
            return self._call(
                function=self._constant(expression.implementation_type),
                arguments=expression.arguments,
                keywords=expression.keywords,
            )
        if isinstance(expression, InvokeExpression):
            return self._call(
                function=self.lower(expression.function),
                arguments=expression.arguments,
                keywords=expression.keywords,
            )
        if isinstance(expression, LambdaExpression):
            return self._constant(self._compiler.compile_lambda(expression))
        if isinstance(expression, CachedExpression):
            creator = ast.Lambda(args=_arguments(()), body=self.lower(expression.creator))
            return ast.Call(
                func=ast.Attribute(
                    value=self._constant(expression.cache),
                    attr="get_instance",
                    ctx=ast.Load(),
                ),
                args=[creator],
                keywords=[],
            )
        msg = f"Expression {type(expression).__name__} cannot be used as a value."
        raise TypeError(msg)

    def lower_statement(self, expression: Expression) -> ast.stmt:
        if isinstance(expression, AssignAttributeExpression):
            return ast.Assign(
                targets=[
                    ast.Attribute(
                        value=self.lower(expression.target),
                        attr=expression.attribute,
                        ctx=ast.Store(),
                    ),
                ],
                value=self.lower(expression.value),
            )
        return ast.Expr(value=self.lower(expression))

    def _call(
        self,
        *,
        function: ast.expr,
        arguments: Sequence[Expression],
        keywords: Sequence[tuple[str, Expression]],
    ) -> ast.Call:
        return ast.Call(
            func=function,
            args=[self.lower(argument) for argument in arguments],
            keywords=[ast.keyword(arg=name, value=self.lower(value)) for name, value in keywords],
        )

    def _constant(self, value: Any) -> ast.expr:
        if type(value) in _LITERAL_TYPES:
            return ast.Constant(value=value)
        name = self._constant_names.get(id(value))
        if name is None:
            name = f"_c{next(self._counter)}"
            self._constant_names[id(value)] = name
            self.generated_globals[name] = value
        return ast.Name(id=name, ctx=ast.Load())


def _arguments(names: Sequence[str]) -> ast.arguments:
    return ast.arguments(
        posonlyargs=[],
        args=[ast.arg(arg=name) for name in names],
        vararg=None,
        kwonlyargs=[],
        kw_defaults=[],
        kwarg=None,
        defaults=[],
    )


def _compile_function(
    *,
    name: str,
    arguments: ast.arguments,
    body: Sequence[ast.stmt],
    generated_globals: Mapping[str, Any],
) -> Callable[..., Any]:
    function_definition = ast.FunctionDef(
        name=name,
        args=arguments,
        body=list(body),
        decorator_list=[],
        returns=None,
        type_comment=None,
    )
    module = ast.Module(body=[function_definition], type_ignores=[])
    ast.fix_missing_locations(module)
    module_code = compile(module, filename=_FILENAME, mode="exec")
    function_code = _extract_function_code(module_code=module_code, name=name)
    return types.FunctionType(function_code, dict(generated_globals), name=name)


def _extract_function_code(*, module_code: CodeType, name: str) -> CodeType:
    stack = [module_code]
    while stack:
        current = stack.pop()
        for constant in current.co_consts:
            if isinstance(constant, CodeType):
                if constant.co_name == name:
                    return constant
                stack.append(constant)
    msg = f"Unable to extract function code object for {name!r}."
    raise RuntimeError(msg)


__all__ = ["ExpressionCompiler"]
