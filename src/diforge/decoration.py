from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from diforge.events import ExpressionBuiltEventArgs
from diforge.plans import DecoratorPlan
from diforge.producer import InstanceProducer
from diforge.type_checks import friendly_name

if TYPE_CHECKING:
    from diforge.container import Container
    from diforge.lifestyles import Lifestyle

logger = logging.getLogger(__name__)


class DecoratorInterceptor:
    """Expression-built handler that wraps every expression of ``service_type`` in ``decorator_type``.

    The decorated expression moves into a pass-through producer that the
    decorator plan receives as its decoratee. That producer is registered on the
    decorated producer with ``add_producer_to_verify`` so lifestyle mismatches
    between decorator and decoratee are detected.
    """

    def __init__(
        self,
        container: Container,
        service_type: Any,
        decorator_type: Any,
        lifestyle: Lifestyle | None = None,
    ) -> None:
        self.container = container
        self.service_type = service_type
        self.decorator_type = decorator_type
        self.lifestyle = lifestyle

    def __call__(self, args: ExpressionBuiltEventArgs) -> ExpressionBuiltEventArgs | None:
        if args.service_type != self.service_type:
            return None

        decoratee = InstanceProducer.from_expression(
            args.service_type,
            args.expression,
            self.container,
            implementation_type=args.plan.implementation_type,
            lifestyle=args.lifestyle,
        )
        decoratee.replace_relationships(args.plan.get_relationships())

        plan = DecoratorPlan(
            self.container,
            self.decorator_type,
            self.lifestyle or self.container.options.default_lifestyle,
            decorated_type=self.service_type,
            decoratee=decoratee,
        )
        expression = plan.build_expression()

        args.producer.add_producer_to_verify(decoratee)
        args.producer.is_decorated = True
        logger.debug(
            "Decorating %s with %s",
            friendly_name(self.service_type),
            friendly_name(self.decorator_type),
        )
        return args.rewrite(expression=expression, plan=plan)


__all__ = ["DecoratorInterceptor"]
