from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from diforge.expressions import Expression

if TYPE_CHECKING:
    from diforge.lifestyles import Lifestyle
    from diforge.plans import ConstructionPlan
    from diforge.producer import InstanceProducer


@dataclass(frozen=True, slots=True, kw_only=True)
class ExpressionBuiltEventArgs:
    """Snapshot handed to expression-built handlers right after a producer built its expression.

    Handlers never mutate the snapshot. To rewrite the registration they return
    a copy made with ``rewrite``: a different ``plan`` replaces the producer's
    plan permanently, otherwise ``lifestyle`` becomes the producer's effective
    lifestyle.
    """

    producer: InstanceProducer
    service_type: Any
    expression: Expression
    plan: ConstructionPlan
    lifestyle: Lifestyle

    def rewrite(
        self,
        *,
        expression: Expression | None = None,
        plan: ConstructionPlan | None = None,
        lifestyle: Lifestyle | None = None,
    ) -> ExpressionBuiltEventArgs:
        """Return a copy with the given parts replaced.

        Args:
            expression: New expression the producer compiles.
            plan: Plan replacing the producer's current plan.
            lifestyle: Lifestyle reported by the producer afterwards. Defaults to
                the new plan's lifestyle when only ``plan`` is given.

        """
        if lifestyle is None and plan is not None:
            lifestyle = plan.lifestyle
        return replace(
            self,
            expression=expression if expression is not None else self.expression,
            plan=plan if plan is not None else self.plan,
            lifestyle=lifestyle if lifestyle is not None else self.lifestyle,
        )


ExpressionBuiltHandler = Callable[[ExpressionBuiltEventArgs], ExpressionBuiltEventArgs | None]
"""Callable returning a rewritten copy of the event args, or ``None`` to leave them unchanged."""


__all__ = ["ExpressionBuiltEventArgs", "ExpressionBuiltHandler"]
