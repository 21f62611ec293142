from __future__ import annotations

import datetime
import decimal
import inspect
import pathlib
import uuid
from dataclasses import dataclass
from typing import Any, TypeGuard

from diforge.type_checks import is_open_generic, is_runtime_class


@dataclass(frozen=True, slots=True)
class ConcreteTypeAutoregistrationPolicy:
    """Decide which unregistered types the container may construct on its own."""

    ignored_base_types: tuple[type[Any], ...] = (
        pathlib.PurePath,
        datetime.datetime,
        datetime.date,
        datetime.time,
        datetime.timedelta,
        uuid.UUID,
        decimal.Decimal,
    )

    def is_eligible_concrete(self, candidate: object) -> TypeGuard[type[Any]]:
        """Return true when a candidate can be auto-registered with a constructor plan.

        Args:
            candidate: Unregistered service type being requested.

        """
        if not is_runtime_class(candidate):
            return False
        if candidate.__module__ == "builtins":
            return False
        if inspect.isabstract(candidate) or getattr(candidate, "_is_protocol", False):
            return False
        if issubclass(candidate, type):
            return False
        if is_open_generic(candidate):
            return False
        return not issubclass(candidate, self.ignored_base_types)


__all__ = ["ConcreteTypeAutoregistrationPolicy"]
