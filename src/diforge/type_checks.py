from __future__ import annotations

import types
from typing import Annotated, Any, TypeGuard, TypeVar, get_args, get_origin


def is_runtime_class(candidate: object) -> TypeGuard[type[Any]]:
    """Return true when candidate is a runtime class safe for class-only operations.

    Args:
        candidate: Value being checked for eligibility or runtime type constraints.

    """
    return isinstance(candidate, type) and not isinstance(candidate, types.GenericAlias)


def contains_typevar(value: Any) -> bool:
    """Return whether a type expression still contains a ``TypeVar``.

    Args:
        value: Type expression or object to inspect.

    """
    if isinstance(value, TypeVar):
        return True

    origin = get_origin(value)
    if origin is not None:
        return any(contains_typevar(argument) for argument in get_args(value))

    parameters = getattr(value, "__parameters__", ())
    return any(isinstance(parameter, TypeVar) for parameter in parameters)


def is_open_generic(value: Any) -> bool:
    """Return whether ``value`` is an unbound generic such as ``Repo`` or ``Repo[T]``."""
    return contains_typevar(value)


def is_protocol(value: Any) -> bool:
    return is_runtime_class(value) and bool(getattr(value, "_is_protocol", False))


def strip_annotated(value: Any) -> Any:
    if get_origin(value) is Annotated:
        return get_args(value)[0]
    return value


def is_assignable(service_type: Any, implementation_type: Any) -> bool:
    """Return whether instances of ``implementation_type`` can be served as ``service_type``.

    Protocols are matched structurally, so any implementation is accepted for them.
    Keys that are not classes (string tokens, ``Annotated`` keys) accept anything.
    """
    service = strip_annotated(service_type)
    implementation = strip_annotated(implementation_type)
    if service is implementation or service is Any or service is object:
        return True

    if is_protocol(service):
        return True

    service_origin = get_origin(service)
    if service_origin is not None:
        service = service_origin
    implementation_origin = get_origin(implementation)
    if implementation_origin is not None:
        implementation = implementation_origin

    if not is_runtime_class(service) or not is_runtime_class(implementation):
        return True

    try:
        return issubclass(implementation, service)
    except TypeError:
        return False


def friendly_name(value: Any) -> str:
    """Return a short human readable name for a type or key."""
    if is_runtime_class(value):
        return value.__qualname__
    origin = get_origin(value)
    if origin is Annotated:
        return friendly_name(get_args(value)[0])
    if origin is not None:
        arguments = ", ".join(friendly_name(argument) for argument in get_args(value))
        return f"{friendly_name(origin)}[{arguments}]"
    return repr(value)


def full_name(value: Any) -> str:
    if is_runtime_class(value):
        return f"{value.__module__}.{value.__qualname__}"
    return friendly_name(value)


__all__ = [
    "contains_typevar",
    "friendly_name",
    "full_name",
    "is_assignable",
    "is_open_generic",
    "is_protocol",
    "is_runtime_class",
    "strip_annotated",
]
