from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from diforge.type_checks import friendly_name, full_name

if TYPE_CHECKING:
    from diforge.producer import InstanceProducer

_INDENT = "    "


@dataclass(frozen=True, slots=True)
class VisualizationOptions:
    """Formatting switches for ``InstanceProducer.visualize_graph``."""

    include_lifestyle_information: bool = True
    use_fully_qualified_type_names: bool = False


def visualize_object_graph(producer: InstanceProducer, options: VisualizationOptions) -> str:
    """Render the object graph of ``producer`` as an indented constructor tree.

    Example output::

        OrderService( // transient
            SqlOrderRepository( // scoped
                Connection()), // singleton
            Clock()) // singleton

    """
    lines = _node_lines(producer, options, ancestors=frozenset())
    if options.include_lifestyle_information:
        return "\n".join(f"{text} // {comment}" for text, comment in lines)
    return "\n".join(text for text, _ in lines)


def _node_lines(
    producer: InstanceProducer,
    options: VisualizationOptions,
    ancestors: frozenset[InstanceProducer],
) -> list[list[str]]:
    type_name = (
        full_name(producer.final_implementation_type)
        if options.use_fully_qualified_type_names
        else friendly_name(producer.final_implementation_type)
    )
    comment = producer.lifestyle.name
    relationships = producer.get_relationships()
    if producer in ancestors or not relationships:
        return [[f"{type_name}()", comment]]

    lines = [[f"{type_name}(", comment]]
    for index, relationship in enumerate(relationships):
        child = _node_lines(relationship.dependency, options, ancestors | {producer})
        for line in child:
            line[0] = _INDENT + line[0]
        child[-1][0] += ")" if index == len(relationships) - 1 else ","
        lines.extend(child)
    return lines


__all__ = ["VisualizationOptions", "visualize_object_graph"]
