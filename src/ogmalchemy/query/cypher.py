# src/ogmalchemy/query/cypher.py
"""
Cypher rendering of structured node queries.

Example:
    ```python
    cypher, parameters = render_node_query(NodeQuery(
        label="Ingredient",
        predicates=(Predicate(property="name", parameter="p0"),),
        parameters={"p0": "Basil"},
    ))
    # MATCH (n:`Ingredient`)
    # WHERE n.`name` = $p0
    # WITH DISTINCT n
    # ORDER BY elementId(n)
    # RETURN elementId(n) AS identity, labels(n) AS labels, properties(n) AS properties
    ```
"""

from typing import Any, Dict, List, Tuple

from ogmalchemy.orm.fields import Direction
from ogmalchemy.query.model import NodeQuery, Operator, PathStep, Predicate, SortDirection


NODE_PROJECTION = "elementId(n) AS identity, labels(n) AS labels, properties(n) AS properties"

_COMPARISONS = {
    Operator.EQUALS: "{target} = ${param}",
    Operator.NOT: "{target} <> ${param}",
    Operator.GREATER_THAN: "{target} > ${param}",
    Operator.GREATER_THAN_EQUAL: "{target} >= ${param}",
    Operator.LESS_THAN: "{target} < ${param}",
    Operator.LESS_THAN_EQUAL: "{target} <= ${param}",
    Operator.CONTAINING: "{target} CONTAINS ${param}",
    Operator.HAS_ITEM: "${param} IN {target}",
    Operator.STARTING_WITH: "{target} STARTS WITH ${param}",
    Operator.IN: "{target} IN ${param}",
    Operator.IS_NULL: "{target} IS NULL",
}


def escape(name: str) -> str:
    """Quote a label, type or property name as a Cypher identifier."""
    return "`" + name.replace("`", "``") + "`"


def render_node_query(query: NodeQuery, count: bool = False) -> Tuple[str, Dict[str, Any]]:
    """
    Render a node query to Cypher text and its parameters.

    Args:
        query: Structured query to render
        count: Render ``count(DISTINCT n)`` instead of the node rows

    Returns:
        Tuple of the Cypher text and the parameter map
    """
    lines = [f"MATCH (n:{escape(query.label)})"]
    conditions: List[str] = []

    for index, predicate in enumerate(query.predicates):
        target = "n"
        if predicate.steps:
            pattern, target = _path_pattern(index, predicate.steps)
            lines.append(f"MATCH {pattern}")
        conditions.append(_condition(f"{target}.{escape(predicate.property)}", predicate))

    if conditions:
        lines.append("WHERE " + " AND ".join(conditions))

    parameters = dict(query.parameters)

    if count:
        lines.append("RETURN count(DISTINCT n) AS count")
        return "\n".join(lines), parameters

    lines.append("WITH DISTINCT n")
    orders = [
        f"n.{escape(order.property)}" + (" DESC" if order.direction is SortDirection.DESC else "")
        for order in query.orders
    ]
    # Identity keeps pages stable when sort keys tie
    orders.append("elementId(n)")
    lines.append("ORDER BY " + ", ".join(orders))

    if query.skip:
        lines.append("SKIP $skip")
        parameters["skip"] = query.skip
    if query.limit is not None:
        lines.append("LIMIT $limit")
        parameters["limit"] = query.limit

    lines.append(f"RETURN {NODE_PROJECTION}")
    return "\n".join(lines), parameters


def _path_pattern(index: int, steps: Tuple[PathStep, ...]) -> Tuple[str, str]:
    pattern = "(n)"
    alias = "n"
    for hop, step in enumerate(steps):
        alias = f"p{index}_{hop}"
        relationship = f"[:{escape(step.relationship_type)}]"
        if step.direction is Direction.OUTGOING:
            pattern += f"-{relationship}->"
        elif step.direction is Direction.INCOMING:
            pattern += f"<-{relationship}-"
        else:
            pattern += f"-{relationship}-"
        pattern += f"({alias}:{escape(step.label)})"
    return pattern, alias


def _condition(target: str, predicate: Predicate) -> str:
    return _COMPARISONS[predicate.operator].format(target=target, param=predicate.parameter)
