# src/ogmalchemy/query/derivation.py
"""
ogmalchemy query derivation.

Finder method names are parsed into structured node queries::

    find_by_name("Basil")                              name = $p0, first match
    find_all_by_flavour_and_date_added_greater_than(..) flavour = $p0 AND date_added > $p1
    find_all_by_category_name("Herb")                  (n)-[:HAS_CATEGORY]->(:Category {name: $p0})
    count_by_tags_containing("fresh")                  $p0 IN n.tags
    find_all_by_flavour_order_by_date_added_desc(..)   ... ORDER BY n.date_added DESC

Queries that cannot be expressed this way are declared explicitly with the
``query`` decorator, whose ``$0``, ``$1`` ... placeholders are bound to the
positional arguments of the call.
"""

from __future__ import annotations

import functools
import re
import types
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, Union, get_args, get_origin

import structlog
from pydantic import BaseModel, ConfigDict

from ogmalchemy.exceptions import QueryBindingError, UnsupportedDerivationError
from ogmalchemy.orm.converters import default_converter
from ogmalchemy.orm.metadata import MetadataRegistry, NodeMetadata, PropertyMetadata
from ogmalchemy.query.cypher import render_node_query
from ogmalchemy.query.model import NodeQuery, Operator, Order, PathStep, Predicate, SortDirection


logger = structlog.get_logger(__name__)


class QueryMode(str, Enum):
    FIND = "find"
    COUNT = "count"
    EXISTS = "exists"


_PREFIXES: Tuple[Tuple[str, QueryMode, bool], ...] = (
    ("find_all_by_", QueryMode.FIND, False),
    ("find_by_", QueryMode.FIND, True),
    ("count_by_", QueryMode.COUNT, False),
    ("exists_by_", QueryMode.EXISTS, False),
)

# Longest suffixes first so "greater_than_equal" wins over "greater_than"
_OPERATORS: Tuple[Tuple[Tuple[str, ...], Operator], ...] = (
    (("greater", "than", "equal"), Operator.GREATER_THAN_EQUAL),
    (("less", "than", "equal"), Operator.LESS_THAN_EQUAL),
    (("greater", "than"), Operator.GREATER_THAN),
    (("less", "than"), Operator.LESS_THAN),
    (("starting", "with"), Operator.STARTING_WITH),
    (("is", "null"), Operator.IS_NULL),
    (("containing",), Operator.CONTAINING),
    (("in",), Operator.IN),
    (("not",), Operator.NOT),
)

_ORDER_BY = "_order_by_"


def is_derivable(name: str) -> bool:
    """True when ``name`` starts with a finder prefix."""
    return any(name.startswith(prefix) and len(name) > len(prefix) for prefix, _, _ in _PREFIXES)


class DerivedQuery(BaseModel):
    """
    A query derived from a finder name.

    ``template`` holds no parameter values; ``bind`` fills them in from the
    positional arguments of a call, converted to wire values.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    method_name: str
    kind: Type[Any]
    mode: QueryMode
    single: bool = False
    template: NodeQuery
    cypher: str
    parameter_names: Tuple[str, ...] = ()
    converters: Tuple[Tuple[PropertyMetadata, Operator], ...] = ()

    @property
    def arity(self) -> int:
        return len(self.parameter_names)

    def bind(self, args: Sequence[Any]) -> NodeQuery:
        if len(args) != self.arity:
            raise QueryBindingError(
                f"{self.method_name}() takes {self.arity} argument(s) but {len(args)} were given"
            )
        parameters = {
            name: _wire_argument(prop, operator, value)
            for name, (prop, operator), value in zip(self.parameter_names, self.converters, args)
        }
        return self.template.with_parameters(parameters)

    async def execute(self, session: Any, args: Sequence[Any], depth: Optional[int] = None) -> Any:
        node_query = self.bind(args)
        if self.mode is QueryMode.COUNT:
            return await session.count(self.kind, node_query)
        if self.mode is QueryMode.EXISTS:
            return await session.count(self.kind, node_query) > 0
        entities = await session.find(self.kind, node_query, depth)
        if self.single:
            return entities[0] if entities else None
        return entities


class QueryDerivationEngine:
    """
    Turns finder names into ``DerivedQuery`` objects.

    Stateless: every call parses the name again. Callers cache the result.
    """

    def __init__(self, registry: MetadataRegistry):
        self.registry = registry

    def derive(self, kind: Type[Any], method_name: str) -> DerivedQuery:
        """
        Derive the query of a finder.

        Raises:
            UnsupportedDerivationError: The name uses an unknown prefix, an
                unknown field or operator, or ``or``
        """
        meta = self.registry.for_node(kind)
        prefix, mode, single = next(
            ((p, m, s) for p, m, s in _PREFIXES if method_name.startswith(p)),
            (None, None, False),
        )
        if prefix is None:
            raise UnsupportedDerivationError(
                method_name, "expected a find_by_, find_all_by_, count_by_ or exists_by_ prefix"
            )

        body, _, order_part = method_name[len(prefix):].partition(_ORDER_BY)
        if not body:
            raise UnsupportedDerivationError(method_name, "no predicate after the prefix")
        if order_part and mode is not QueryMode.FIND:
            raise UnsupportedDerivationError(method_name, "ordering is only supported by find queries")

        predicates: List[Predicate] = []
        converters: List[Tuple[PropertyMetadata, Operator]] = []
        names: List[str] = []
        for steps, prop, operator in self._predicates(meta, body.split("_"), method_name):
            parameter = None
            if operator.takes_argument:
                parameter = f"p{len(names)}"
                names.append(parameter)
                converters.append((prop, operator))
            predicates.append(Predicate(
                steps=steps, property=prop.property_name, operator=operator, parameter=parameter
            ))

        template = NodeQuery(
            label=meta.label,
            predicates=tuple(predicates),
            orders=self._orders(meta, order_part, method_name),
            limit=1 if single else None,
        )
        cypher, _ = render_node_query(template, count=mode is not QueryMode.FIND)
        derived = DerivedQuery(
            method_name=method_name,
            kind=kind,
            mode=mode,
            single=single,
            template=template,
            cypher=cypher,
            parameter_names=tuple(names),
            converters=tuple(converters),
        )
        logger.debug("query.derived", kind=kind.__name__, method=method_name, arity=derived.arity)
        return derived

    def _predicates(
        self,
        meta: NodeMetadata,
        tokens: List[str],
        method_name: str
    ) -> List[Tuple[Tuple[PathStep, ...], PropertyMetadata, Operator]]:
        predicates = []
        position = 0
        while True:
            steps, prop, position = self._path(meta, tokens, position, method_name)
            operator, position = _operator(tokens, position)
            if operator is Operator.CONTAINING and _is_list_field(prop, steps, meta, self.registry):
                operator = Operator.HAS_ITEM
            predicates.append((steps, prop, operator))

            if position == len(tokens):
                return predicates
            token = tokens[position]
            if token == "or":
                raise UnsupportedDerivationError(
                    method_name, "'or' is not supported; declare the query with @query"
                )
            if token != "and" or position + 1 == len(tokens):
                raise UnsupportedDerivationError(method_name, f"unexpected '{'_'.join(tokens[position:])}'")
            position += 1

    def _path(
        self,
        meta: NodeMetadata,
        tokens: List[str],
        position: int,
        method_name: str
    ) -> Tuple[Tuple[PathStep, ...], PropertyMetadata, int]:
        """Greedily match field names, following relationship fields into their node kind."""
        steps: List[PathStep] = []
        current = meta
        while True:
            for end in range(len(tokens), position, -1):
                name = "_".join(tokens[position:end])
                prop = current.property_for(name)
                if prop is not None:
                    return tuple(steps), prop, end
                field = current.relationship_for(name)
                if field is not None:
                    current = self.registry.for_node(field.node_kind)
                    steps.append(PathStep(
                        relationship_type=field.relationship_type,
                        direction=field.direction,
                        label=current.label,
                    ))
                    position = end
                    break
            else:
                raise UnsupportedDerivationError(
                    method_name,
                    f"{current.kind.__name__} has no field matching '{'_'.join(tokens[position:])}'",
                )
            if position == len(tokens):
                raise UnsupportedDerivationError(
                    method_name, f"relationship path must end with a property of {current.kind.__name__}"
                )

    @staticmethod
    def _orders(meta: NodeMetadata, order_part: str, method_name: str) -> Tuple[Order, ...]:
        if not order_part:
            return ()
        orders = []
        for clause in order_part.split("_and_"):
            direction = SortDirection.ASC
            for suffix, value in (("_desc", SortDirection.DESC), ("_asc", SortDirection.ASC)):
                if clause.endswith(suffix):
                    clause, direction = clause[:-len(suffix)], value
                    break
            prop = meta.property_for(clause)
            if prop is None:
                raise UnsupportedDerivationError(
                    method_name, f"cannot order by '{clause}': not a property of {meta.kind.__name__}"
                )
            orders.append(Order(property=prop.property_name, direction=direction))
        return tuple(orders)


def _operator(tokens: List[str], position: int) -> Tuple[Operator, int]:
    for suffix, operator in _OPERATORS:
        if tuple(tokens[position:position + len(suffix)]) == suffix:
            return operator, position + len(suffix)
    return Operator.EQUALS, position


def _is_list_field(
    prop: PropertyMetadata,
    steps: Tuple[PathStep, ...],
    meta: NodeMetadata,
    registry: MetadataRegistry
) -> bool:
    owner = registry.for_label(steps[-1].label) if steps else meta
    annotation = owner.kind.model_fields[prop.field_name].annotation
    if get_origin(annotation) in (Union, types.UnionType):
        annotation = next((arg for arg in get_args(annotation) if arg is not type(None)), annotation)
    return get_origin(annotation) in (list, List)


def _wire_argument(prop: PropertyMetadata, operator: Operator, value: Any) -> Any:
    if operator is Operator.IN:
        return [prop.to_wire(item) for item in value]
    if operator is Operator.HAS_ITEM:
        return prop.to_wire([value])[0]
    return prop.to_wire(value)


# =============================================================================
# EXPLICIT QUERIES
# =============================================================================

_PLACEHOLDER = re.compile(r"\$(\d+)(?!\w)")


class ExplicitQuery:
    """
    A Cypher query with positional ``$0``, ``$1`` ... placeholders.

    Args:
        cypher: Query text
        result: ``dict`` for raw rows or an entity class to map the first node of each row to
        depth: Load depth of mapped entities (session default when omitted)
    """

    def __init__(self, cypher: str, result: Type[Any] = dict, depth: Optional[int] = None):
        self.cypher = cypher
        self.result = result
        self.depth = depth
        indexes = {int(index) for index in _PLACEHOLDER.findall(cypher)}
        self.arity = max(indexes) + 1 if indexes else 0

    def bind(self, args: Sequence[Any]) -> Dict[str, Any]:
        if len(args) != self.arity:
            raise QueryBindingError(
                f"Query has {self.arity} placeholder(s) but {len(args)} argument(s) were given"
            )
        parameters = {}
        for index, value in enumerate(args):
            converter = default_converter(type(value))
            parameters[str(index)] = converter.to_persisted(value) if converter else value
        return parameters

    async def execute(self, session: Any, args: Sequence[Any]) -> List[Any]:
        return await session.query(self.cypher, self.bind(args), result=self.result, depth=self.depth)

    def __repr__(self) -> str:
        return f"ExplicitQuery({self.cypher!r}, arity={self.arity})"


def query(cypher: str, result: Type[Any] = dict, depth: Optional[int] = None) -> Callable:
    """
    Declare an explicit query on a repository method.

    Example:
        ```python
        class IngredientRepository(GraphRepository[Ingredient]):
            @query(
                "MATCH (i:Ingredient)-[:HAS_CATEGORY]->(c:Category) WHERE c.name = $0 RETURN i",
                result=Ingredient,
            )
            async def in_category(self, category_name: str) -> List[Ingredient]: ...
        ```
    """
    explicit = ExplicitQuery(cypher, result=result, depth=depth)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args: Any) -> List[Any]:
            return await explicit.execute(self.session, args)

        wrapper.query = explicit
        return wrapper

    return decorator
