"""Predicate trees.

A criteria mapping such as ``{"$or": [{"name": "x"}, {"age": {"$gt": 18}}]}`` is parsed into a closed
set of nodes: :class:`Comparison` for a single field test and :class:`Combinator` for ``$and``/``$or``.
Several keys in one mapping form an *implicit* conjunction, which is rendered without parentheses at
the top level.
"""
import enum
import typing

import attr

from entity_mapper.errors import EmptyInList, InvalidArity, SpecificationError, UnknownOperator


class Operator(str, enum.Enum):
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NOT_IN = "$notIn"
    LIKE = "$like"
    NOT_LIKE = "$notLike"
    BETWEEN = "$between"
    NOT_BETWEEN = "$notBetween"
    IS_NULL = "$isNull"
    IS_NOT_NULL = "$isNotNull"


class BooleanOperator(str, enum.Enum):
    AND = "$and"
    OR = "$or"


LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
RANGE_OPERATORS = frozenset({Operator.BETWEEN, Operator.NOT_BETWEEN})
NULL_OPERATORS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})


@attr.s(auto_attribs=True, frozen=True)
class Comparison:
    field: str
    operator: Operator = Operator.EQ
    operand: typing.Any = None


@attr.s(auto_attribs=True, frozen=True)
class Combinator:
    operator: BooleanOperator
    children: typing.Tuple["Predicate", ...]
    implicit: bool = False


Predicate = typing.Union[Comparison, Combinator]
Condition = typing.Union[Predicate, typing.Mapping[str, typing.Any], None]


def _is_operator_mapping(value: typing.Any) -> bool:
    return isinstance(value, typing.Mapping) and any(str(key).startswith("$") for key in value)


def _comparison(field: str, operator_key: str, operand: typing.Any) -> Comparison:
    try:
        operator = Operator(operator_key)
    except ValueError:
        raise UnknownOperator(f"Unknown operator {operator_key!r} for field {field!r}")

    if operator in LIST_OPERATORS:
        if isinstance(operand, (str, bytes)) or not isinstance(operand, typing.Iterable):
            raise InvalidArity(f"{operator.value} on {field!r} expects a list of values")
        operand = tuple(operand)
        if not operand:
            raise EmptyInList(f"{operator.value} on {field!r} received an empty list")
    elif operator in RANGE_OPERATORS:
        if isinstance(operand, (str, bytes)) or not isinstance(operand, typing.Sequence) or len(operand) != 2:
            raise InvalidArity(f"{operator.value} on {field!r} expects exactly two bounds")
        operand = tuple(operand)
    elif operator in NULL_OPERATORS:
        # {"$isNull": False} asks for IS NOT NULL and vice versa
        if not operand and operand is not None:
            operator = Operator.IS_NOT_NULL if operator == Operator.IS_NULL else Operator.IS_NULL
        operand = None

    return Comparison(field, operator, operand)


def _parse_field(field: str, value: typing.Any) -> typing.List[Comparison]:
    if not _is_operator_mapping(value):
        return [Comparison(field, Operator.EQ, value)]

    mixed = [key for key in value if not str(key).startswith("$")]
    if mixed:
        raise SpecificationError(f"Field {field!r} mixes operators with plain keys: {mixed}")
    return [_comparison(field, operator_key, operand) for operator_key, operand in value.items()]


def _parse_combinator(key: str, value: typing.Any) -> Combinator:
    operator = BooleanOperator(key)
    if isinstance(value, (str, bytes, typing.Mapping)) or not isinstance(value, typing.Sequence):
        raise InvalidArity(f"{key} expects a list of conditions")
    if not value:
        raise InvalidArity(f"{key} received an empty list of conditions")

    children = []
    for condition in value:
        child = parse_predicate(condition)
        if child is None:
            raise SpecificationError(f"{key} contains an empty condition")
        children.append(child)
    return Combinator(operator, tuple(children))


def parse_predicate(condition: Condition) -> typing.Optional[Predicate]:
    """Turn a criteria mapping into a predicate node, ``None`` when there is nothing to filter on."""
    if condition is None or isinstance(condition, (Comparison, Combinator)):
        return condition
    if not isinstance(condition, typing.Mapping):
        raise SpecificationError(f"Conditions must be mappings, got {type(condition).__name__}")

    nodes: typing.List[Predicate] = []
    for key, value in condition.items():
        if key in (BooleanOperator.AND.value, BooleanOperator.OR.value):
            nodes.append(_parse_combinator(key, value))
        elif str(key).startswith("$"):
            raise UnknownOperator(f"Unknown operator {key!r}")
        else:
            nodes.extend(_parse_field(key, value))

    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return Combinator(BooleanOperator.AND, tuple(nodes), implicit=True)


def and_(*conditions: Condition) -> typing.Optional[Predicate]:
    children = tuple(node for node in map(parse_predicate, conditions) if node is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return Combinator(BooleanOperator.AND, children)


def or_(*conditions: Condition) -> typing.Optional[Predicate]:
    children = tuple(node for node in map(parse_predicate, conditions) if node is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return Combinator(BooleanOperator.OR, children)
