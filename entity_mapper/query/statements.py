import enum
import typing

import attr

from entity_mapper.errors import SpecificationError
from entity_mapper.query.predicates import Predicate, parse_predicate


class JoinKind(str, enum.Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


class SortDirection(str, enum.Enum):
    ASC = "ASC"
    DESC = "DESC"


def _direction(value: typing.Any) -> SortDirection:
    try:
        return SortDirection(str(getattr(value, "value", value)).upper())
    except ValueError:
        raise SpecificationError(f"Unsupported sort direction {value!r}")


def _order_by(value: typing.Any) -> typing.Tuple[typing.Tuple[str, SortDirection], ...]:
    if not value:
        return ()
    pairs = value.items() if isinstance(value, typing.Mapping) else value
    return tuple((column, _direction(direction)) for column, direction in pairs)


def _join_kind(value: typing.Any) -> JoinKind:
    try:
        return JoinKind(str(getattr(value, "value", value)).upper())
    except ValueError:
        raise SpecificationError(f"Unsupported join kind {value!r}")


def _column_values(value: typing.Any) -> typing.Tuple[typing.Tuple[str, typing.Any], ...]:
    if not value:
        return ()
    pairs = value.items() if isinstance(value, typing.Mapping) else value
    return tuple((column, item) for column, item in pairs)


def _non_negative(instance: typing.Any, attribute: attr.Attribute, value: typing.Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SpecificationError(f"{attribute.name.upper()} must be a non-negative integer, got {value!r}")


@attr.s(auto_attribs=True, frozen=True)
class Join:
    kind: JoinKind = attr.ib(converter=_join_kind)
    table: str
    on: str
    alias: typing.Optional[str] = None


@attr.s(auto_attribs=True, frozen=True)
class QuerySpecification:
    """Immutable description of a SELECT; ``where`` and ``having`` are parsed into predicate nodes."""

    table: str
    select: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    where: typing.Optional[Predicate] = attr.ib(default=None, converter=parse_predicate)
    order_by: typing.Tuple[typing.Tuple[str, SortDirection], ...] = attr.ib(default=(), converter=_order_by)
    group_by: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    having: typing.Optional[Predicate] = attr.ib(default=None, converter=parse_predicate)
    limit: typing.Optional[int] = attr.ib(default=None, validator=_non_negative)
    offset: typing.Optional[int] = attr.ib(default=None, validator=_non_negative)
    joins: typing.Tuple[Join, ...] = attr.ib(default=(), converter=tuple)
    alias: typing.Optional[str] = None


@attr.s(auto_attribs=True, frozen=True)
class Insert:
    table: str
    values: typing.Tuple[typing.Tuple[str, typing.Any], ...] = attr.ib(default=(), converter=_column_values)
    returning: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)


@attr.s(auto_attribs=True, frozen=True)
class Update:
    table: str
    values: typing.Tuple[typing.Tuple[str, typing.Any], ...] = attr.ib(default=(), converter=_column_values)
    where: typing.Optional[Predicate] = attr.ib(default=None, converter=parse_predicate)


@attr.s(auto_attribs=True, frozen=True)
class Delete:
    table: str
    where: typing.Optional[Predicate] = attr.ib(default=None, converter=parse_predicate)


Statement = typing.Union[QuerySpecification, Insert, Update, Delete]


@attr.s(auto_attribs=True, frozen=True)
class CompiledQuery:
    sql: str
    parameters: typing.List[typing.Any] = attr.Factory(list)

    def __iter__(self) -> typing.Iterator[typing.Any]:
        return iter((self.sql, self.parameters))
