import copy
import typing

import attr

from entity_mapper.query.compiler import compile
from entity_mapper.query.predicates import Condition, and_, or_
from entity_mapper.query.statements import (
    CompiledQuery,
    Delete,
    Insert,
    Join,
    JoinKind,
    QuerySpecification,
    Update,
)


class QueryBuilder:
    """Generative builder, every call returns a new builder and leaves the receiver untouched.

    >>> QueryBuilder("users").where({"active": True}).order_by({"name": "ASC"}).limit(10).compile()
    CompiledQuery(sql='SELECT * FROM users WHERE active = $1 ORDER BY name ASC LIMIT 10', parameters=[True])
    """

    def __init__(self, table: str, alias: typing.Optional[str] = None) -> None:
        self._specification = QuerySpecification(table=table, alias=alias)

    def _evolve(self, **changes: typing.Any) -> "QueryBuilder":
        builder = copy.copy(self)
        builder._specification = attr.evolve(self._specification, **changes)
        return builder

    def select(self, *columns: str) -> "QueryBuilder":
        return self._evolve(select=columns)

    def where(self, condition: Condition) -> "QueryBuilder":
        return self._evolve(where=condition)

    def and_where(self, condition: Condition) -> "QueryBuilder":
        return self._evolve(where=and_(self._specification.where, condition))

    def or_where(self, condition: Condition) -> "QueryBuilder":
        return self._evolve(where=or_(self._specification.where, condition))

    def _join(self, kind: JoinKind, table: str, alias: typing.Optional[str], on: str) -> "QueryBuilder":
        joins = self._specification.joins + (Join(kind=kind, table=table, alias=alias, on=on),)
        return self._evolve(joins=joins)

    def join(self, table: str, alias: typing.Optional[str], on: str) -> "QueryBuilder":
        return self._join(JoinKind.INNER, table, alias, on)

    def left_join(self, table: str, alias: typing.Optional[str], on: str) -> "QueryBuilder":
        return self._join(JoinKind.LEFT, table, alias, on)

    def right_join(self, table: str, alias: typing.Optional[str], on: str) -> "QueryBuilder":
        return self._join(JoinKind.RIGHT, table, alias, on)

    def full_join(self, table: str, alias: typing.Optional[str], on: str) -> "QueryBuilder":
        return self._join(JoinKind.FULL, table, alias, on)

    def group_by(self, *columns: str) -> "QueryBuilder":
        return self._evolve(group_by=columns)

    def having(self, condition: Condition) -> "QueryBuilder":
        return self._evolve(having=condition)

    def order_by(self, order_by: typing.Mapping[str, str]) -> "QueryBuilder":
        return self._evolve(order_by=order_by)

    def limit(self, count: int) -> "QueryBuilder":
        return self._evolve(limit=count)

    def offset(self, count: int) -> "QueryBuilder":
        return self._evolve(offset=count)

    def insert(self, values: typing.Mapping[str, typing.Any], returning: typing.Iterable[str] = ()) -> Insert:
        return Insert(table=self._specification.table, values=values, returning=returning)

    def update(self, values: typing.Mapping[str, typing.Any]) -> Update:
        return Update(table=self._specification.table, values=values, where=self._specification.where)

    def delete(self) -> Delete:
        return Delete(table=self._specification.table, where=self._specification.where)

    def build(self) -> QuerySpecification:
        return self._specification

    def compile(self) -> CompiledQuery:
        return compile(self._specification)
