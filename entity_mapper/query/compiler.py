"""Compiles statements into parameterised SQL.

Placeholders are numbered ``$1, $2, ...`` in the order they are emitted. Every call to :func:`compile`
owns its counter, so the same statement always produces the same text and parameter list.
"""
import typing
from functools import singledispatch

from entity_mapper.errors import SpecificationError, UnsafeStatement
from entity_mapper.query.predicates import BooleanOperator, Combinator, Comparison, Operator, Predicate
from entity_mapper.query.statements import CompiledQuery, Delete, Insert, QuerySpecification, Update


BINARY_OPERATORS = {
    Operator.EQ: "=",
    Operator.NE: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.LIKE: "LIKE",
    Operator.NOT_LIKE: "NOT LIKE",
}

KEYWORDS = {BooleanOperator.AND: " AND ", BooleanOperator.OR: " OR "}


class Parameters:
    def __init__(self) -> None:
        self.values: typing.List[typing.Any] = []

    def add(self, value: typing.Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def _compile_comparison(comparison: Comparison, parameters: Parameters) -> str:
    field = comparison.field
    operator = comparison.operator

    if operator in BINARY_OPERATORS:
        return f"{field} {BINARY_OPERATORS[operator]} {parameters.add(comparison.operand)}"
    if operator in (Operator.IN, Operator.NOT_IN):
        placeholders = ", ".join([parameters.add(value) for value in comparison.operand])
        keyword = "IN" if operator == Operator.IN else "NOT IN"
        return f"{field} {keyword} ({placeholders})"
    if operator in (Operator.BETWEEN, Operator.NOT_BETWEEN):
        low = parameters.add(comparison.operand[0])
        high = parameters.add(comparison.operand[1])
        keyword = "BETWEEN" if operator == Operator.BETWEEN else "NOT BETWEEN"
        return f"{field} {keyword} {low} AND {high}"
    if operator == Operator.IS_NULL:
        return f"{field} IS NULL"
    if operator == Operator.IS_NOT_NULL:
        return f"{field} IS NOT NULL"
    raise SpecificationError(f"Cannot compile operator {operator!r}")


def compile_predicate(predicate: Predicate, parameters: Parameters, nested: bool = False) -> str:
    if isinstance(predicate, Comparison):
        return _compile_comparison(predicate, parameters)

    parts = [compile_predicate(child, parameters, nested=True) for child in predicate.children]
    text = KEYWORDS[predicate.operator].join(parts)
    # top-level single conditions and implicit top-level conjunctions stay bare
    if predicate.implicit:
        wrap = nested and len(parts) > 1
    else:
        wrap = nested or len(parts) > 1
    return f"({text})" if wrap else text


@singledispatch
def compile(statement: typing.Any) -> CompiledQuery:
    raise SpecificationError(f"Cannot compile {type(statement).__name__}")


@compile.register(QuerySpecification)
def _(statement: QuerySpecification) -> CompiledQuery:
    parameters = Parameters()
    columns = ", ".join(statement.select) if statement.select else "*"
    clauses = [f"SELECT {columns} FROM {statement.table}"]

    if statement.alias:
        clauses.append(f"AS {statement.alias}")
    for join in statement.joins:
        target = f"{join.table} AS {join.alias}" if join.alias else join.table
        clauses.append(f"{join.kind.value} JOIN {target} ON {join.on}")
    if statement.where is not None:
        clauses.append(f"WHERE {compile_predicate(statement.where, parameters)}")
    if statement.group_by:
        clauses.append(f"GROUP BY {', '.join(statement.group_by)}")
    if statement.having is not None:
        clauses.append(f"HAVING {compile_predicate(statement.having, parameters)}")
    if statement.order_by:
        ordering = ", ".join(f"{column} {direction.value}" for column, direction in statement.order_by)
        clauses.append(f"ORDER BY {ordering}")
    if statement.limit is not None:
        clauses.append(f"LIMIT {statement.limit}")
    if statement.offset is not None:
        clauses.append(f"OFFSET {statement.offset}")

    return CompiledQuery(" ".join(clauses), parameters.values)


@compile.register(Insert)
def _(statement: Insert) -> CompiledQuery:
    parameters = Parameters()
    if statement.values:
        columns = ", ".join(column for column, _ in statement.values)
        placeholders = ", ".join([parameters.add(value) for _, value in statement.values])
        sql = f"INSERT INTO {statement.table} ({columns}) VALUES ({placeholders})"
    else:
        sql = f"INSERT INTO {statement.table} DEFAULT VALUES"
    if statement.returning:
        sql += f" RETURNING {', '.join(statement.returning)}"
    return CompiledQuery(sql, parameters.values)


@compile.register(Update)
def _(statement: Update) -> CompiledQuery:
    if not statement.values:
        raise SpecificationError(f"UPDATE of {statement.table} has no values to set")
    if statement.where is None:
        raise UnsafeStatement(f"UPDATE of {statement.table} without a predicate would touch every row")

    parameters = Parameters()
    assignments = ", ".join([f"{column} = {parameters.add(value)}" for column, value in statement.values])
    where = compile_predicate(statement.where, parameters)
    return CompiledQuery(f"UPDATE {statement.table} SET {assignments} WHERE {where}", parameters.values)


@compile.register(Delete)
def _(statement: Delete) -> CompiledQuery:
    if statement.where is None:
        raise UnsafeStatement(f"DELETE from {statement.table} without a predicate would remove every row")

    parameters = Parameters()
    where = compile_predicate(statement.where, parameters)
    return CompiledQuery(f"DELETE FROM {statement.table} WHERE {where}", parameters.values)
