from entity_mapper.query.builder import QueryBuilder
from entity_mapper.query.compiler import compile
from entity_mapper.query.predicates import (
    BooleanOperator,
    Combinator,
    Comparison,
    Operator,
    Predicate,
    and_,
    or_,
    parse_predicate,
)
from entity_mapper.query.statements import (
    CompiledQuery,
    Delete,
    Insert,
    Join,
    JoinKind,
    QuerySpecification,
    SortDirection,
    Update,
)
