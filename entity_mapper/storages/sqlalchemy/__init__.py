import logging
import re
import typing

import attr
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction, create_async_engine

from entity_mapper.config import Settings
from entity_mapper.storages.base import Adapter, QueryResult, Transaction


logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\$(\d+)")


def to_bind_parameters(
    sql: str, parameters: typing.Sequence[typing.Any]
) -> typing.Tuple[str, typing.Dict[str, typing.Any]]:
    """Rewrite ``$n`` placeholders into SQLAlchemy named binds (``:p1``, ``:p2``, ...)."""
    bound: typing.Dict[str, typing.Any] = {}

    def replace(match: re.Match) -> str:
        index = int(match.group(1))
        if not 1 <= index <= len(parameters):
            raise ValueError(f"Placeholder ${index} has no parameter, {len(parameters)} given")
        name = f"p{index}"
        bound[name] = parameters[index - 1]
        return f":{name}"

    return PLACEHOLDER.sub(replace, sql), bound


@attr.s(auto_attribs=True)
class _PinnedConnection:
    connection: AsyncConnection
    savepoints: typing.Dict[str, AsyncTransaction] = attr.Factory(dict)


class SqlAlchemyAdapter(Adapter):
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlAlchemyAdapter":
        if not settings.database_url:
            raise ValueError("database_url is not configured")
        return cls(create_async_engine(settings.database_url, echo=settings.echo))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute(
        self, sql: str, parameters: typing.Sequence[typing.Any] = (), transaction: typing.Optional[Transaction] = None
    ) -> QueryResult:
        statement, bound = to_bind_parameters(sql, parameters)
        if transaction is not None:
            return await self._run(self._pinned(transaction).connection, statement, bound)

        async with self._engine.begin() as connection:
            return await self._run(connection, statement, bound)

    async def _run(self, connection: AsyncConnection, statement: str, bound: typing.Dict[str, typing.Any]) -> QueryResult:
        result = await connection.execute(text(statement), bound)
        if result.returns_rows:
            rows = [dict(row._mapping) for row in result]
            return QueryResult(rows=rows, row_count=len(rows), last_insert_id=getattr(result, "lastrowid", None))
        return QueryResult(rows=[], row_count=result.rowcount, last_insert_id=getattr(result, "lastrowid", None))

    def _pinned(self, transaction: Transaction) -> _PinnedConnection:
        if not transaction.active or not isinstance(transaction.context, _PinnedConnection):
            raise ValueError(f"Transaction {transaction.id} is not active on this adapter")
        return transaction.context

    async def begin(self) -> Transaction:
        connection = await self._engine.connect()
        await connection.begin()
        transaction = Transaction(context=_PinnedConnection(connection))
        logger.debug("Began transaction %s", transaction.id)
        return transaction

    async def commit(self, transaction: Transaction) -> None:
        pinned = self._pinned(transaction)
        try:
            await pinned.connection.commit()
        finally:
            transaction.active = False
            await pinned.connection.close()
        logger.debug("Committed transaction %s", transaction.id)

    async def rollback(self, transaction: Transaction) -> None:
        pinned = self._pinned(transaction)
        try:
            await pinned.connection.rollback()
        finally:
            transaction.active = False
            await pinned.connection.close()
        logger.debug("Rolled back transaction %s", transaction.id)

    async def savepoint(self, transaction: Transaction, name: str) -> None:
        pinned = self._pinned(transaction)
        pinned.savepoints[name] = await pinned.connection.begin_nested()
        transaction.savepoints.append(name)

    async def rollback_to_savepoint(self, transaction: Transaction, name: str) -> None:
        await self._pop_savepoint(transaction, name).rollback()

    async def release_savepoint(self, transaction: Transaction, name: str) -> None:
        await self._pop_savepoint(transaction, name).commit()

    def _pop_savepoint(self, transaction: Transaction, name: str) -> AsyncTransaction:
        pinned = self._pinned(transaction)
        try:
            nested = pinned.savepoints.pop(name)
        except KeyError:
            raise ValueError(f"Unknown savepoint {name!r} in transaction {transaction.id}")
        transaction.savepoints.remove(name)
        return nested

    async def close(self) -> None:
        await self._engine.dispose()
