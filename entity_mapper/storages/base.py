import abc
import typing
import uuid

import attr


Row = typing.Dict[str, typing.Any]


@attr.s(auto_attribs=True)
class QueryResult:
    rows: typing.List[Row] = attr.Factory(list)
    row_count: int = 0
    last_insert_id: typing.Any = None


@attr.s(auto_attribs=True, eq=False)
class Transaction:
    id: str = attr.Factory(lambda: f"tx_{uuid.uuid4().hex[:12]}")
    isolation_level: typing.Optional[str] = None
    savepoints: typing.List[str] = attr.Factory(list)
    active: bool = True
    # adapter specific state, e.g. the connection the transaction is pinned to
    context: typing.Any = attr.ib(default=None, repr=False)


class Adapter(abc.ABC):
    """Executes compiled SQL. Connection lifecycle, pooling, retries and timeouts all live here."""

    @abc.abstractmethod
    async def execute(
        self, sql: str, parameters: typing.Sequence[typing.Any] = (), transaction: typing.Optional[Transaction] = None
    ) -> QueryResult:
        pass

    @abc.abstractmethod
    async def begin(self) -> Transaction:
        pass

    @abc.abstractmethod
    async def commit(self, transaction: Transaction) -> None:
        pass

    @abc.abstractmethod
    async def rollback(self, transaction: Transaction) -> None:
        pass

    @abc.abstractmethod
    async def savepoint(self, transaction: Transaction, name: str) -> None:
        pass

    @abc.abstractmethod
    async def rollback_to_savepoint(self, transaction: Transaction, name: str) -> None:
        pass

    @abc.abstractmethod
    async def release_savepoint(self, transaction: Transaction, name: str) -> None:
        pass

    async def close(self) -> None:
        pass
