import typing
from collections import deque

import pytest
from _pytest.config.argparsing import Parser

from entity_mapper.config import Settings
from entity_mapper.storages.base import Adapter, QueryResult, Row, Transaction


def pytest_addoption(parser: Parser) -> None:
    parser.addoption("--sqlalchemy-url", action="store", default=None)


class RecordingAdapter(Adapter):
    """Adapter double recording every statement and answering from canned results.

    Results registered with ``on`` are picked by a SQL fragment, everything else is served from the queue
    filled by ``returns``/``fails``. An empty queue answers with an empty result.
    """

    def __init__(self) -> None:
        self.queries: typing.List[typing.Tuple[str, typing.List[typing.Any]]] = []
        self.events: typing.List[typing.Tuple[str, ...]] = []
        self._queue: typing.Deque[typing.Union[QueryResult, Exception]] = deque()
        self._by_fragment: typing.List[typing.Tuple[str, QueryResult]] = []

    @property
    def statements(self) -> typing.List[str]:
        return [sql for sql, _ in self.queries]

    def returns(self, *rows: Row, last_insert_id: typing.Any = None, row_count: typing.Optional[int] = None) -> None:
        count = len(rows) if row_count is None else row_count
        self._queue.append(QueryResult(rows=list(rows), row_count=count, last_insert_id=last_insert_id))

    def fails(self, error: Exception) -> None:
        self._queue.append(error)

    def on(self, fragment: str, *rows: Row) -> None:
        self._by_fragment.append((fragment, QueryResult(rows=list(rows), row_count=len(rows))))

    async def execute(
        self, sql: str, parameters: typing.Sequence[typing.Any] = (), transaction: typing.Optional[Transaction] = None
    ) -> QueryResult:
        self.queries.append((sql, list(parameters)))
        self.events.append(("execute", transaction.id if transaction else None))
        for fragment, result in self._by_fragment:
            if fragment in sql:
                return result
        if not self._queue:
            return QueryResult()
        result = self._queue.popleft()
        if isinstance(result, Exception):
            raise result
        return result

    async def begin(self) -> Transaction:
        transaction = Transaction()
        self.events.append(("begin", transaction.id))
        return transaction

    async def commit(self, transaction: Transaction) -> None:
        transaction.active = False
        self.events.append(("commit", transaction.id))

    async def rollback(self, transaction: Transaction) -> None:
        transaction.active = False
        self.events.append(("rollback", transaction.id))

    async def savepoint(self, transaction: Transaction, name: str) -> None:
        transaction.savepoints.append(name)
        self.events.append(("savepoint", name))

    async def rollback_to_savepoint(self, transaction: Transaction, name: str) -> None:
        transaction.savepoints.remove(name)
        self.events.append(("rollback_to_savepoint", name))

    async def release_savepoint(self, transaction: Transaction, name: str) -> None:
        transaction.savepoints.remove(name)
        self.events.append(("release_savepoint", name))


@pytest.fixture()
def adapter() -> RecordingAdapter:
    return RecordingAdapter()


@pytest.fixture()
def settings() -> Settings:
    return Settings(database_url=None, relation_batch_size=100, run_hooks=True, concurrent_relations=False)
