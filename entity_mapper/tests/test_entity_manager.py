import datetime
import typing

import pytest

from entity_mapper.config import Settings
from entity_mapper.entity import (
    Entity,
    Identity,
    after_insert,
    after_remove,
    before_insert,
    before_remove,
    column,
    many_to_one,
    one_to_many,
)
from entity_mapper.entity_manager import EntityManager
from entity_mapper.errors import (
    ExecutionError,
    HookError,
    MissingIdentity,
    MissingPrimaryKey,
    NoActiveTransaction,
    SpecificationError,
    TypeNotRegistered,
)
from entity_mapper.registry import MetadataRegistry
from entity_mapper.repository import Repository


calls: typing.List[str] = []


class User(Entity):
    id: Identity[int] = column(generated=True)
    name: str
    email: str
    age: typing.Optional[int]
    active: bool = column(default=True)
    created_at: typing.Optional[datetime.datetime]


class Invoice(Entity):
    id: Identity[int] = column(generated=True)
    number: str

    @before_insert
    def validate(self) -> None:
        calls.append("validate")
        if not self.number:
            raise ValueError("number required")

    @before_insert
    async def reserve(self) -> None:
        calls.append("reserve")

    @after_insert
    def announce(self) -> None:
        calls.append("announce")
        if self.number == "explode":
            raise RuntimeError("mail server down")

    @before_remove
    def guard(self) -> None:
        calls.append("guard")

    @after_remove
    def forget(self) -> None:
        calls.append("forget")


class Author(Entity):
    id: Identity[int] = column(generated=True)
    name: str
    articles: typing.List["Article"] = one_to_many("Article", cascade=["insert", "update", "remove"])


class Article(Entity):
    id: Identity[int] = column(generated=True)
    title: str
    author_id: typing.Optional[int]
    author: typing.Optional[Author] = many_to_one(Author, cascade=["insert"])


class Team(Entity):
    id: Identity[int]
    players: typing.List["Player"] = one_to_many("Player", eager=True)


class Player(Entity):
    id: Identity[int]
    team_id: int


class LogLine(Entity):
    message: str


@pytest.fixture(autouse=True)
def reset_calls() -> None:
    calls.clear()


@pytest.fixture()
def registry() -> MetadataRegistry:
    registry = MetadataRegistry()
    registry.register(User, Invoice, Author, Article, Team, Player, LogLine)
    return registry


@pytest.fixture()
def manager(registry, adapter, settings) -> EntityManager:
    return EntityManager(registry, adapter, settings=settings)


@pytest.mark.asyncio
async def test_find_compiles_options_and_hydrates_rows(manager, adapter):
    adapter.returns(
        {"id": 1, "name": "Ann", "email": "ann@x.io", "age": "33", "active": 1, "created_at": "2024-01-15T10:30:00"},
        {"id": 2, "name": "Bob"},
    )

    users = await manager.find(User, where={"active": True}, order_by={"name": "asc"}, limit=10, offset=5)

    assert adapter.queries == [("SELECT * FROM users WHERE active = $1 ORDER BY name ASC LIMIT 10 OFFSET 5", [True])]
    assert users[0] == User(1, "Ann", "ann@x.io", 33, True, datetime.datetime(2024, 1, 15, 10, 30))
    assert users[1] == User(id=2, name="Bob", active=None)


@pytest.mark.asyncio
async def test_find_by_id_returns_the_same_instance(manager, adapter):
    adapter.returns({"id": 1, "name": "Ann"})
    adapter.returns({"id": 1, "name": "Renamed"})

    first = await manager.find_by_id(User, 1)
    second = await manager.find_by_id(User, 1)

    assert first is second
    assert second.name == "Ann"
    assert adapter.queries == [("SELECT * FROM users WHERE id = $1 LIMIT 1", [1])] * 2
    assert ("User", 1) in manager.identity_map


@pytest.mark.asyncio
async def test_absence_is_not_an_error(manager, adapter):
    assert await manager.find_one(User, where={"email": "nobody"}) is None
    assert await manager.find_by_id(User, 404) is None
    assert await manager.find_by_id(User, None) is None
    assert len(adapter.queries) == 2


@pytest.mark.asyncio
async def test_select_subset_leaves_other_attributes_empty(manager, adapter):
    adapter.returns({"id": 3, "email": "c@x.io"})

    [user] = await manager.find(User, select=["id", "email"])

    assert adapter.statements == ["SELECT id, email FROM users"]
    assert user.name is None
    assert user.email == "c@x.io"


@pytest.mark.asyncio
async def test_update_after_partial_select_keeps_unread_columns(manager, adapter):
    adapter.returns({"id": 3, "email": "c@x.io"})
    [user] = await manager.find(User, select=["id", "email"])
    user.name = "Cid"

    await manager.save(user)

    assert adapter.queries[-1] == ("UPDATE users SET name = $1, email = $2 WHERE id = $3", ["Cid", "c@x.io", 3])

    user.age = 40
    await manager.save(user)

    assert adapter.queries[-1] == (
        "UPDATE users SET name = $1, email = $2, age = $3 WHERE id = $4",
        ["Cid", "c@x.io", 40, 3],
    )


@pytest.mark.asyncio
async def test_partial_select_is_remembered_inside_transaction(manager, adapter):
    adapter.returns({"id": 3, "name": "Cid"})
    [user] = await manager.find(User, select=["id", "name"])

    async with manager.transaction() as uow:
        user.name = "Cyd"
        await uow.save(user)

    assert adapter.queries[-1] == ("UPDATE users SET name = $1 WHERE id = $2", ["Cyd", 3])


@pytest.mark.asyncio
async def test_insert_reads_generated_key_from_returning(manager, adapter):
    adapter.returns({"id": 7})
    user = User(name="a", email="b")

    saved = await manager.save(user)

    assert saved is user
    assert user.id == 7
    assert adapter.queries == [("INSERT INTO users (name, email, active) VALUES ($1, $2, $3) RETURNING id", ["a", "b", True])]
    assert manager.identity_map.get(User, 7) is user


@pytest.mark.asyncio
async def test_insert_falls_back_to_last_insert_id(manager, adapter):
    adapter.returns(last_insert_id=12)

    user = await manager.save(User(name="a", email="b", active=False))

    assert user.id == 12


@pytest.mark.asyncio
async def test_update_writes_every_plain_column(manager, adapter):
    user = User(5, "Ann", "ann@x.io", None, True)

    await manager.save(user)

    assert adapter.queries == [
        (
            "UPDATE users SET name = $1, email = $2, age = $3, active = $4, created_at = $5 WHERE id = $6",
            ["Ann", "ann@x.io", None, True, None, 5],
        )
    ]
    assert manager.identity_map.get(User, 5) is user


@pytest.mark.asyncio
async def test_update_without_key(manager, adapter):
    with pytest.raises(MissingIdentity):
        await manager.update(User(name="x"))

    assert adapter.queries == []


@pytest.mark.asyncio
async def test_remove_without_key_issues_no_statement(manager, adapter):
    with pytest.raises(SpecificationError):
        await manager.remove(Invoice(number="A-1"))

    assert adapter.queries == []
    assert calls == []


@pytest.mark.asyncio
async def test_remove_deletes_and_evicts(manager, adapter):
    adapter.returns({"id": 9, "number": "A-9"})
    invoice = await manager.find_by_id(Invoice, 9)

    await manager.remove(invoice)

    assert adapter.queries[-1] == ("DELETE FROM invoices WHERE id = $1", [9])
    assert manager.identity_map.get(Invoice, 9) is None
    assert calls == ["guard", "forget"]


@pytest.mark.asyncio
async def test_remove_by_id(manager, adapter):
    adapter.returns({"id": 9, "number": "A-9"})

    assert await manager.remove_by_id(Invoice, 9) is True
    assert await manager.remove_by_id(Invoice, 10) is False
    assert adapter.statements == [
        "SELECT * FROM invoices WHERE id = $1 LIMIT 1",
        "DELETE FROM invoices WHERE id = $1",
        "SELECT * FROM invoices WHERE id = $1 LIMIT 1",
    ]


@pytest.mark.asyncio
async def test_count_and_exists(manager, adapter):
    adapter.returns({"count": 3})
    adapter.returns({"count": 0})

    assert await manager.count(User, where={"active": True}) == 3
    assert await manager.exists(User, where={"age": {"$gt": 200}}) is False
    assert adapter.queries == [
        ("SELECT COUNT(*) AS count FROM users WHERE active = $1", [True]),
        ("SELECT COUNT(*) AS count FROM users WHERE age > $1", [200]),
    ]


@pytest.mark.asyncio
async def test_hooks_run_serially_in_declaration_order(manager, adapter):
    adapter.returns({"id": 1})

    await manager.save(Invoice(number="A-1"))

    assert calls == ["validate", "reserve", "announce"]
    assert len(adapter.queries) == 1


@pytest.mark.asyncio
async def test_before_hook_vetoes_the_statement(manager, adapter):
    with pytest.raises(HookError) as error:
        await manager.save(Invoice(number=""))

    assert error.value.hook == "validate"
    assert error.value.statement_applied is False
    assert isinstance(error.value.__cause__, ValueError)
    assert adapter.queries == []


@pytest.mark.asyncio
async def test_after_hook_failure_reports_applied_statement(manager, adapter):
    adapter.returns({"id": 1})

    with pytest.raises(HookError) as error:
        await manager.save(Invoice(number="explode"))

    assert error.value.statement_applied is True
    assert len(adapter.queries) == 1


@pytest.mark.asyncio
async def test_hooks_can_be_skipped(registry, adapter, manager):
    await manager.save(Invoice(number=""), hooks=False)
    quiet = EntityManager(registry, adapter, settings=Settings(run_hooks=False))
    await quiet.save(Invoice(number=""))

    assert calls == []
    assert len(adapter.queries) == 2


@pytest.mark.asyncio
async def test_adapter_failures_are_wrapped(manager, adapter):
    failure = RuntimeError("connection reset")
    adapter.fails(failure)

    with pytest.raises(ExecutionError) as error:
        await manager.find(User, where={"id": 1})

    assert error.value.sql == "SELECT * FROM users WHERE id = $1"
    assert error.value.parameters == [1]
    assert error.value.__cause__ is failure


@pytest.mark.asyncio
async def test_unregistered_type(manager, adapter):
    class Stranger(Entity):
        id: Identity[int]

    with pytest.raises(TypeNotRegistered):
        await manager.find(Stranger)
    with pytest.raises(TypeNotRegistered):
        await manager.save(Stranger(1))
    assert adapter.queries == []


@pytest.mark.asyncio
async def test_type_without_primary_key(manager, adapter):
    await manager.save(LogLine("started"))

    with pytest.raises(MissingPrimaryKey):
        await manager.find_by_id(LogLine, 1)
    with pytest.raises(MissingPrimaryKey):
        await manager.remove(LogLine("started"))
    assert adapter.queries == [("INSERT INTO log_lines (message) VALUES ($1)", ["started"])]


@pytest.mark.asyncio
async def test_save_cascades_into_children(manager, adapter):
    adapter.returns({"id": 1})
    adapter.returns({"id": 10})
    adapter.returns({"id": 11})
    author = Author(name="A", articles=[Article(title="t1"), Article(title="t2")])

    await manager.save(author)

    assert adapter.queries == [
        ("INSERT INTO authors (name) VALUES ($1) RETURNING id", ["A"]),
        ("INSERT INTO articles (title, author_id) VALUES ($1, $2) RETURNING id", ["t1", 1]),
        ("INSERT INTO articles (title, author_id) VALUES ($1, $2) RETURNING id", ["t2", 1]),
    ]
    assert [article.id for article in author.articles] == [10, 11]


@pytest.mark.asyncio
async def test_save_inserts_referenced_parent_first(manager, adapter):
    adapter.returns({"id": 5})
    adapter.returns({"id": 20})
    article = Article(title="t", author=Author(name="B"))

    await manager.save(article)

    assert adapter.queries == [
        ("INSERT INTO authors (name) VALUES ($1) RETURNING id", ["B"]),
        ("INSERT INTO articles (title, author_id) VALUES ($1, $2) RETURNING id", ["t", 5]),
    ]


@pytest.mark.asyncio
async def test_save_without_cascade_touches_only_the_entity(manager, adapter):
    adapter.returns({"id": 1})

    await manager.save(Author(name="A", articles=[Article(title="t1")]), cascade=False)

    assert adapter.statements == ["INSERT INTO authors (name) VALUES ($1) RETURNING id"]


@pytest.mark.asyncio
async def test_remove_cascades_into_loaded_children(manager, adapter):
    author = Author(1, "A", articles=[Article(10, "t1", 1)])

    await manager.remove(author)

    assert adapter.queries == [
        ("DELETE FROM articles WHERE id = $1", [10]),
        ("DELETE FROM authors WHERE id = $1", [1]),
    ]


@pytest.mark.asyncio
async def test_find_loads_eager_relations(manager, adapter):
    adapter.returns({"id": 1}, {"id": 2})
    adapter.returns({"id": 5, "team_id": 1})

    teams = await manager.find(Team)

    assert adapter.queries == [
        ("SELECT * FROM teams", []),
        ("SELECT * FROM players WHERE team_id IN ($1, $2)", [1, 2]),
    ]
    assert teams[0].players == [Player(5, 1)]
    assert teams[1].players == []


@pytest.mark.asyncio
async def test_eager_loading_can_be_disabled(manager, adapter):
    adapter.returns({"id": 1})

    [team] = await manager.find(Team, eager=False)

    assert len(adapter.queries) == 1
    assert team.players is None


@pytest.mark.asyncio
async def test_transaction_commits(manager, adapter):
    async with manager.transaction() as uow:
        await uow.count(User)
        transaction_id = uow.transaction_handle.id

    assert adapter.events == [("begin", transaction_id), ("execute", transaction_id), ("commit", transaction_id)]
    assert manager.transaction_handle is None


@pytest.mark.asyncio
async def test_transaction_rolls_back_and_reraises(manager, adapter):
    adapter.returns({"id": 1, "name": "Ann"})

    with pytest.raises(RuntimeError):
        async with manager.transaction() as uow:
            await uow.find_by_id(User, 1)
            raise RuntimeError("abort")

    assert [event for event, _ in adapter.events] == ["begin", "execute", "rollback"]
    assert len(uow.identity_map) == 0


@pytest.mark.asyncio
async def test_savepoints(manager, adapter):
    async with manager.transaction() as uow:
        async with uow.savepoint("sp1") as inner:
            assert inner.transaction_handle is uow.transaction_handle
            await inner.count(User)
        with pytest.raises(ValueError):
            async with uow.transaction():
                raise ValueError("nested failure")

    assert [event for event, _ in adapter.events] == [
        "begin",
        "savepoint",
        "execute",
        "release_savepoint",
        "savepoint",
        "rollback_to_savepoint",
        "commit",
    ]
    assert adapter.events[1] == ("savepoint", "sp1")


@pytest.mark.asyncio
async def test_savepoint_needs_a_transaction(manager):
    with pytest.raises(NoActiveTransaction):
        async with manager.savepoint():
            pass


def test_get_repository(manager):
    repository = manager.get_repository(User)

    assert isinstance(repository, Repository)
    assert repository.entity_cls is User
