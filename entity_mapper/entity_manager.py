import inspect
import logging
import typing
import uuid
from contextlib import asynccontextmanager

from entity_mapper.config import Settings, get_settings
from entity_mapper.errors import (
    ExecutionError,
    HookError,
    MappingError,
    MissingIdentity,
    NoActiveTransaction,
)
from entity_mapper.identity_map import IdentityMap
from entity_mapper.metadata import Cascade, ColumnDescriptor, EntityMetadata, HookType, RelationDescriptor, RelationKind
from entity_mapper.query import CompiledQuery, Delete, Insert, QuerySpecification, Update, compile
from entity_mapper.registry import MetadataRegistry
from entity_mapper.relation_loader import RelationLoader, RelationLoadOptions
from entity_mapper.repository import Repository
from entity_mapper.storages.base import Adapter, QueryResult, Row, Transaction
from entity_mapper.types import from_storage, to_storage


logger = logging.getLogger(__name__)

EntityType = typing.TypeVar("EntityType")

CHILD_RELATIONS = (RelationKind.ONE_TO_ONE, RelationKind.ONE_TO_MANY)


def _loaded(value: typing.Any) -> typing.List[typing.Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class EntityManager:
    """Unit of work over one adapter and, optionally, one transaction.

    Objects fetched through the same manager are tracked in its identity map, so asking twice for the same
    primary key yields the same instance. Managers are not meant to be shared between concurrent tasks, open
    one per unit of work instead::

        async with manager.transaction() as uow:
            user = await uow.find_by_id(User, 1)
            user.name = "Jane"
            await uow.save(user)
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        adapter: Adapter,
        transaction: typing.Optional[Transaction] = None,
        settings: typing.Optional[Settings] = None,
    ) -> None:
        self._registry = registry
        self._adapter = adapter
        self._transaction = transaction
        self._settings = settings or get_settings()
        self._identity_map = IdentityMap()
        self._relation_loader = RelationLoader(self, registry, self._settings)

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    @property
    def adapter(self) -> Adapter:
        return self._adapter

    @property
    def transaction_handle(self) -> typing.Optional[Transaction]:
        return self._transaction

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def identity_map(self) -> IdentityMap:
        return self._identity_map

    def clear(self) -> None:
        self._identity_map.clear()

    async def execute(self, query: typing.Any) -> QueryResult:
        if not isinstance(query, CompiledQuery):
            query = compile(query)
        logger.debug("Executing %s (%d parameter(s))", query.sql, len(query.parameters))
        try:
            return await self._adapter.execute(query.sql, query.parameters, self._transaction)
        except Exception as error:
            raise ExecutionError(query.sql, query.parameters, error) from error

    def hydrate(self, entity_cls: typing.Type[EntityType], row: Row) -> EntityType:
        metadata = self._registry.get_entity(entity_cls)
        primary_key = metadata.primary_key
        key = None
        if primary_key is not None:
            key = from_storage(row.get(primary_key.name), primary_key.type)
            existing = self._identity_map.get(entity_cls, key) if key is not None else None
            if existing is not None:
                return existing

        entity = entity_cls()
        missing = []
        for column in metadata.columns:
            if column.name in row:
                setattr(entity, column.property_name, from_storage(row[column.name], column.type))
            else:
                missing.append(column.property_name)
        if key is not None:
            self._identity_map.add(entity, key)
            self._identity_map.mark_unloaded(entity_cls, key, missing)
        return entity

    async def find(
        self,
        entity_cls: typing.Type[EntityType],
        where: typing.Any = None,
        order_by: typing.Any = None,
        limit: typing.Optional[int] = None,
        offset: typing.Optional[int] = None,
        select: typing.Optional[typing.Iterable[str]] = None,
        relations: typing.Optional[typing.Iterable[str]] = None,
        eager: bool = True,
    ) -> typing.List[EntityType]:
        metadata = self._registry.get_entity(entity_cls)
        specification = QuerySpecification(
            table=metadata.table_name,
            select=select or (),
            where=where,
            order_by=order_by,
            limit=limit,
            offset=offset,
        )
        result = await self.execute(compile(specification))
        entities = [self.hydrate(entity_cls, row) for row in result.rows]

        names = list(relations or ())
        if eager:
            names.extend(relation.property_name for relation in metadata.relations if relation.eager)
        if entities and names:
            await self._relation_loader.load_relations(entities, names)
        return entities

    async def find_one(
        self,
        entity_cls: typing.Type[EntityType],
        where: typing.Any = None,
        order_by: typing.Any = None,
        relations: typing.Optional[typing.Iterable[str]] = None,
    ) -> typing.Optional[EntityType]:
        entities = await self.find(entity_cls, where=where, order_by=order_by, limit=1, relations=relations)
        return entities[0] if entities else None

    async def find_by_id(
        self,
        entity_cls: typing.Type[EntityType],
        identity: typing.Any,
        relations: typing.Optional[typing.Iterable[str]] = None,
    ) -> typing.Optional[EntityType]:
        primary_key = self._registry.require_primary_key(entity_cls)
        if identity is None:
            return None
        return await self.find_one(
            entity_cls, where={primary_key.name: to_storage(identity, primary_key.type)}, relations=relations
        )

    async def count(self, entity_cls: typing.Type, where: typing.Any = None) -> int:
        metadata = self._registry.get_entity(entity_cls)
        specification = QuerySpecification(table=metadata.table_name, select=("COUNT(*) AS count",), where=where)
        result = await self.execute(compile(specification))
        if not result.rows:
            return 0
        row = result.rows[0]
        return int(row["count"] if "count" in row else next(iter(row.values())))

    async def exists(self, entity_cls: typing.Type, where: typing.Any = None) -> bool:
        return await self.count(entity_cls, where) > 0

    async def save(self, entity: EntityType, hooks: typing.Optional[bool] = None, cascade: bool = True) -> EntityType:
        primary_key = self._registry.get_primary_key(type(entity))
        if primary_key is None or getattr(entity, primary_key.property_name) is None:
            return await self.insert(entity, hooks=hooks, cascade=cascade)
        return await self.update(entity, hooks=hooks, cascade=cascade)

    async def insert(self, entity: EntityType, hooks: typing.Optional[bool] = None, cascade: bool = True) -> EntityType:
        metadata = self._registry.get_entity(type(entity))
        run_hooks = self._hooks_enabled(hooks)
        primary_key = metadata.primary_key

        if run_hooks:
            await self._run_hooks(entity, HookType.BEFORE_INSERT)
        if cascade:
            await self._save_referenced(entity, metadata, hooks)

        values = []
        for column in metadata.columns:
            if column.generated:
                continue
            value = getattr(entity, column.property_name)
            if value is None and column.default is not None:
                value = column.default() if callable(column.default) else column.default
                setattr(entity, column.property_name, value)
            if value is not None:
                values.append((column.name, to_storage(value, column.type)))

        returning = (primary_key.name,) if primary_key is not None and primary_key.generated else ()
        result = await self.execute(Insert(metadata.table_name, values, returning))

        if returning:
            generated = result.rows[0].get(primary_key.name) if result.rows else None
            if generated is None:
                generated = result.last_insert_id
            if generated is not None:
                setattr(entity, primary_key.property_name, from_storage(generated, primary_key.type))
        if primary_key is not None and getattr(entity, primary_key.property_name) is not None:
            self._identity_map.add(entity, getattr(entity, primary_key.property_name))

        if run_hooks:
            await self._run_hooks(entity, HookType.AFTER_INSERT)
        if cascade:
            await self._save_children(entity, metadata, hooks)
        return entity

    async def update(self, entity: EntityType, hooks: typing.Optional[bool] = None, cascade: bool = True) -> EntityType:
        metadata = self._registry.get_entity(type(entity))
        primary_key = self._registry.require_primary_key(type(entity))
        key = getattr(entity, primary_key.property_name)
        if key is None:
            raise MissingIdentity(f"Cannot update {metadata.name} without key")
        run_hooks = self._hooks_enabled(hooks)

        if run_hooks:
            await self._run_hooks(entity, HookType.BEFORE_UPDATE)
        if cascade:
            await self._save_referenced(entity, metadata, hooks)

        # Columns a partial select never read stay out of SET until the caller assigns them.
        unloaded = self._identity_map.unloaded_properties(type(entity), key)
        values = []
        for column in metadata.columns:
            if column.primary or column.generated:
                continue
            value = getattr(entity, column.property_name)
            if value is None and column.property_name in unloaded:
                continue
            values.append((column.name, to_storage(value, column.type)))
        if values:
            where = {primary_key.name: to_storage(key, primary_key.type)}
            await self.execute(Update(metadata.table_name, values, where))
        self._identity_map.add(entity, key)
        self._identity_map.mark_unloaded(
            type(entity), key, [name for name in unloaded if getattr(entity, name) is None]
        )

        if run_hooks:
            await self._run_hooks(entity, HookType.AFTER_UPDATE)
        if cascade:
            await self._save_children(entity, metadata, hooks)
        return entity

    async def remove(self, entity: typing.Any, hooks: typing.Optional[bool] = None, cascade: bool = True) -> None:
        entity_cls = type(entity)
        metadata = self._registry.get_entity(entity_cls)
        primary_key = self._registry.require_primary_key(entity_cls)
        key = getattr(entity, primary_key.property_name)
        if key is None:
            raise MissingIdentity(f"Cannot remove {metadata.name} without key")
        run_hooks = self._hooks_enabled(hooks)

        if run_hooks:
            await self._run_hooks(entity, HookType.BEFORE_REMOVE)
        if cascade:
            for relation in self._child_relations(metadata, Cascade.REMOVE):
                for child in _loaded(getattr(entity, relation.property_name)):
                    child_key = self._registry.get_primary_key(type(child))
                    if child_key is not None and getattr(child, child_key.property_name) is not None:
                        await self.remove(child, hooks=hooks, cascade=cascade)

        await self.execute(Delete(metadata.table_name, {primary_key.name: to_storage(key, primary_key.type)}))
        self._identity_map.remove(entity_cls, key)

        if run_hooks:
            await self._run_hooks(entity, HookType.AFTER_REMOVE)

    async def remove_by_id(
        self, entity_cls: typing.Type, identity: typing.Any, hooks: typing.Optional[bool] = None
    ) -> bool:
        entity = await self.find_by_id(entity_cls, identity)
        if entity is None:
            return False
        await self.remove(entity, hooks=hooks)
        return True

    async def load_relations(
        self,
        parents: typing.List[EntityType],
        relation_names: typing.Iterable[str],
        options: typing.Optional[RelationLoadOptions] = None,
    ) -> typing.List[EntityType]:
        return await self._relation_loader.load_relations(parents, relation_names, options)

    async def load_relations_batched(
        self,
        parents: typing.List[EntityType],
        relation_names: typing.Iterable[str],
        batch_size: typing.Optional[int] = None,
        options: typing.Optional[RelationLoadOptions] = None,
    ) -> typing.List[EntityType]:
        return await self._relation_loader.load_relations_batched(parents, relation_names, batch_size, options)

    def get_repository(self, entity_cls: typing.Type[EntityType]) -> Repository:
        self._registry.get_entity(entity_cls)
        return Repository(self, entity_cls)

    @asynccontextmanager
    async def transaction(self) -> typing.AsyncIterator["EntityManager"]:
        if self._transaction is not None:
            async with self.savepoint() as manager:
                yield manager
            return

        transaction = await self._adapter.begin()
        logger.debug("Transaction %s started", transaction.id)
        manager = self._child(transaction)
        try:
            yield manager
        except BaseException:
            await self._adapter.rollback(transaction)
            raise
        else:
            await self._adapter.commit(transaction)
        finally:
            manager.clear()

    @asynccontextmanager
    async def savepoint(self, name: typing.Optional[str] = None) -> typing.AsyncIterator["EntityManager"]:
        if self._transaction is None:
            raise NoActiveTransaction("Savepoints need an active transaction")

        name = name or f"sp_{uuid.uuid4().hex[:8]}"
        await self._adapter.savepoint(self._transaction, name)
        manager = self._child(self._transaction)
        try:
            yield manager
        except BaseException:
            await self._adapter.rollback_to_savepoint(self._transaction, name)
            raise
        else:
            await self._adapter.release_savepoint(self._transaction, name)
        finally:
            manager.clear()

    def _child(self, transaction: Transaction) -> "EntityManager":
        manager = EntityManager(self._registry, self._adapter, transaction, self._settings)
        manager.identity_map.unloaded.update(self._identity_map.unloaded)
        return manager

    def _hooks_enabled(self, hooks: typing.Optional[bool]) -> bool:
        return self._settings.run_hooks if hooks is None else hooks

    async def _run_hooks(self, entity: typing.Any, hook_type: HookType) -> None:
        for hook in self._registry.get_hooks(type(entity), hook_type):
            try:
                outcome = getattr(entity, hook.method)()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as error:
                raise HookError(hook.method, hook_type.value, entity, error) from error

    def _child_relations(self, metadata: EntityMetadata, flag: Cascade) -> typing.List[RelationDescriptor]:
        return [relation for relation in metadata.relations if relation.kind in CHILD_RELATIONS and flag in relation.cascade]

    def _join_column(self, entity_cls: typing.Type, relation: RelationDescriptor) -> ColumnDescriptor:
        column = self._registry.get_column_by_name(entity_cls, relation.join_column)
        if column is None:
            raise MappingError(
                f"{entity_cls.__name__} needs a column named {relation.join_column!r} for relation "
                f"{relation.property_name}"
            )
        return column

    def _cascade_flag(self, entity: typing.Any) -> Cascade:
        primary_key = self._registry.get_primary_key(type(entity))
        if primary_key is None or getattr(entity, primary_key.property_name) is None:
            return Cascade.INSERT
        return Cascade.UPDATE

    async def _save_referenced(self, entity: typing.Any, metadata: EntityMetadata, hooks: typing.Optional[bool]) -> None:
        for relation in metadata.relations:
            if relation.kind != RelationKind.MANY_TO_ONE or not relation.cascade:
                continue
            target = getattr(entity, relation.property_name)
            if target is None:
                continue
            if self._cascade_flag(target) in relation.cascade:
                await self.save(target, hooks=hooks)
            target_key = self._registry.require_primary_key(type(target))
            column = self._join_column(type(entity), relation)
            setattr(entity, column.property_name, getattr(target, target_key.property_name))

    async def _save_children(self, entity: typing.Any, metadata: EntityMetadata, hooks: typing.Optional[bool]) -> None:
        key = None
        for relation in metadata.relations:
            if relation.kind not in CHILD_RELATIONS or not relation.cascade:
                continue
            for child in _loaded(getattr(entity, relation.property_name)):
                if self._cascade_flag(child) not in relation.cascade:
                    continue
                if key is None:
                    primary_key = self._registry.require_primary_key(type(entity))
                    key = getattr(entity, primary_key.property_name)
                column = self._join_column(type(child), relation)
                setattr(child, column.property_name, key)
                await self.save(child, hooks=hooks)
