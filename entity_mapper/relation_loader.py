"""Batched relation loading.

Every requested relation is resolved with a single ``IN`` query over the keys collected from all parents,
whatever the number of parents, and the fetched rows are matched back to their parents by key.
"""
import asyncio
import logging
import typing

import attr

from entity_mapper.config import Settings, get_settings
from entity_mapper.errors import MappingError, SpecificationError
from entity_mapper.metadata import RelationDescriptor, RelationKind
from entity_mapper.query import Join, JoinKind, QuerySpecification
from entity_mapper.registry import MetadataRegistry
from entity_mapper.types import from_storage, to_storage

if typing.TYPE_CHECKING:
    from entity_mapper.entity_manager import EntityManager


logger = logging.getLogger(__name__)

OWNER_KEY = "__owner_key"
JOIN_TABLE_ALIAS = "jt"


@attr.s(auto_attribs=True, frozen=True)
class RelationLoadOptions:
    concurrent: bool = False


def _unique(values: typing.Iterable[typing.Any]) -> typing.List[typing.Any]:
    return [value for value in dict.fromkeys(values) if value is not None]


class RelationLoader:
    def __init__(
        self, entity_manager: "EntityManager", registry: MetadataRegistry, settings: typing.Optional[Settings] = None
    ) -> None:
        self._entity_manager = entity_manager
        self._registry = registry
        self._settings = settings or get_settings()

    def _prepare(
        self, parents: typing.List[typing.Any], relation_names: typing.Iterable[str]
    ) -> typing.Tuple[typing.Type, typing.List[RelationDescriptor]]:
        entity_cls = type(parents[0])
        mixed = sorted({type(parent).__name__ for parent in parents if type(parent) is not entity_cls})
        if mixed:
            raise SpecificationError(
                f"Relations can only be loaded for parents of one type, got {entity_cls.__name__} and {', '.join(mixed)}"
            )
        # unknown names fail here, before any query is issued
        names = list(dict.fromkeys(relation_names))
        return entity_cls, [self._registry.get_relation(entity_cls, name) for name in names]

    async def load_relations(
        self,
        parents: typing.List[typing.Any],
        relation_names: typing.Iterable[str],
        options: typing.Optional[RelationLoadOptions] = None,
    ) -> typing.List[typing.Any]:
        if not isinstance(parents, list):
            parents = list(parents)
        if not parents:
            return parents

        entity_cls, relations = self._prepare(parents, relation_names)
        await self._load(entity_cls, parents, relations, options)
        return parents

    async def load_relations_batched(
        self,
        parents: typing.List[typing.Any],
        relation_names: typing.Iterable[str],
        batch_size: typing.Optional[int] = None,
        options: typing.Optional[RelationLoadOptions] = None,
    ) -> typing.List[typing.Any]:
        batch_size = self._settings.relation_batch_size if batch_size is None else batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise SpecificationError(f"Batch size must be a positive integer, got {batch_size!r}")

        parents = list(parents)
        if not parents:
            return []

        entity_cls, relations = self._prepare(parents, relation_names)
        loaded: typing.List[typing.Any] = []
        for start in range(0, len(parents), batch_size):
            chunk = parents[start : start + batch_size]
            await self._load(entity_cls, chunk, relations, options)
            loaded.extend(chunk)
        return loaded

    async def _load(
        self,
        entity_cls: typing.Type,
        parents: typing.List[typing.Any],
        relations: typing.List[RelationDescriptor],
        options: typing.Optional[RelationLoadOptions],
    ) -> None:
        concurrent = options.concurrent if options is not None else self._settings.concurrent_relations
        if concurrent and len(relations) > 1:
            tasks = [asyncio.ensure_future(self._load_relation(entity_cls, parents, relation)) for relation in relations]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                # no query may keep running on this manager once the failure reaches the caller
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        else:
            for relation in relations:
                await self._load_relation(entity_cls, parents, relation)

    async def _load_relation(
        self, entity_cls: typing.Type, parents: typing.List[typing.Any], relation: RelationDescriptor
    ) -> None:
        logger.debug("Loading %s.%s for %d parent(s)", entity_cls.__name__, relation.property_name, len(parents))
        if relation.kind == RelationKind.MANY_TO_ONE:
            await self._load_many_to_one(entity_cls, parents, relation)
        elif relation.kind == RelationKind.MANY_TO_MANY:
            await self._load_many_to_many(entity_cls, parents, relation)
        else:
            await self._load_children(entity_cls, parents, relation)

    def _column(self, entity_cls: typing.Type, name: str, relation: RelationDescriptor):
        column = self._registry.get_column_by_name(entity_cls, name)
        if column is None:
            raise MappingError(
                f"Relation {relation.property_name} needs column {name!r} on {entity_cls.__name__}"
            )
        return column

    async def _load_many_to_one(
        self, entity_cls: typing.Type, parents: typing.List[typing.Any], relation: RelationDescriptor
    ) -> None:
        target_cls = self._registry.resolve_target(relation)
        target_key = self._registry.require_primary_key(target_cls)
        foreign_key = self._column(entity_cls, relation.join_column, relation)

        keys = _unique(getattr(parent, foreign_key.property_name) for parent in parents)
        by_key: typing.Dict[typing.Any, typing.Any] = {}
        if keys:
            where = {target_key.name: {"$in": [to_storage(key, target_key.type) for key in keys]}}
            for target in await self._entity_manager.find(target_cls, where=where, eager=False):
                by_key[getattr(target, target_key.property_name)] = target

        for parent in parents:
            setattr(parent, relation.property_name, by_key.get(getattr(parent, foreign_key.property_name)))

    async def _load_children(
        self, entity_cls: typing.Type, parents: typing.List[typing.Any], relation: RelationDescriptor
    ) -> None:
        target_cls = self._registry.resolve_target(relation)
        primary_key = self._registry.require_primary_key(entity_cls)
        foreign_key = self._column(target_cls, relation.join_column, relation)

        keys = _unique(getattr(parent, primary_key.property_name) for parent in parents)
        grouped: typing.Dict[typing.Any, typing.List[typing.Any]] = {}
        if keys:
            where = {foreign_key.name: {"$in": [to_storage(key, primary_key.type) for key in keys]}}
            for child in await self._entity_manager.find(target_cls, where=where, eager=False):
                grouped.setdefault(getattr(child, foreign_key.property_name), []).append(child)

        for parent in parents:
            children = grouped.get(getattr(parent, primary_key.property_name), [])
            if relation.kind == RelationKind.ONE_TO_MANY:
                setattr(parent, relation.property_name, children)
            else:
                setattr(parent, relation.property_name, children[0] if children else None)

    async def _load_many_to_many(
        self, entity_cls: typing.Type, parents: typing.List[typing.Any], relation: RelationDescriptor
    ) -> None:
        target_cls = self._registry.resolve_target(relation)
        target = self._registry.get_entity(target_cls)
        target_key = self._registry.require_primary_key(target_cls)
        primary_key = self._registry.require_primary_key(entity_cls)

        keys = _unique(getattr(parent, primary_key.property_name) for parent in parents)
        grouped: typing.Dict[typing.Any, typing.List[typing.Any]] = {}
        if keys:
            specification = QuerySpecification(
                table=target.table_name,
                select=(f"{target.table_name}.*", f"{JOIN_TABLE_ALIAS}.{relation.join_column} AS {OWNER_KEY}"),
                joins=[
                    Join(
                        JoinKind.INNER,
                        relation.join_table,
                        f"{JOIN_TABLE_ALIAS}.{relation.inverse_join_column} = {target.table_name}.{target_key.name}",
                        alias=JOIN_TABLE_ALIAS,
                    )
                ],
                where={
                    f"{JOIN_TABLE_ALIAS}.{relation.join_column}": {
                        "$in": [to_storage(key, primary_key.type) for key in keys]
                    }
                },
            )
            result = await self._entity_manager.execute(specification)
            for row in result.rows:
                owner = from_storage(row.get(OWNER_KEY), primary_key.type)
                grouped.setdefault(owner, []).append(self._entity_manager.hydrate(target_cls, row))

        for parent in parents:
            setattr(parent, relation.property_name, grouped.get(getattr(parent, primary_key.property_name), []))
