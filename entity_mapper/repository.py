import math
import typing

import attr

from entity_mapper.errors import EntityNotFound, MappingError, SpecificationError
from entity_mapper.query import SortDirection

if typing.TYPE_CHECKING:
    from entity_mapper.entity_manager import EntityManager


EntityType = typing.TypeVar("EntityType")
IdentityType = typing.TypeVar("IdentityType")


@attr.s(auto_attribs=True)
class Page(typing.Generic[EntityType]):
    items: typing.List[EntityType]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ReadOnlyRepository(typing.Generic[EntityType, IdentityType]):
    """Record-type bound facade over an :class:`EntityManager`.

    The record type is taken from the generic arguments of the subclass::

        class UserRepo(Repository[User, int]):
            async def adults(self) -> typing.List[User]:
                return await self.find(where={"age": {"$gte": 18}})

        users = UserRepo(entity_manager)
    """

    entity_cls: typing.ClassVar[typing.Optional[typing.Type]] = None

    def __init_subclass__(cls, **kwargs: typing.Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", ()):
            origin = typing.get_origin(base)
            if not isinstance(origin, type) or not issubclass(origin, ReadOnlyRepository):
                continue
            args = typing.get_args(base)
            if args and not isinstance(args[0], typing.TypeVar):
                cls.entity_cls = args[0]

    def __init__(self, entity_manager: "EntityManager", entity_cls: typing.Optional[typing.Type] = None) -> None:
        entity_cls = entity_cls or type(self).entity_cls
        if entity_cls is None:
            raise MappingError(f"{type(self).__name__} is not bound to a record type")
        entity_manager.registry.get_entity(entity_cls)
        self.entity_manager = entity_manager
        self.entity_cls = entity_cls

    async def get(self, identity: IdentityType) -> EntityType:
        entity = await self.find_by_id(identity)
        if entity is None:
            raise EntityNotFound(f"{self.entity_cls.__name__} with id {identity!r} not found")
        return entity

    async def find(self, **options: typing.Any) -> typing.List[EntityType]:
        return await self.entity_manager.find(self.entity_cls, **options)

    async def find_one(
        self,
        where: typing.Any = None,
        order_by: typing.Any = None,
        relations: typing.Optional[typing.Iterable[str]] = None,
    ) -> typing.Optional[EntityType]:
        return await self.entity_manager.find_one(self.entity_cls, where=where, order_by=order_by, relations=relations)

    async def find_by_id(
        self, identity: IdentityType, relations: typing.Optional[typing.Iterable[str]] = None
    ) -> typing.Optional[EntityType]:
        return await self.entity_manager.find_by_id(self.entity_cls, identity, relations=relations)

    async def find_by(self, field: str, value: typing.Any) -> typing.List[EntityType]:
        return await self.find(where={field: value})

    async def find_one_by(self, field: str, value: typing.Any) -> typing.Optional[EntityType]:
        return await self.find_one(where={field: value})

    async def find_where_in(self, field: str, values: typing.Iterable[typing.Any]) -> typing.List[EntityType]:
        return await self.find(where={field: {"$in": list(values)}})

    async def find_where_like(self, field: str, pattern: str) -> typing.List[EntityType]:
        return await self.find(where={field: {"$like": pattern}})

    async def find_where_between(self, field: str, start: typing.Any, end: typing.Any) -> typing.List[EntityType]:
        return await self.find(where={field: {"$between": [start, end]}})

    async def find_where_null(self, field: str) -> typing.List[EntityType]:
        return await self.find(where={field: {"$isNull": True}})

    async def find_where_not_null(self, field: str) -> typing.List[EntityType]:
        return await self.find(where={field: {"$isNotNull": True}})

    async def find_ordered_by(
        self, field: str, direction: typing.Union[SortDirection, str] = SortDirection.ASC
    ) -> typing.List[EntityType]:
        return await self.find(order_by={field: direction})

    async def find_first(self, limit: int, **options: typing.Any) -> typing.List[EntityType]:
        return await self.find(limit=limit, **options)

    async def find_last(self, limit: int, **options: typing.Any) -> typing.List[EntityType]:
        primary_key = self.entity_manager.registry.require_primary_key(self.entity_cls)
        options["order_by"] = {primary_key.name: SortDirection.DESC}
        return await self.find(limit=limit, **options)

    async def find_with_relations(self, relations: typing.Iterable[str], **options: typing.Any) -> typing.List[EntityType]:
        return await self.find(relations=list(relations), **options)

    async def paginate(
        self, page: int = 1, limit: int = 10, where: typing.Any = None, order_by: typing.Any = None
    ) -> Page[EntityType]:
        if page < 1 or limit < 1:
            raise SpecificationError(f"Page and limit start at 1, got page={page} limit={limit}")
        # one unit of work runs one statement at a time, so no gather here
        total = await self.count(where)
        items = await self.find(where=where, order_by=order_by, limit=limit, offset=(page - 1) * limit)
        return Page(items=items, total=total, page=page, limit=limit)

    async def count(self, where: typing.Any = None) -> int:
        return await self.entity_manager.count(self.entity_cls, where)

    async def exists(self, where: typing.Any = None) -> bool:
        return await self.entity_manager.exists(self.entity_cls, where)


class Repository(ReadOnlyRepository[EntityType, IdentityType]):
    def create(self, **values: typing.Any) -> EntityType:
        return self.entity_cls(**values)

    async def save(self, entity: EntityType, hooks: typing.Optional[bool] = None) -> EntityType:
        return await self.entity_manager.save(entity, hooks=hooks)

    async def save_many(
        self, entities: typing.Iterable[EntityType], hooks: typing.Optional[bool] = None
    ) -> typing.List[EntityType]:
        return [await self.save(entity, hooks=hooks) for entity in entities]

    async def update(
        self, identity: IdentityType, values: typing.Mapping[str, typing.Any], hooks: typing.Optional[bool] = None
    ) -> EntityType:
        entity = await self.get(identity)
        fields = attr.fields_dict(self.entity_cls)
        for name, value in values.items():
            if name not in fields:
                raise SpecificationError(f"{self.entity_cls.__name__} has no attribute {name!r}")
            setattr(entity, name, value)
        return await self.save(entity, hooks=hooks)

    async def remove(self, entity: EntityType, hooks: typing.Optional[bool] = None) -> None:
        await self.entity_manager.remove(entity, hooks=hooks)

    async def remove_by_id(self, identity: IdentityType, hooks: typing.Optional[bool] = None) -> bool:
        return await self.entity_manager.remove_by_id(self.entity_cls, identity, hooks=hooks)
