from entity_mapper.config import Settings, get_settings
from entity_mapper.entity import (
    Entity,
    Identity,
    after_insert,
    after_remove,
    after_update,
    before_insert,
    before_remove,
    before_update,
    column,
    many_to_many,
    many_to_one,
    one_to_many,
    one_to_one,
)
from entity_mapper.entity_manager import EntityManager
from entity_mapper.errors import (
    EntityMapperError,
    EntityNotFound,
    ExecutionError,
    HookError,
    MappingError,
    SpecificationError,
)
from entity_mapper.identity_map import IdentityMap
from entity_mapper.metadata import Cascade, ColumnType, HookType, RelationKind
from entity_mapper.registry import MetadataRegistry
from entity_mapper.relation_loader import RelationLoader, RelationLoadOptions
from entity_mapper.repository import Page, ReadOnlyRepository, Repository
