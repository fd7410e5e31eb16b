import inspect
import logging
import typing

import attr
import inflection

from entity_mapper import native_type_to_column
from entity_mapper.abstract_entity_tree import AbstractEntityTree, EntityNode, FieldNode, RelationNode, Visitor, build
from entity_mapper.entity import HOOKS_ATTRIBUTE, Entity
from entity_mapper.errors import MappingError, MissingPrimaryKey, TypeNotRegistered, UnknownRelation
from entity_mapper.metadata import (
    ColumnDescriptor,
    EntityMetadata,
    HookDescriptor,
    HookType,
    RelationDescriptor,
    RelationKind,
)


logger = logging.getLogger(__name__)


def _collect_hooks(entity_cls: typing.Type) -> typing.Tuple[HookDescriptor, ...]:
    hooks: typing.Dict[typing.Tuple[str, HookType], HookDescriptor] = {}
    # base classes first, then declaration order within each class body
    for klass in reversed(entity_cls.__mro__):
        for method_name, member in vars(klass).items():
            for hook_type in getattr(member, HOOKS_ATTRIBUTE, ()):
                hooks.setdefault((method_name, hook_type), HookDescriptor(method_name, hook_type))
    return tuple(hooks.values())


class MetadataCollectingVisitor(Visitor):
    def __init__(self) -> None:
        self._entity: typing.Optional[EntityNode] = None
        self._columns: typing.List[ColumnDescriptor] = []
        self._relations: typing.List[RelationDescriptor] = []
        self._result: typing.Optional[EntityMetadata] = None

    @property
    def result(self) -> EntityMetadata:
        if self._result is None:
            raise MappingError("No entity visited")
        return self._result

    @property
    def _owner_name(self) -> str:
        return inflection.underscore(self._entity.type.__name__)

    def visit_entity(self, entity: EntityNode) -> None:
        self._entity = entity

    def leave_entity(self, entity: EntityNode) -> None:
        table_name = getattr(entity.type, "__tablename__", None) or inflection.pluralize(entity.name)
        self._result = EntityMetadata(
            name=entity.type.__name__,
            table_name=table_name,
            entity_cls=entity.type,
            columns=tuple(self._columns),
            relations=tuple(self._relations),
            hooks=_collect_hooks(entity.type),
        )

    def visit_field(self, field: FieldNode) -> None:
        options = field.options
        column_type = options.type or native_type_to_column.convert(field.type)
        nullable = options.nullable if options.nullable is not None else field.nullable
        self._columns.append(
            ColumnDescriptor(
                name=options.name or field.name,
                property_name=field.name,
                type=column_type,
                nullable=nullable and not field.is_identity,
                primary=field.is_identity,
                generated=options.generated,
                unique=options.unique or field.is_identity,
                length=options.length,
                precision=options.precision,
                scale=options.scale,
                default=options.default,
            )
        )

    def visit_relation(self, relation: RelationNode) -> None:
        options = relation.options
        join_column = options.join_column
        join_table = options.join_table
        inverse_join_column = options.inverse_join_column

        if options.kind == RelationKind.MANY_TO_ONE:
            join_column = join_column or f"{inflection.underscore(relation.name)}_id"
        elif options.kind in (RelationKind.ONE_TO_ONE, RelationKind.ONE_TO_MANY):
            join_column = join_column or f"{self._owner_name}_id"
        else:
            join_table = join_table or f"{self._owner_name}_{inflection.underscore(relation.name)}"
            join_column = join_column or f"{self._owner_name}_id"
            inverse_join_column = (
                inverse_join_column or f"{inflection.singularize(inflection.underscore(relation.name))}_id"
            )

        self._relations.append(
            RelationDescriptor(
                property_name=relation.name,
                kind=options.kind,
                target=options.target,
                join_column=join_column,
                join_table=join_table,
                inverse_join_column=inverse_join_column,
                eager=options.eager,
                lazy=options.lazy,
                cascade=options.cascade,
            )
        )


@attr.s(auto_attribs=True)
class MetadataRegistry:
    """Read-only source of mapping metadata once registration is done.

    Built explicitly at startup and passed to every EntityManager::

        registry = MetadataRegistry()
        registry.register(User, Post, Tag)
    """

    entities_to_aets: typing.Dict[typing.Type[Entity], AbstractEntityTree] = attr.Factory(dict)
    entities_metadata: typing.Dict[typing.Type[Entity], EntityMetadata] = attr.Factory(dict)

    def register(self, *entity_classes: typing.Type[Entity]) -> None:
        for entity_cls in entity_classes:
            if entity_cls in self.entities_metadata:
                continue
            aet = build(entity_cls)
            visitor = MetadataCollectingVisitor()
            visitor.traverse_from(aet.root)
            self.entities_to_aets[entity_cls] = aet
            self.entities_metadata[entity_cls] = visitor.result
            logger.debug("Registered %s as table %s", entity_cls.__name__, visitor.result.table_name)

    def __iter__(self) -> typing.Iterator[EntityMetadata]:
        return iter(self.entities_metadata.values())

    def is_registered(self, entity_cls: typing.Type) -> bool:
        return entity_cls in self.entities_metadata

    def get_entity(self, entity_cls: typing.Type) -> EntityMetadata:
        try:
            return self.entities_metadata[entity_cls]
        except (KeyError, TypeError):
            raise TypeNotRegistered(entity_cls)

    def get_columns(self, entity_cls: typing.Type) -> typing.Tuple[ColumnDescriptor, ...]:
        return self.get_entity(entity_cls).columns

    def get_column_by_name(self, entity_cls: typing.Type, name: str) -> typing.Optional[ColumnDescriptor]:
        return next((column for column in self.get_columns(entity_cls) if column.name == name), None)

    def get_primary_key(self, entity_cls: typing.Type) -> typing.Optional[ColumnDescriptor]:
        return self.get_entity(entity_cls).primary_key

    def require_primary_key(self, entity_cls: typing.Type) -> ColumnDescriptor:
        primary_key = self.get_primary_key(entity_cls)
        if primary_key is None:
            raise MissingPrimaryKey(entity_cls)
        return primary_key

    def get_relations(self, entity_cls: typing.Type) -> typing.Tuple[RelationDescriptor, ...]:
        return self.get_entity(entity_cls).relations

    def get_relation(self, entity_cls: typing.Type, name: str) -> RelationDescriptor:
        for relation in self.get_relations(entity_cls):
            if relation.property_name == name:
                return relation
        raise UnknownRelation(f"{entity_cls.__name__} has no relation named {name!r}")

    def get_hooks(
        self, entity_cls: typing.Type, hook_type: typing.Optional[HookType] = None
    ) -> typing.Tuple[HookDescriptor, ...]:
        hooks = self.get_entity(entity_cls).hooks
        if hook_type is None:
            return hooks
        return tuple(hook for hook in hooks if hook.type == hook_type)

    def get_entity_by_table_name(self, table_name: str) -> typing.Optional[EntityMetadata]:
        return next((metadata for metadata in self if metadata.table_name == table_name), None)

    def resolve_target(self, relation: RelationDescriptor) -> typing.Type[Entity]:
        target = relation.target
        if isinstance(target, str):
            for entity_cls in self.entities_metadata:
                if entity_cls.__name__ == target:
                    return entity_cls
            raise MappingError(f"Relation {relation.property_name} targets unregistered type {target!r}")
        if not inspect.isclass(target) and callable(target):
            target = target()
        if target not in self.entities_metadata:
            raise TypeNotRegistered(target)
        return target
