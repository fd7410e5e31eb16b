import enum
import typing

import attr


class ColumnType(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"
    UUID = "uuid"
    TEXT = "text"
    BLOB = "blob"


class RelationKind(str, enum.Enum):
    ONE_TO_ONE = "OneToOne"
    ONE_TO_MANY = "OneToMany"
    MANY_TO_ONE = "ManyToOne"
    MANY_TO_MANY = "ManyToMany"


class HookType(str, enum.Enum):
    BEFORE_INSERT = "before_insert"
    AFTER_INSERT = "after_insert"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_REMOVE = "before_remove"
    AFTER_REMOVE = "after_remove"


class Cascade(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


@attr.s(auto_attribs=True, frozen=True)
class ColumnDescriptor:
    name: str
    property_name: str
    type: ColumnType
    nullable: bool = True
    primary: bool = False
    generated: bool = False
    unique: bool = False
    length: typing.Optional[int] = None
    precision: typing.Optional[int] = None
    scale: typing.Optional[int] = None
    default: typing.Any = None


@attr.s(auto_attribs=True, frozen=True)
class RelationDescriptor:
    property_name: str
    kind: RelationKind
    # class, class name or zero-argument callable, resolved by the registry
    target: typing.Any
    join_column: typing.Optional[str] = None
    join_table: typing.Optional[str] = None
    inverse_join_column: typing.Optional[str] = None
    eager: bool = False
    lazy: bool = True
    cascade: typing.FrozenSet[Cascade] = frozenset()

    @property
    def is_collection(self) -> bool:
        return self.kind in (RelationKind.ONE_TO_MANY, RelationKind.MANY_TO_MANY)


@attr.s(auto_attribs=True, frozen=True)
class HookDescriptor:
    method: str
    type: HookType


@attr.s(auto_attribs=True, frozen=True)
class EntityMetadata:
    name: str
    table_name: str
    entity_cls: typing.Type
    columns: typing.Tuple[ColumnDescriptor, ...] = ()
    relations: typing.Tuple[RelationDescriptor, ...] = ()
    hooks: typing.Tuple[HookDescriptor, ...] = ()

    @property
    def primary_key(self) -> typing.Optional[ColumnDescriptor]:
        return next((column for column in self.columns if column.primary), None)
