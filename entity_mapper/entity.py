import abc
import inspect
import typing

import attr

from entity_mapper.errors import EntityWithMultipleIdentities
from entity_mapper.metadata import Cascade, ColumnType, HookType, RelationKind


COLUMN_OPTIONS = "entity_mapper.column"
RELATION_OPTIONS = "entity_mapper.relation"
HOOKS_ATTRIBUTE = "__entity_hooks__"

T = typing.TypeVar("T")


class Identity(typing.Generic[T]):
    @classmethod
    def is_identity(cls, field: attr.Attribute) -> bool:
        return getattr(field.type, "__origin__", None) == cls


@attr.s(auto_attribs=True, frozen=True)
class ColumnOptions:
    name: typing.Optional[str] = None
    type: typing.Optional[ColumnType] = None
    nullable: typing.Optional[bool] = None
    generated: bool = False
    unique: bool = False
    length: typing.Optional[int] = None
    precision: typing.Optional[int] = None
    scale: typing.Optional[int] = None
    default: typing.Any = None


@attr.s(auto_attribs=True, frozen=True)
class RelationOptions:
    kind: RelationKind
    target: typing.Any
    join_column: typing.Optional[str] = None
    join_table: typing.Optional[str] = None
    inverse_join_column: typing.Optional[str] = None
    eager: bool = False
    lazy: bool = True
    cascade: typing.FrozenSet[Cascade] = frozenset()


def column(
    name: typing.Optional[str] = None,
    type: typing.Union[ColumnType, str, None] = None,
    nullable: typing.Optional[bool] = None,
    generated: bool = False,
    unique: bool = False,
    length: typing.Optional[int] = None,
    precision: typing.Optional[int] = None,
    scale: typing.Optional[int] = None,
    default: typing.Any = None,
) -> typing.Any:
    options = ColumnOptions(
        name=name,
        type=ColumnType(type) if type is not None else None,
        nullable=nullable,
        generated=generated,
        unique=unique,
        length=length,
        precision=precision,
        scale=scale,
        default=default,
    )
    return attr.ib(default=None, metadata={COLUMN_OPTIONS: options})


def _relation(kind: RelationKind) -> typing.Callable[..., typing.Any]:
    def declare(
        target: typing.Any,
        join_column: typing.Optional[str] = None,
        join_table: typing.Optional[str] = None,
        inverse_join_column: typing.Optional[str] = None,
        eager: bool = False,
        lazy: bool = True,
        cascade: typing.Iterable[typing.Union[Cascade, str]] = (),
    ) -> typing.Any:
        options = RelationOptions(
            kind=kind,
            target=target,
            join_column=join_column,
            join_table=join_table,
            inverse_join_column=inverse_join_column,
            eager=eager,
            lazy=lazy,
            cascade=frozenset(Cascade(flag) for flag in cascade),
        )
        # object graphs may be cyclic, keep them out of eq and repr
        return attr.ib(default=None, eq=False, repr=False, metadata={RELATION_OPTIONS: options})

    declare.__name__ = kind.name.lower()
    return declare


one_to_one = _relation(RelationKind.ONE_TO_ONE)
one_to_many = _relation(RelationKind.ONE_TO_MANY)
many_to_one = _relation(RelationKind.MANY_TO_ONE)
many_to_many = _relation(RelationKind.MANY_TO_MANY)


def _hook(hook_type: HookType) -> typing.Callable[[typing.Callable], typing.Callable]:
    def decorator(method: typing.Callable) -> typing.Callable:
        hooks = getattr(method, HOOKS_ATTRIBUTE, ())
        setattr(method, HOOKS_ATTRIBUTE, hooks + (hook_type,))
        return method

    decorator.__name__ = hook_type.value
    return decorator


before_insert = _hook(HookType.BEFORE_INSERT)
after_insert = _hook(HookType.AFTER_INSERT)
before_update = _hook(HookType.BEFORE_UPDATE)
after_update = _hook(HookType.AFTER_UPDATE)
before_remove = _hook(HookType.BEFORE_REMOVE)
after_remove = _hook(HookType.AFTER_REMOVE)


def _is_class_var(annotation: typing.Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith(("ClassVar", "typing.ClassVar"))
    return getattr(annotation, "__origin__", None) is typing.ClassVar


class EntityMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "Entity" and not bases:
            return cls
        # hydration constructs records empty, so every attribute defaults to None
        for field_name, annotation in inspect.get_annotations(cls).items():
            if field_name not in cls.__dict__ and not _is_class_var(annotation):
                setattr(cls, field_name, attr.ib(default=None))
        attr_cls = attr.s(auto_attribs=True)(cls)
        identities = [field.name for field in attr.fields(attr_cls) if Identity.is_identity(field)]
        if len(identities) > 1:
            raise EntityWithMultipleIdentities(f"{name} declares more than one identity: {', '.join(identities)}")
        return attr_cls


class Entity(metaclass=EntityMeta):
    pass
