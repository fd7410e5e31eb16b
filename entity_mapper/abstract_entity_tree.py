import abc
import inspect
import typing
from collections import deque

import attr
import inflection

from entity_mapper.entity import COLUMN_OPTIONS, RELATION_OPTIONS, ColumnOptions, Entity, Identity, RelationOptions
from entity_mapper.errors import MappingError


def _is_generic(field_type: typing.Type) -> bool:
    return typing.get_origin(field_type) is not None


def _get_wrapped_type(wrapped_type: typing.Type) -> typing.Type:
    return next(arg for arg in typing.get_args(wrapped_type) if arg is not type(None))


def _is_field_nullable(field_type: typing.Type) -> bool:
    args = typing.get_args(field_type)
    return len(args) == 2 and type(None) in args


def _is_identity(field_type: typing.Type) -> bool:
    return typing.get_origin(field_type) == Identity


def _is_json_container(field_type: typing.Type) -> bool:
    return typing.get_origin(field_type) in (list, dict)


class Visitor:
    def traverse_from(self, node: "Node") -> None:
        node.accept(self)
        for child in node.children:
            self.traverse_from(child)
        node.farewell(self)

    def visit_field(self, field: "FieldNode") -> None:
        pass

    def leave_field(self, field: "FieldNode") -> None:
        pass

    def visit_entity(self, entity: "EntityNode") -> None:
        pass

    def leave_entity(self, entity: "EntityNode") -> None:
        pass

    def visit_relation(self, relation: "RelationNode") -> None:
        pass

    def leave_relation(self, relation: "RelationNode") -> None:
        pass


class NodeMeta(type):
    def __new__(mcs, name: str, bases: tuple, namespace: dict) -> typing.Type:
        cls = super().__new__(mcs, name, bases, namespace)
        if inspect.isabstract(cls):
            return cls
        return attr.s(auto_attribs=True)(cls)


class Node(metaclass=NodeMeta):
    name: str
    type: typing.Any
    nullable: bool = False
    children: typing.List["Node"] = attr.Factory(list)

    @abc.abstractmethod
    def accept(self, visitor: Visitor) -> None:
        pass

    @abc.abstractmethod
    def farewell(self, visitor: Visitor) -> None:
        pass


class FieldNode(Node):
    is_identity: bool = False
    options: ColumnOptions = attr.Factory(ColumnOptions)

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_field(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_field(self)


class RelationNode(Node):
    options: typing.Optional[RelationOptions] = None

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_relation(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_relation(self)


class EntityNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_entity(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_entity(self)


@attr.s(auto_attribs=True)
class AbstractEntityTree:
    root: EntityNode

    def __iter__(self) -> typing.Generator[Node, None, None]:
        def iterate_dfs() -> typing.Generator[Node, None, None]:
            nodes_left: typing.Deque[Node] = deque([self.root])

            while nodes_left:
                current = nodes_left.pop()
                yield current
                nodes_left.extend(current.children[::-1])

        return iterate_dfs()


def build(root: typing.Type[Entity]) -> AbstractEntityTree:
    if not (inspect.isclass(root) and issubclass(root, Entity)):
        raise MappingError(f"{root!r} is not an Entity subclass")

    children: typing.List[Node] = []
    for field in attr.fields(root):
        relation_options = field.metadata.get(RELATION_OPTIONS)
        if relation_options is not None:
            # targets are not recursed into, graphs may be cyclic
            children.append(RelationNode(field.name, field.type, True, [], relation_options))
            continue

        field_type = field.type
        field_nullable = False
        is_identity = False

        if _is_generic(field_type):
            if _is_identity(field_type):
                field_type = _get_wrapped_type(field_type)
                is_identity = True
            elif _is_field_nullable(field_type):
                field_type = _get_wrapped_type(field_type)
                field_nullable = True
            elif not _is_json_container(field_type):
                raise MappingError(f"Unhandled Generic type - {field_type}")

        options = field.metadata.get(COLUMN_OPTIONS, ColumnOptions())
        children.append(FieldNode(field.name, field_type, field_nullable, [], is_identity, options))

    return AbstractEntityTree(EntityNode(inflection.underscore(root.__name__), root, False, children))
