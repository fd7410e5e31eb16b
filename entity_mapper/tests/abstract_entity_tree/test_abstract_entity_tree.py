import typing

import pytest

from entity_mapper.entity import Entity, Identity, many_to_one
from entity_mapper.abstract_entity_tree import AbstractEntityTree, EntityNode, FieldNode, RelationNode


class Cave(Entity):
    id: Identity[int]


class Dragon(Entity):
    name: Identity[str]
    cave: typing.Optional[Cave] = many_to_one(Cave)
    age: int


@pytest.fixture()
def tree() -> AbstractEntityTree:
    return AbstractEntityTree(
        root=EntityNode(
            name="dragon",
            type=Dragon,
            children=[
                FieldNode(name="name", type=str, is_identity=True),
                RelationNode(name="cave", type=Cave, nullable=True, children=[FieldNode(name="id", type=int)]),
                FieldNode(name="age", type=int),
            ],
        )
    )


@pytest.fixture()
def dfs_names_order() -> typing.List[str]:
    return ["dragon", "name", "cave", "id", "age"]


def test_iterates_dfs(tree: AbstractEntityTree, dfs_names_order: typing.List[str]) -> None:
    names = [node.name for node in tree]

    assert names == dfs_names_order
