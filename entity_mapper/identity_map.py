import typing

import attr


Key = typing.Tuple[str, typing.Any]


@attr.s(auto_attribs=True)
class IdentityMap:
    """One live object per ``(record type name, primary key)`` within a unit of work.

    ``unloaded`` remembers which properties a partial row did not carry, so that saving the object does not
    overwrite columns that were never read.
    """

    entities: typing.Dict[Key, typing.Any] = attr.Factory(dict)
    unloaded: typing.Dict[Key, typing.FrozenSet[str]] = attr.Factory(dict)

    @staticmethod
    def key(entity_cls: typing.Type, primary_key: typing.Any) -> Key:
        return entity_cls.__name__, primary_key

    def get(self, entity_cls: typing.Type, primary_key: typing.Any) -> typing.Optional[typing.Any]:
        return self.entities.get(self.key(entity_cls, primary_key))

    def add(self, entity: typing.Any, primary_key: typing.Any) -> None:
        self.entities[self.key(type(entity), primary_key)] = entity

    def remove(self, entity_cls: typing.Type, primary_key: typing.Any) -> None:
        key = self.key(entity_cls, primary_key)
        self.entities.pop(key, None)
        self.unloaded.pop(key, None)

    def mark_unloaded(
        self, entity_cls: typing.Type, primary_key: typing.Any, property_names: typing.Iterable[str]
    ) -> None:
        key = self.key(entity_cls, primary_key)
        names = frozenset(property_names)
        if names:
            self.unloaded[key] = names
        else:
            self.unloaded.pop(key, None)

    def unloaded_properties(self, entity_cls: typing.Type, primary_key: typing.Any) -> typing.FrozenSet[str]:
        return self.unloaded.get(self.key(entity_cls, primary_key), frozenset())

    def clear(self) -> None:
        self.entities.clear()
        self.unloaded.clear()

    def __len__(self) -> int:
        return len(self.entities)

    def __contains__(self, key: Key) -> bool:
        return key in self.entities
