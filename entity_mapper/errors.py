import typing


class EntityMapperError(Exception):
    pass


class SpecificationError(EntityMapperError):
    """Raised for malformed requests, always before any statement reaches the database."""


class UnknownOperator(SpecificationError):
    pass


class InvalidArity(SpecificationError):
    pass


class EmptyInList(InvalidArity):
    pass


class UnsafeStatement(SpecificationError):
    pass


class TypeNotRegistered(SpecificationError):
    def __init__(self, entity_cls: typing.Type) -> None:
        super().__init__(f"Type {getattr(entity_cls, '__name__', entity_cls)} not registered")
        self.entity_cls = entity_cls


class MissingPrimaryKey(SpecificationError):
    def __init__(self, entity_cls: typing.Type) -> None:
        super().__init__(f"Type {entity_cls.__name__} has no primary key")
        self.entity_cls = entity_cls


class MissingIdentity(SpecificationError):
    pass


class UnknownRelation(SpecificationError):
    pass


class NoActiveTransaction(SpecificationError):
    pass


class MappingError(EntityMapperError):
    pass


class EntityWithMultipleIdentities(TypeError):
    pass


class EntityNotFound(EntityMapperError):
    pass


class ExecutionError(EntityMapperError):
    def __init__(self, sql: str, parameters: typing.Sequence[typing.Any], original: BaseException) -> None:
        super().__init__(f"{original} (while executing {sql!r} with {len(parameters)} parameter(s))")
        self.sql = sql
        self.parameters = list(parameters)
        self.original = original


class HookError(EntityMapperError):
    def __init__(self, hook: str, phase: str, entity: typing.Any, original: BaseException) -> None:
        super().__init__(f"Hook {type(entity).__name__}.{hook} failed during {phase}: {original}")
        self.hook = hook
        self.phase = phase
        self.entity = entity
        self.original = original

    @property
    def statement_applied(self) -> bool:
        # after-phase hooks run once the statement already took effect
        return self.phase.startswith("after")
