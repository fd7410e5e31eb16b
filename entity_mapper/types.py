import datetime
import decimal
import enum
import json
import typing
import uuid
from functools import singledispatch

from entity_mapper.metadata import ColumnType


@singledispatch
def _to_storage(argument: typing.Any) -> typing.Any:
    return argument


@_to_storage.register(uuid.UUID)
def _(argument: uuid.UUID) -> str:
    return str(argument)


@_to_storage.register(enum.Enum)
def _(argument: enum.Enum) -> typing.Any:
    return argument.value


def to_storage(argument: typing.Any, column_type: ColumnType) -> typing.Any:
    if argument is None:
        return None
    if column_type == ColumnType.JSON:
        if isinstance(argument, (bytes, bytearray)):
            argument = argument.decode()
        return json.dumps(argument, default=str)
    return _to_storage(argument)


def _to_datetime(argument: typing.Any) -> typing.Any:
    if isinstance(argument, (datetime.date, datetime.datetime)):
        return argument
    if isinstance(argument, (int, float)):
        return datetime.datetime.fromtimestamp(argument, tz=datetime.timezone.utc)
    return datetime.datetime.fromisoformat(str(argument))


def _to_json(argument: typing.Any) -> typing.Any:
    if isinstance(argument, (str, bytes, bytearray)):
        return json.loads(argument)
    return argument


def _to_number(argument: typing.Any) -> typing.Union[int, float, decimal.Decimal]:
    if isinstance(argument, bool):
        return int(argument)
    if isinstance(argument, (int, float, decimal.Decimal)):
        return argument
    try:
        return int(argument)
    except (TypeError, ValueError):
        return float(argument)


def _to_uuid(argument: typing.Any) -> uuid.UUID:
    if isinstance(argument, uuid.UUID):
        return argument
    if isinstance(argument, bytes) and len(argument) == 16:
        return uuid.UUID(bytes=argument)
    return uuid.UUID(str(argument))


def _to_bytes(argument: typing.Any) -> typing.Any:
    if isinstance(argument, (memoryview, bytearray)):
        return bytes(argument)
    return argument


mapping: typing.Dict[ColumnType, typing.Callable[[typing.Any], typing.Any]] = {
    ColumnType.DATE: _to_datetime,
    ColumnType.JSON: _to_json,
    ColumnType.BOOLEAN: bool,
    ColumnType.NUMBER: _to_number,
    ColumnType.UUID: _to_uuid,
    ColumnType.BLOB: _to_bytes,
}


def from_storage(argument: typing.Any, column_type: ColumnType) -> typing.Any:
    if argument is None:
        return None

    try:
        converter = mapping[column_type]
    except KeyError:
        return argument
    return converter(argument)
