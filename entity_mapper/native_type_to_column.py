import datetime
import decimal
import typing
import uuid

from entity_mapper.errors import MappingError
from entity_mapper.metadata import ColumnType


mapping = {
    int: ColumnType.NUMBER,
    float: ColumnType.NUMBER,
    decimal.Decimal: ColumnType.NUMBER,
    str: ColumnType.STRING,
    bool: ColumnType.BOOLEAN,
    datetime.datetime: ColumnType.DATE,
    datetime.date: ColumnType.DATE,
    dict: ColumnType.JSON,
    list: ColumnType.JSON,
    uuid.UUID: ColumnType.UUID,
    bytes: ColumnType.BLOB,
}


def convert(arg: typing.Any) -> ColumnType:
    arg = typing.get_origin(arg) or arg
    try:
        return mapping[arg]
    except (KeyError, TypeError):
        raise MappingError(f"Unsupported type - {arg}, declare it with column(type=...)")
