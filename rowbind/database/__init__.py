"""Public exports for the connection and schema layer."""

from .connection import Connection, ResultShape, connect
from .schema import SchemaCache
from .types import ColumnDescriptor, ColumnType, ForeignKey

__all__ = [
    "ColumnDescriptor",
    "ColumnType",
    "Connection",
    "ForeignKey",
    "ResultShape",
    "SchemaCache",
    "connect",
]
