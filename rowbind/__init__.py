"""Record mapping and query building over SQLite."""

from .context import DatabaseContext, open_context
from .orm import (
    ActiveRecord,
    Children,
    Collection,
    Expression,
    Field,
    FieldType,
    Page,
    Parent,
    Query,
    raw,
)

__version__ = "0.1.0"

__all__ = [
    "ActiveRecord",
    "Children",
    "Collection",
    "DatabaseContext",
    "Expression",
    "Field",
    "FieldType",
    "Page",
    "Parent",
    "Query",
    "open_context",
    "raw",
]
