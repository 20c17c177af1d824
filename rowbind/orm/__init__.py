"""Public exports for the record mapper, collections and query builder."""

from .coercion import Coercer, FieldType
from .collection import Collection
from .fields import Field, FieldSpec
from .grammar import Expression, Grammar, raw
from .query import JoinClause, Page, Query
from .record import ActiveRecord
from .relations import Children, Parent, SharedRecordCache, registry

__all__ = [
    "ActiveRecord",
    "Children",
    "Coercer",
    "Collection",
    "Expression",
    "Field",
    "FieldSpec",
    "FieldType",
    "Grammar",
    "JoinClause",
    "Page",
    "Parent",
    "Query",
    "SharedRecordCache",
    "raw",
    "registry",
]
