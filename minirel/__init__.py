# minirel - relations for a lightweight Python object/document mapper
from minirel.base import ModelBase
from minirel.database import DataSource
from minirel.connector import MemoryConnector
from minirel.mapper import Mapper
from minirel.orm_types import Column, Text, Number, Boolean, Json, Relationship
from minirel.filters import col, and_, or_
from minirel.relations.definition import RelationDescriptor, RelationKind, PolymorphicConfig, RelationOptions
from minirel.exceptions import (
    RelationError,
    RelationConfigError,
    NotFoundError,
    KeyMismatchError,
    ForeignKeyOverrideError,
    EmptyRelationError,
    CardinalityError,
    PolymorphicError,
    ValidationError,
)

__version__ = "0.1.0"
__all__ = [
    "ModelBase", "DataSource", "MemoryConnector", "Mapper",
    "Column", "Text", "Number", "Boolean", "Json", "Relationship",
    "col", "and_", "or_",
    "RelationDescriptor", "RelationKind", "PolymorphicConfig", "RelationOptions",
    "RelationError", "RelationConfigError", "NotFoundError", "KeyMismatchError",
    "ForeignKeyOverrideError", "EmptyRelationError", "CardinalityError",
    "PolymorphicError", "ValidationError",
]
