"""
relstore - relation-aware entity store

Generic CRUD, option-driven queries and declarative relationships over a
relational query executor.
"""

from relstore.common.errors import (
    MissingPreservedKeyError,
    PreconditionError,
    RelationshipNotDeclaredError,
    StaleRelationshipError,
    StoreError,
    UnknownColumnError,
    UnknownTableError,
    UnsupportedFilterError,
    UnsupportedRelationError,
    ValidationError,
)
from relstore.domain import (
    ONLY_ONE_RECORD_LEFT,
    ManyToMany,
    ManyToOne,
    OneToMany,
    OneToOne,
    RelationType,
    WriteResult,
    WriteStatus,
)
from relstore.executor import QueryExecutor, SQLAlchemyQueryExecutor
from relstore.query import QueryBuilder
from relstore.repositories import EntityRepository

__version__ = "1.0.0"

__all__ = [
    "EntityRepository",
    "QueryBuilder",
    "QueryExecutor",
    "SQLAlchemyQueryExecutor",
    "WriteResult",
    "WriteStatus",
    "ONLY_ONE_RECORD_LEFT",
    "RelationType",
    "OneToOne",
    "OneToMany",
    "ManyToOne",
    "ManyToMany",
    "StoreError",
    "ValidationError",
    "UnsupportedFilterError",
    "UnknownTableError",
    "UnknownColumnError",
    "PreconditionError",
    "MissingPreservedKeyError",
    "RelationshipNotDeclaredError",
    "StaleRelationshipError",
    "UnsupportedRelationError",
]
