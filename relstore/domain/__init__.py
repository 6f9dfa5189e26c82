"""
Domain Model Module
"""

from relstore.domain.relationship import (
    ManyToMany,
    ManyToOne,
    OneToMany,
    OneToOne,
    RelationType,
    Relationship,
)
from relstore.domain.result import ONLY_ONE_RECORD_LEFT, WriteResult, WriteStatus

__all__ = [
    "ManyToMany",
    "ManyToOne",
    "OneToMany",
    "OneToOne",
    "RelationType",
    "Relationship",
    "ONLY_ONE_RECORD_LEFT",
    "WriteResult",
    "WriteStatus",
]
