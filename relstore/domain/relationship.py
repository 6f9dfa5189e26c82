"""
Relationship Domain Model

Tagged variant over the four relationship kinds an entity can declare.
Each kind carries only the fields it needs; `kind` is the discriminator.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class RelationType(str, Enum):
    """Relationship kinds"""

    ONE_TO_ONE = "1-1"
    ONE_TO_MANY = "1-m"
    MANY_TO_ONE = "m-1"
    MANY_TO_MANY = "m-m"


class _DirectRelationship(BaseModel):
    """Relationship resolved by a single foreign-key equation on another table"""

    # Table the link predicate is applied to
    foreign_table: str = Field(..., description="Related table")
    # Column on foreign_table compared against key
    foreign_key: str = Field(..., description="Linking column")
    # Value the relationship was declared for
    key: Any = Field(..., description="Linked key value")
    # True when key was taken from the repository's preserved value
    from_preserved: bool = Field(True, description="Key taken from preserved")

    model_config = ConfigDict(frozen=True)

    @property
    def predicate(self) -> dict[str, Any]:
        return {self.foreign_key: self.key}

    @property
    def target_table(self) -> str:
        return self.foreign_table

    @property
    def relation_type(self) -> RelationType:
        return RelationType(self.kind)


class OneToOne(_DirectRelationship):
    kind: Literal["1-1"] = "1-1"


class OneToMany(_DirectRelationship):
    kind: Literal["1-m"] = "1-m"


class ManyToOne(_DirectRelationship):
    kind: Literal["m-1"] = "m-1"


class ManyToMany(BaseModel):
    """Relationship realized through a pivot table"""

    kind: Literal["m-m"] = "m-m"
    relative_table: str = Field(..., description="Table on the far side of the pivot")
    pivot_table: str = Field(..., description="Pivot table")
    # Pivot column referencing the relative table
    relative_key: str = Field(..., description="Pivot column pointing at the relative")
    # Pivot column referencing the owning table
    ref_key: str = Field(..., description="Pivot column pointing at the owner")
    key: Any = Field(..., description="Linked key value")
    from_preserved: bool = Field(True, description="Key taken from preserved")

    model_config = ConfigDict(frozen=True)

    @property
    def predicate(self) -> dict[str, Any]:
        return {self.ref_key: self.key}

    @property
    def target_table(self) -> str:
        return self.pivot_table

    @property
    def relation_type(self) -> RelationType:
        return RelationType(self.kind)


Relationship = Annotated[
    Union[OneToOne, OneToMany, ManyToOne, ManyToMany],
    Field(discriminator="kind"),
]
