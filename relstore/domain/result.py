"""
Write Result Domain Model

Typed outcome of insert/update/delete operations. Truthiness follows the
success flag so callers that only need a boolean can keep using `if result:`.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

ONLY_ONE_RECORD_LEFT = "Only one record left"


class WriteStatus(str, Enum):
    """Outcome of a write"""

    SUCCESS = "success"
    FAILURE = "failure"
    # Guarded refusal: the write was deliberately not attempted
    REFUSED = "refused"


class WriteResult(BaseModel):
    """Write Result Model"""

    status: WriteStatus = Field(..., description="Outcome")
    insert_id: Optional[Any] = Field(None, description="Primary key of the inserted row")
    rowcount: Optional[int] = Field(None, description="Rows affected")
    reason: Optional[str] = Field(None, description="Failure or refusal reason")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def success(cls, insert_id: Any = None, rowcount: Optional[int] = None) -> "WriteResult":
        return cls(status=WriteStatus.SUCCESS, insert_id=insert_id, rowcount=rowcount)

    @classmethod
    def failure(cls, reason: str) -> "WriteResult":
        return cls(status=WriteStatus.FAILURE, reason=reason)

    @classmethod
    def refused(cls, reason: str = ONLY_ONE_RECORD_LEFT) -> "WriteResult":
        return cls(status=WriteStatus.REFUSED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.SUCCESS

    @property
    def refused_last_record(self) -> bool:
        return self.status is WriteStatus.REFUSED and self.reason == ONLY_ONE_RECORD_LEFT

    def __bool__(self) -> bool:
        return self.ok
