"""
Error Definitions

Defines custom exception classes raised by the store for unified error handling.
Executor write failures are not raised; they are reported as failed WriteResults.
"""

from typing import Any, Optional


class StoreError(Exception):
    """
    Store Base Exception

    Base class for all custom exceptions, containing error message, type, and code.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "store_error",
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            error_type: Error type
            code: Error code
            details: Extra error details
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary format

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class ValidationError(StoreError):
    """
    Parameter Validation Error

    Raised when options or arguments passed to the store are malformed.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        code: str = "validation_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="validation_error",
            code=code,
            details=details,
        )


class UnsupportedFilterError(ValidationError):
    """Raised when a query option names a filter that has no registered handler."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Unsupported filter: {name!r}",
            code="unsupported_filter",
            details={"filter": name},
        )
        self.name = name


class UnknownTableError(StoreError):
    """Raised when a table is neither declared nor reflectable."""

    def __init__(self, table: str):
        super().__init__(
            message=f"Unknown table: {table!r}",
            error_type="schema_error",
            code="unknown_table",
            details={"table": table},
        )
        self.table = table


class UnknownColumnError(StoreError):
    """Raised when a condition references a column the table does not have."""

    def __init__(self, table: str, column: str):
        super().__init__(
            message=f"Unknown column {column!r} on table {table!r}",
            error_type="schema_error",
            code="unknown_column",
            details={"table": table, "column": column},
        )
        self.table = table
        self.column = column


class PreconditionError(StoreError):
    """
    Precondition Violation

    Raised when an operation is invoked in a state that cannot produce a
    meaningful result (missing key, undeclared or stale relationship).
    """

    def __init__(
        self,
        message: str = "Precondition failed",
        code: str = "precondition_failed",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type="precondition_error",
            code=code,
            details=details,
        )


class MissingPreservedKeyError(PreconditionError):
    """Raised when a relationship is declared without a key to link on."""

    def __init__(self, table: str):
        super().__init__(
            message=(
                f"No key available to declare a relationship from {table!r}: "
                "fetch a row with get_one(..., preserve=column) or pass key="
            ),
            code="missing_preserved_key",
            details={"table": table},
        )


class RelationshipNotDeclaredError(PreconditionError):
    """Raised when a relation operation runs before any declarator."""

    def __init__(self, table: str):
        super().__init__(
            message=f"No relationship declared on {table!r}",
            code="relationship_not_declared",
            details={"table": table},
        )


class StaleRelationshipError(PreconditionError):
    """Raised when the preserved key changed after the relationship was declared."""

    def __init__(self, table: str, declared_key: Any, current_key: Any):
        super().__init__(
            message=(
                f"Relationship on {table!r} was declared for key {declared_key!r} "
                f"but the preserved key is now {current_key!r}"
            ),
            code="stale_relationship",
            details={"declared_key": declared_key, "current_key": current_key},
        )


class UnsupportedRelationError(PreconditionError):
    """Raised when an operation is not defined for the active relationship type."""

    def __init__(self, operation: str, relation_type: str):
        super().__init__(
            message=f"{operation} is not supported for {relation_type} relationships",
            code="unsupported_relation",
            details={"operation": operation, "relation_type": relation_type},
        )
