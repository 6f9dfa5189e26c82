"""
Entity Repository

Generic data access for one table: CRUD driven by query option maps, plus a
relationship layer that links the current row to rows of other tables.

Subclasses only name their table:

    class PostRepository(EntityRepository):
        table = "posts"

    posts = PostRepository(executor)
    await posts.get_one({"id": 10}, preserve="id")
    comments = await posts.has_many(child="comments", foreign_key="post_id").get_related()

A repository carries request state (the preserved key and the declared
relationship) and must not be shared between concurrent requests; use one
instance per request, or fork(executor) a clean one onto another request.
"""

import copy
import logging
from typing import Any, Mapping, Optional, Sequence, Union

from relstore.common.errors import (
    MissingPreservedKeyError,
    RelationshipNotDeclaredError,
    StaleRelationshipError,
    UnknownColumnError,
    UnsupportedRelationError,
    ValidationError,
)
from relstore.config import get_settings
from relstore.domain.relationship import (
    ManyToMany,
    ManyToOne,
    OneToMany,
    OneToOne,
    Relationship,
)
from relstore.domain.result import WriteResult
from relstore.executor.base import UNSET, Condition, QueryExecutor, Row
from relstore.query.builder import QueryBuilder

logger = logging.getLogger(__name__)


class EntityRepository:
    """
    Entity Repository

    Binds a table name to an executor and exposes generic CRUD and
    relationship operations on it.
    """

    # Table name (specified by subclasses or passed to __init__)
    table: str = ""

    def __init__(
        self,
        executor: QueryExecutor,
        builder: Optional[QueryBuilder] = None,
        table: Optional[str] = None,
    ):
        """
        Initialize Repository

        Args:
            executor: Request-scoped query executor
            builder: Option translator; the shared QueryBuilder when omitted
            table: Table name, overriding the class attribute
        """
        self.executor = executor
        self.builder = builder or QueryBuilder.get_instance()
        if table is not None:
            self.table = table
        if not self.table:
            raise ValidationError(
                message=f"{type(self).__name__} has no table name",
                code="missing_table",
            )
        # Value of a designated column from the last get_one(..., preserve=...)
        self.preserved: Any = None
        self.relationship: Optional[Relationship] = None

    def fork(self, executor: Optional[QueryExecutor] = None) -> "EntityRepository":
        """
        Return a clean repository on the same table.

        Args:
            executor: Executor for the clone. Without one the clone shares this
                repository's executor and its pending statement, so it may only
                be used within the same request.
        """
        clone = copy.copy(self)
        if executor is not None:
            clone.executor = executor
        clone.clear_preserved()
        clone.clear_relationship()
        return clone

    def _build(self, options: Optional[Mapping[str, Any]]) -> None:
        try:
            self.builder.apply(self.executor, options)
        except Exception:
            self.executor.reset()
            raise

    def _build_grouped(self, options: Optional[Mapping[str, Any]]) -> None:
        """Apply options with their conditions kept in one parenthesised group"""
        if not options:
            return
        try:
            self.executor.group_start()
            self.builder.apply(self.executor, options)
            self.executor.group_end()
        except Exception:
            self.executor.reset()
            raise

    # ============ CRUD ============

    async def create(
        self, data: Mapping[str, Any], return_id: bool = False
    ) -> Union[WriteResult, Any]:
        """
        Insert one row.

        Args:
            data: Column -> value mapping
            return_id: Return the new primary key instead of the WriteResult

        Returns:
            The new primary key (None on failure) when return_id is set,
            otherwise the WriteResult. Constraint violations are reported as a
            failed result, never raised.
        """
        result = await self.executor.insert(self.table, data)
        if return_id:
            return result.insert_id if result else None
        return result

    async def create_batch(self, rows: Sequence[Mapping[str, Any]]) -> WriteResult:
        """Insert several rows in one statement."""
        return await self.executor.insert_batch(self.table, rows)

    async def get(self, options: Optional[Mapping[str, Any]] = None) -> list[Row]:
        """
        Fetch every row matching an option map.

        Example:
            await repo.get({"where": {"status": "open"}, "order_by": {"name": "ASC"}})
            # SELECT * FROM <table> WHERE status = 'open' ORDER BY name ASC
        """
        self._build(options)
        return await self.executor.get(self.table)

    async def get_one(
        self, condition: Condition, preserve: Optional[str] = None
    ) -> Optional[Row]:
        """
        Fetch a single row by a plain condition map.

        Args:
            condition: {column: value} mapping (or raw SQL string) applied as WHERE
            preserve: Column whose value is kept in `preserved` when a row is found

        Returns:
            The row, or None when nothing matches (preserved is left untouched).
        """
        self.executor.where(condition)
        self.executor.limit(1)
        rows = await self.executor.get(self.table)
        row = rows[0] if rows else None

        if preserve and row is not None:
            if preserve not in row:
                raise UnknownColumnError(self.table, preserve)
            self.preserved = row[preserve]
        return row

    async def get_count(self, option: Optional[Mapping[str, Any]] = None) -> int:
        """
        Count rows.

        An empty option counts the whole table. When every value is a
        structured filter (mapping or list) the option goes through the query
        builder; otherwise it is a flat equality condition.
        """
        if option:
            if all(isinstance(value, (Mapping, list, tuple)) for value in option.values()):
                self._build(option)
            else:
                self.executor.where(option)
        return await self.executor.count_all_results(self.table)

    async def update(self, options: Mapping[str, Any]) -> WriteResult:
        """
        Update rows.

        Args:
            options: {"filter": condition applied as WHERE, "data": column -> value}
        """
        if not isinstance(options, Mapping) or "filter" not in options or "data" not in options:
            raise ValidationError(
                message="update expects 'filter' and 'data' keys",
                code="invalid_update",
            )
        self.executor.where(options["filter"])
        return await self.executor.update(self.table, options["data"])

    async def delete(self, condition: Condition, protect_last: bool = False) -> WriteResult:
        """
        Delete rows.

        Args:
            condition: Condition applied as WHERE
            protect_last: Refuse when the table holds exactly one row

        Returns:
            WriteResult; a refused result ("Only one record left") when the
            last-row guard trips.
        """
        if protect_last and await self.get_count() == 1:
            logger.info(f"Refusing delete on {self.table}: only one record left")
            return WriteResult.refused()

        self.executor.where(condition)
        return await self.executor.delete(self.table)

    # ============ Relationship declaration ============

    def _link_key(self, key: Any) -> tuple[Any, bool]:
        """Resolve the key a relationship links on: (value, taken from preserved)"""
        if key is not UNSET:
            if key is None:
                raise MissingPreservedKeyError(self.table)
            return key, False
        if self.preserved is None:
            raise MissingPreservedKeyError(self.table)
        return self.preserved, True

    def _declare(self, relationship: Relationship) -> "EntityRepository":
        self.relationship = relationship
        logger.debug(
            f"{self.table} declared {relationship.relation_type.name} with "
            f"{relationship.target_table} on {relationship.predicate}"
        )
        return self

    def has_one(self, friend: str, foreign_key: str, key: Any = UNSET) -> "EntityRepository":
        """
        Declare a one-to-one relationship.

        Args:
            friend: Related table
            foreign_key: Column on `friend` referencing this entity
            key: Linked value; defaults to `preserved`
        """
        value, from_preserved = self._link_key(key)
        return self._declare(
            OneToOne(
                foreign_table=friend,
                foreign_key=foreign_key,
                key=value,
                from_preserved=from_preserved,
            )
        )

    def has_many(self, child: str, foreign_key: str, key: Any = UNSET) -> "EntityRepository":
        """
        Declare a one-to-many relationship.

        Args:
            child: Child table
            foreign_key: Column on `child` referencing this entity
            key: Linked value; defaults to `preserved`
        """
        value, from_preserved = self._link_key(key)
        return self._declare(
            OneToMany(
                foreign_table=child,
                foreign_key=foreign_key,
                key=value,
                from_preserved=from_preserved,
            )
        )

    def belongs_to(self, parent: str, foreign_key: str, key: Any = UNSET) -> "EntityRepository":
        """
        Declare a many-to-one relationship.

        The parent row is looked up with {foreign_key: key}, so `foreign_key`
        names the referenced column on the parent (usually its primary key)
        and `key` must be this row's foreign-key value, e.g. after
        get_one({"id": 7}, preserve="user_id").

        Args:
            parent: Parent table
            foreign_key: Referenced column on `parent`
            key: Linked value; defaults to `preserved`
        """
        value, from_preserved = self._link_key(key)
        return self._declare(
            ManyToOne(
                foreign_table=parent,
                foreign_key=foreign_key,
                key=value,
                from_preserved=from_preserved,
            )
        )

    def has_pivot_with(
        self,
        relative: str,
        pivot: str,
        relative_key: str,
        ref_key: str,
        key: Any = UNSET,
    ) -> "EntityRepository":
        """
        Declare a many-to-many relationship through a pivot table.

        Args:
            relative: Table on the far side of the pivot
            pivot: Pivot table
            relative_key: Pivot column referencing `relative`
            ref_key: Pivot column referencing this entity
            key: Linked value; defaults to `preserved`
        """
        value, from_preserved = self._link_key(key)
        return self._declare(
            ManyToMany(
                relative_table=relative,
                pivot_table=pivot,
                relative_key=relative_key,
                ref_key=ref_key,
                key=value,
                from_preserved=from_preserved,
            )
        )

    def clear_preserved(self) -> None:
        self.preserved = None

    def clear_relationship(self) -> None:
        self.relationship = None

    def _active_relationship(self) -> Relationship:
        relationship = self.relationship
        if relationship is None:
            raise RelationshipNotDeclaredError(self.table)
        if relationship.from_preserved and self.preserved != relationship.key:
            raise StaleRelationshipError(self.table, relationship.key, self.preserved)
        return relationship

    def _many_to_many(self, operation: str) -> ManyToMany:
        relationship = self._active_relationship()
        if not isinstance(relationship, ManyToMany):
            raise UnsupportedRelationError(operation, relationship.relation_type.name)
        return relationship

    # ============ Relation fetch / create / delete ============

    async def get_related(
        self, filters: Optional[Mapping[str, Any]] = None
    ) -> Union[Optional[Row], list[Row]]:
        """
        Fetch rows linked by the declared relationship.

        Returns:
            One row (or None) for one-to-one and many-to-one; a list for
            one-to-many; the raw pivot rows for many-to-many (see
            get_relatives() for the rows on the far side of the pivot).
        """
        relationship = self._active_relationship()
        self.executor.where(relationship.predicate)
        self._build_grouped(filters)

        if isinstance(relationship, (OneToOne, ManyToOne)):
            self.executor.limit(1)
            rows = await self.executor.get(relationship.foreign_table)
            return rows[0] if rows else None
        if isinstance(relationship, OneToMany):
            return await self.executor.get(relationship.foreign_table)
        if isinstance(relationship, ManyToMany):
            return await self.executor.get(relationship.pivot_table)

        self.executor.reset()
        raise UnsupportedRelationError("get_related", type(relationship).__name__)

    async def get_pivot_rows(self, filters: Optional[Mapping[str, Any]] = None) -> list[Row]:
        """Fetch the pivot rows of a many-to-many relationship."""
        relationship = self._many_to_many("get_pivot_rows")
        self.executor.where(relationship.predicate)
        self._build_grouped(filters)
        return await self.executor.get(relationship.pivot_table)

    async def get_relatives(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        relative_ref: str = "id",
    ) -> list[Row]:
        """
        Fetch the rows on the far side of a many-to-many relationship.

        Pivot rows are resolved through `relative_key` against `relative_ref`
        on the relative table. Results follow pivot order unless `filters`
        carries its own order_by.

        Args:
            filters: Option map applied to the relative table query
            relative_ref: Column on the relative table that pivot rows reference
        """
        relationship = self._many_to_many("get_relatives")
        self.executor.where(relationship.predicate)
        pivots = await self.executor.get(relationship.pivot_table)

        keys = []
        for pivot in pivots:
            if relationship.relative_key not in pivot:
                raise UnknownColumnError(relationship.pivot_table, relationship.relative_key)
            keys.append(pivot[relationship.relative_key])
        if not keys:
            return []

        self.executor.where_in(relative_ref, keys)
        self._build_grouped(filters)
        rows = await self.executor.get(relationship.relative_table)

        if filters and "order_by" in filters:
            return rows
        position: dict[Any, int] = {}
        for index, value in enumerate(keys):
            position.setdefault(value, index)
        return sorted(rows, key=lambda row: position.get(row.get(relative_ref), len(keys)))

    async def get_related_count(self, filters: Optional[Mapping[str, Any]] = None) -> int:
        """Count rows linked by the declared relationship (pivot rows for many-to-many)."""
        relationship = self._active_relationship()
        self.executor.where(relationship.predicate)
        self._build_grouped(filters)
        return await self.executor.count_all_results(relationship.target_table)

    async def create_related(
        self, data: Mapping[str, Any], atomic: Optional[bool] = None
    ) -> WriteResult:
        """
        Insert a row into this table and its dependent rows.

        Many-to-many expects {"base_data": {...}, "pivot_data": [...]}; the
        pivot rows go to the pivot table. One-to-many expects
        {"base_data": {...}, "child_data": [...]}; the child rows go to the
        child table. Dependent rows are not inserted when the base insert fails.

        Args:
            data: Base row and dependent rows
            atomic: Run both inserts in one transaction; defaults to the
                ATOMIC_RELATED_WRITES setting. When not atomic, a failed
                dependent insert leaves the base row in place.

        Raises:
            UnsupportedRelationError: The declared relationship is one-to-one
                or many-to-one
        """
        relationship = self._active_relationship()
        if isinstance(relationship, ManyToMany):
            dependent_table, dependent_field = relationship.pivot_table, "pivot_data"
        elif isinstance(relationship, OneToMany):
            dependent_table, dependent_field = relationship.foreign_table, "child_data"
        else:
            raise UnsupportedRelationError("create_related", relationship.relation_type.name)

        if "base_data" not in data or dependent_field not in data:
            raise ValidationError(
                message=f"create_related expects 'base_data' and '{dependent_field}' keys",
                code="invalid_related_data",
            )

        if atomic is None:
            atomic = get_settings().ATOMIC_RELATED_WRITES

        if atomic:
            async with self.executor.transaction():
                return await self._create_with_dependents(
                    data["base_data"], dependent_table, data[dependent_field]
                )
        return await self._create_with_dependents(
            data["base_data"], dependent_table, data[dependent_field]
        )

    async def _create_with_dependents(
        self,
        base_data: Mapping[str, Any],
        dependent_table: str,
        dependent_rows: Sequence[Mapping[str, Any]],
    ) -> WriteResult:
        base = await self.executor.insert(self.table, base_data)
        if not base:
            logger.warning(
                f"Insert into {self.table} failed, skipping {dependent_table}: {base.reason}"
            )
            return base
        return await self.executor.insert_batch(dependent_table, dependent_rows)

    async def delete_related(self) -> WriteResult:
        """Delete rows linked by the declared relationship (pivot rows for many-to-many)."""
        relationship = self._active_relationship()
        self.executor.where(relationship.predicate)
        return await self.executor.delete(relationship.target_table)
