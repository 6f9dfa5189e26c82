"""
Test Entity Repository relationships
"""

from unittest.mock import AsyncMock, patch

import pytest

from relstore.common.errors import (
    MissingPreservedKeyError,
    RelationshipNotDeclaredError,
    StaleRelationshipError,
    UnsupportedRelationError,
    ValidationError,
)
from relstore.domain.relationship import ManyToMany, OneToMany, OneToOne, RelationType
from relstore.executor.sqlalchemy import SQLAlchemyQueryExecutor
from relstore.repositories.entity import EntityRepository


class UserRepository(EntityRepository):
    table = "users"


class PostRepository(EntityRepository):
    table = "posts"


PIVOT = {"relative": "tags", "pivot": "post_tags", "relative_key": "tag_id", "ref_key": "post_id"}


# ─────────────────────────────────────────────────────────────
# Declaration
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_declarators_return_repository(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    assert posts.has_many(child="comments", foreign_key="post_id") is posts
    assert isinstance(posts.relationship, OneToMany)
    assert posts.relationship.predicate == {"post_id": 10}


@pytest.mark.asyncio
async def test_declaring_replaces_previous_relationship(seeded):
    users = UserRepository(seeded)
    await users.get_one({"id": 1}, preserve="id")

    users.has_many(child="posts", foreign_key="user_id")
    users.has_one(friend="profiles", foreign_key="user_id")

    assert isinstance(users.relationship, OneToOne)
    assert users.relationship.relation_type is RelationType.ONE_TO_ONE


@pytest.mark.asyncio
async def test_declaring_without_preserved_key_fails(seeded):
    posts = PostRepository(seeded)

    with pytest.raises(MissingPreservedKeyError):
        posts.has_many(child="comments", foreign_key="post_id")

    await posts.get_one({"id": 99}, preserve="id")
    with pytest.raises(MissingPreservedKeyError):
        posts.has_pivot_with(**PIVOT)


@pytest.mark.asyncio
async def test_relation_ops_require_declaration(seeded):
    posts = PostRepository(seeded)

    with pytest.raises(RelationshipNotDeclaredError):
        await posts.get_related()
    with pytest.raises(RelationshipNotDeclaredError):
        await posts.delete_related()


@pytest.mark.asyncio
async def test_changed_preserved_key_makes_relationship_stale(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")

    await posts.get_one({"id": 11}, preserve="id")

    with pytest.raises(StaleRelationshipError):
        await posts.get_related()

    posts.clear_preserved()
    with pytest.raises(StaleRelationshipError):
        await posts.get_related_count()


@pytest.mark.asyncio
async def test_explicit_key_is_not_tied_to_preserved(seeded):
    posts = PostRepository(seeded)
    row = await posts.get_one({"id": 11})

    posts.has_many(child="comments", foreign_key="post_id", key=row["id"])
    await posts.get_one({"id": 10}, preserve="id")

    comments = await posts.get_related()
    assert [c["id"] for c in comments] == [102]


@pytest.mark.asyncio
async def test_fork_starts_clean(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")

    forked = posts.fork()

    assert isinstance(forked, PostRepository)
    assert forked.executor is posts.executor
    assert forked.preserved is None
    assert forked.relationship is None
    assert posts.preserved == 10


@pytest.mark.asyncio
async def test_fork_onto_another_executor(seeded, db_session):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    other = SQLAlchemyQueryExecutor(db_session, metadata=seeded.metadata, reflect=False)

    forked = posts.fork(other)
    # Pending state on the original executor stays there
    seeded.where({"id": 10})

    assert forked.executor is other
    assert forked.preserved is None
    assert len(await forked.get()) == 3
    seeded.reset()


# ─────────────────────────────────────────────────────────────
# Fetch
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_has_many_returns_children_as_list(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    comments = await posts.has_many(child="comments", foreign_key="post_id").get_related()

    assert isinstance(comments, list)
    assert sorted(c["id"] for c in comments) == [100, 101]
    assert all(c["post_id"] == 10 for c in comments)


@pytest.mark.asyncio
async def test_has_many_without_children_is_empty_list(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 12}, preserve="id")

    comments = await posts.has_many(child="comments", foreign_key="post_id").get_related()

    assert comments == []


@pytest.mark.asyncio
async def test_get_related_applies_filters(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    comments = await posts.has_many(child="comments", foreign_key="post_id").get_related(
        {"order_by": {"id": "DESC"}}
    )

    assert [c["id"] for c in comments] == [101, 100]


@pytest.mark.asyncio
async def test_or_filters_stay_within_the_relationship(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 11}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")
    # "nice" belongs to post 10, "more please" to post 11
    filters = {"where": {"body": "nice"}, "or_where": {"body": "more please"}}

    comments = await posts.get_related(filters)

    assert [c["id"] for c in comments] == [102]
    assert await posts.get_related_count(filters) == 1


@pytest.mark.asyncio
async def test_or_filters_stay_within_the_pivot(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    pivots = await posts.get_pivot_rows({"where": {"tag_id": 2}, "or_where": {"tag_id": 3}})
    assert pivots == [{"post_id": 10, "tag_id": 3}]

    # "sql" is tagged on post 11 only
    tags = await posts.get_relatives({"where": {"name": "sql"}, "or_where": {"name": "rust"}})
    assert [t["name"] for t in tags] == ["rust"]


@pytest.mark.asyncio
async def test_has_one_returns_single_row(seeded):
    users = UserRepository(seeded)
    await users.get_one({"id": 1}, preserve="id")

    profile = await users.has_one(friend="profiles", foreign_key="user_id").get_related()

    assert profile == {"id": 1, "user_id": 1, "bio": "writes about databases"}

    await users.get_one({"id": 2}, preserve="id")
    assert await users.has_one(friend="profiles", foreign_key="user_id").get_related() is None


@pytest.mark.asyncio
async def test_belongs_to_uses_preserved_foreign_key_value(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 12}, preserve="user_id")

    author = await posts.belongs_to(parent="users", foreign_key="id").get_related()

    assert author["name"] == "bob"


@pytest.mark.asyncio
async def test_many_to_many_get_related_returns_pivot_rows(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    pivots = await posts.has_pivot_with(**PIVOT).get_related()

    assert isinstance(posts.relationship, ManyToMany)
    assert sorted(p["tag_id"] for p in pivots) == [1, 3]
    assert await posts.get_pivot_rows() == pivots


@pytest.mark.asyncio
async def test_many_to_many_relatives_resolve_through_pivot(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    tags = await posts.get_relatives()
    assert [t["name"] for t in tags] == ["python", "rust"]

    tags = await posts.get_relatives({"order_by": {"name": "DESC"}})
    assert [t["name"] for t in tags] == ["rust", "python"]


@pytest.mark.asyncio
async def test_many_to_many_without_pivot_rows(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 12}, preserve="id")

    assert await posts.has_pivot_with(**PIVOT).get_relatives() == []


@pytest.mark.asyncio
async def test_pivot_operations_need_many_to_many(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")

    with pytest.raises(UnsupportedRelationError):
        await posts.get_pivot_rows()
    with pytest.raises(UnsupportedRelationError):
        await posts.get_relatives()


@pytest.mark.asyncio
async def test_get_related_count(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    assert await posts.has_many(child="comments", foreign_key="post_id").get_related_count() == 2
    assert await posts.has_pivot_with(**PIVOT).get_related_count() == 2


# ─────────────────────────────────────────────────────────────
# Create / delete
# ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_related_many_to_many(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    result = await posts.create_related(
        {
            "base_data": {"id": 20, "user_id": 2, "title": "Joins"},
            "pivot_data": [{"post_id": 20, "tag_id": 2}, {"post_id": 20, "tag_id": 3}],
        }
    )

    assert result
    assert await posts.get_count({"id": 20}) == 1
    pivots = await posts.has_pivot_with(**PIVOT, key=20).get_pivot_rows()
    assert sorted(p["tag_id"] for p in pivots) == [2, 3]


@pytest.mark.asyncio
async def test_create_related_skips_pivot_when_base_insert_fails(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    with patch.object(seeded, "insert_batch", new=AsyncMock()) as insert_batch:
        result = await posts.create_related(
            {
                "base_data": {"id": 10, "user_id": 1, "title": "Duplicate"},
                "pivot_data": [{"post_id": 10, "tag_id": 2}],
            }
        )

    assert not result
    insert_batch.assert_not_called()


@pytest.mark.asyncio
async def test_create_related_one_to_many(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 12}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")

    result = await posts.create_related(
        {
            "base_data": {"id": 30, "user_id": 2, "title": "Follow-up"},
            "child_data": [{"post_id": 30, "body": "first"}, {"post_id": 30, "body": "second"}],
        }
    )

    assert result
    assert await posts.has_many(child="comments", foreign_key="post_id", key=30).get_related_count() == 2


@pytest.mark.asyncio
async def test_create_related_non_atomic_keeps_base_row(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    result = await posts.create_related(
        {
            "base_data": {"id": 21, "user_id": 1, "title": "Partial"},
            # (10, 1) already exists
            "pivot_data": [{"post_id": 10, "tag_id": 1}],
        },
        atomic=False,
    )

    assert not result
    assert await posts.get_count({"id": 21}) == 1


@pytest.mark.asyncio
async def test_create_related_atomic_rolls_back_base_row(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_pivot_with(**PIVOT)

    result = await posts.create_related(
        {
            "base_data": {"id": 22, "user_id": 1, "title": "All or nothing"},
            "pivot_data": [{"post_id": 10, "tag_id": 1}],
        },
        atomic=True,
    )

    assert not result
    assert await posts.get_count({"id": 22}) == 0


@pytest.mark.asyncio
async def test_create_related_unsupported_for_single_row_relations(seeded):
    users = UserRepository(seeded)
    await users.get_one({"id": 1}, preserve="id")

    users.has_one(friend="profiles", foreign_key="user_id")
    with pytest.raises(UnsupportedRelationError):
        await users.create_related({"base_data": {}, "child_data": []})

    users.belongs_to(parent="users", foreign_key="id")
    with pytest.raises(UnsupportedRelationError):
        await users.create_related({"base_data": {}, "child_data": []})


@pytest.mark.asyncio
async def test_create_related_validates_payload(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")
    posts.has_many(child="comments", foreign_key="post_id")

    with pytest.raises(ValidationError):
        await posts.create_related({"base_data": {"user_id": 1, "title": "x"}, "pivot_data": []})


@pytest.mark.asyncio
async def test_delete_related(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    result = await posts.has_many(child="comments", foreign_key="post_id").delete_related()

    assert result
    assert result.rowcount == 2
    assert await posts.get_related() == []
    assert await posts.has_many(child="comments", foreign_key="post_id", key=11).get_related_count() == 1


@pytest.mark.asyncio
async def test_delete_related_many_to_many_clears_pivot(seeded):
    posts = PostRepository(seeded)
    await posts.get_one({"id": 10}, preserve="id")

    result = await posts.has_pivot_with(**PIVOT).delete_related()

    assert result
    assert await posts.get_pivot_rows() == []
    # Relative rows are untouched
    assert len(await EntityRepository(seeded, table="tags").get()) == 3
