"""
SQL Adapter Tests

🗄️ Relational Storage:
Runs the manager against SQLAlchemy's asyncio engine on a temporary
SQLite database.
"""

import pytest
import pytest_asyncio

pytest.importorskip("aiosqlite")

from sqlalchemy import inspect as sql_inspect

from docmapper import DocMapper, InvalidOperationError, StorageError
from docmapper.persistence.sql import SQLClient, build_where

from conftest import memory_config


@pytest_asyncio.fixture
async def sql_docmapper(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'docmapper.db'}"
    docmapper = DocMapper(memory_config("sql", options={"url": url}))
    await docmapper.init()
    yield docmapper
    await docmapper.shutdown()


@pytest.fixture
def sql_manager(sql_docmapper):
    return sql_docmapper.create_session().get_manager()


async def _table_columns(connection, table):
    async with connection.engine.connect() as conn:
        return await conn.run_sync(
            lambda sync_conn: {c["name"] for c in sql_inspect(sync_conn).get_columns(table)}
        )


class TestSQLSchema:
    """Tables built from metadata on boot"""

    @pytest.mark.asyncio
    async def test_tables_created(self, sql_manager):
        connection = sql_manager.connection

        assert set(connection.sql_metadata.tables) == {"users", "posts", "vehicles"}
        assert await _table_columns(connection, "users") == {
            "id", "email_address", "age", "active", "created_at", "updated_at", "version",
            "preferences", "posts", "address",
        }
        assert await _table_columns(connection, "posts") == {"id", "title", "position", "author"}

    @pytest.mark.asyncio
    async def test_build_where_rejects_unknown_columns(self, sql_manager):
        table = sql_manager.connection.get_table("users")
        with pytest.raises(InvalidOperationError):
            build_where(table, {"nickname": "x"})
        with pytest.raises(InvalidOperationError):
            build_where(table, {"age": {"size": 2}})

    @pytest.mark.asyncio
    async def test_missing_table(self, sql_manager):
        with pytest.raises(StorageError):
            sql_manager.connection.get_table("comments")


class TestSQLManager:
    """Manager operations on SQL storage"""

    @pytest.mark.asyncio
    async def test_insert_find_update(self, sql_manager):
        user = await sql_manager.create_document("User", {"email": "sql@example.com", "age": 30})
        user.address = await sql_manager.create_document("Address", {"city": "Oslo"})
        sql_manager.persist(user)
        (await sql_manager.flush()).raise_for_errors()

        assert user.id == 1
        assert user.version == 1

        user.age = 31
        sql_manager.persist(user)
        (await sql_manager.flush()).raise_for_errors()
        sql_manager.clear()

        loaded = await sql_manager.find("User", user.id)
        assert loaded is not user
        assert loaded.age == 31
        assert loaded.version == 2
        assert loaded.active is True
        assert loaded.address.city == "Oslo"
        assert loaded.created_at is not None

    @pytest.mark.asyncio
    async def test_relations_round_trip(self, sql_manager):
        user = await sql_manager.create_document("User", {"email": "author@example.com"})
        user.posts = [
            await sql_manager.create_document("Post", {"title": t, "position": p, "author": user})
            for t, p in (("b", 2), ("a", 1))
        ]
        sql_manager.persist(user)
        (await sql_manager.flush()).raise_for_errors()
        sql_manager.clear()

        posts = await sql_manager.find_by("Post", sort={"position": "asc"})

        assert [p.title for p in posts] == ["a", "b"]
        assert posts[0].author is posts[1].author
        assert [p.title for p in posts[0].author.posts] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_queries_and_bulk_operations(self, sql_manager):
        for age in (20, 30, 40):
            sql_manager.persist(await sql_manager.create_document(
                "User", {"email": f"u{age}@example.com", "age": age}
            ))
        (await sql_manager.flush()).raise_for_errors()

        query = sql_manager.create_query().where("age").gt(20).sort("age", "desc").limit(1)
        assert [u.age for u in await sql_manager.find_by_query("User", query)] == [40]
        assert await sql_manager.find_count_by_query("User", query) == 2
        assert [u.age for u in await sql_manager.find_where_in(
            "User", "age", [20, 40], sort={"age": "asc"}
        )] == [20, 40]

        assert await sql_manager.update_by("User", {"age": {"gte": 30}}, {"active": False}) == 2
        assert await sql_manager.find_count_by("User", {"active": False}) == 2
        assert await sql_manager.remove_by("User", {"age": 20}) == 1
        assert await sql_manager.find_count_by("User") == 2

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, sql_manager):
        with pytest.raises(RuntimeError):
            async with sql_manager.transaction():
                sql_manager.persist(await sql_manager.create_document("User", {"email": "tx@example.com"}))
                (await sql_manager.flush()).raise_for_errors()
                raise RuntimeError("abort")

        assert await sql_manager.find_count_by("User") == 0

    @pytest.mark.asyncio
    async def test_transaction_commit(self, sql_manager):
        async with sql_manager.transaction():
            sql_manager.persist(await sql_manager.create_document("User", {"email": "tx@example.com"}))
            (await sql_manager.flush()).raise_for_errors()

        assert await sql_manager.find_count_by("User") == 1

    @pytest.mark.asyncio
    async def test_locking_is_not_supported(self, sql_manager):
        assert isinstance(sql_manager.client, SQLClient)
        with pytest.raises(InvalidOperationError, match="locking"):
            async with sql_manager.lock(object()):
                pass

    @pytest.mark.asyncio
    async def test_update_of_missing_row_fails(self, sql_manager):
        user = await sql_manager.create_document("User", {"email": "gone@example.com"})
        sql_manager.persist(user)
        (await sql_manager.flush()).raise_for_errors()
        await sql_manager.remove_by("User", {"email": "gone@example.com"})

        user.age = 5
        sql_manager.persist(user)
        result = await sql_manager.flush()

        assert not result.success
        assert isinstance(result.failures[0].error, StorageError)
