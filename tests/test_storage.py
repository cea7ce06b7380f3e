"""Бэкенды хранилища: память, SQL (aiosqlite), Redis (mock)"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, LockError
from sqlalchemy.exc import OperationalError

from collabcore.core.config import Settings
from collabcore.core.exceptions import CorruptRecordError, StorageError
from collabcore.domains.collaboration.services import CollaborationService
from collabcore.infrastructure.storage import InMemoryStorage, StorageBatch, create_storage
from collabcore.infrastructure.storage.redis_storage import RedisStorage
from collabcore.infrastructure.storage.sql_storage import SQLStorage, advisory_lock_key


# ===== StorageBatch =====


def test_batch_put_then_delete():
    batch = StorageBatch()
    batch.put("a", 1)
    batch.delete("a")

    assert batch.puts == {}
    assert batch.deletes == {"a"}


def test_batch_delete_then_put():
    batch = StorageBatch()
    batch.delete("a")
    batch.put("a", 2)

    assert batch.puts == {"a": 2}
    assert batch.deletes == set()
    assert not batch.is_empty


# ===== Память =====


@pytest.mark.asyncio
async def test_memory_roundtrip():
    storage = InMemoryStorage()
    batch = StorageBatch()
    batch.put("comments:doc1", [{"id": "c1"}])
    batch.put("comment_ref:c1", "doc1")
    await storage.commit(batch)

    assert await storage.get("comments:doc1") == [{"id": "c1"}]
    assert await storage.get("comment_ref:c1") == "doc1"
    assert await storage.get("missing") is None


@pytest.mark.asyncio
async def test_memory_values_are_copies():
    storage = InMemoryStorage()
    batch = StorageBatch()
    batch.put("k", [1, 2])
    await storage.commit(batch)

    value = await storage.get("k")
    value.append(3)

    assert await storage.get("k") == [1, 2]


@pytest.mark.asyncio
async def test_memory_unserializable_batch_leaves_no_changes():
    storage = InMemoryStorage()
    batch = StorageBatch()
    batch.put("good", 1)
    await storage.commit(batch)

    bad = StorageBatch()
    bad.delete("good")
    bad.put("other", 2)
    bad.put("broken", object())

    with pytest.raises(StorageError):
        await storage.commit(bad)

    assert await storage.get("good") == 1
    assert await storage.get("other") is None


@pytest.mark.asyncio
async def test_memory_corrupt_value():
    storage = InMemoryStorage()
    storage._records["k"] = "{oops"

    with pytest.raises(CorruptRecordError):
        await storage.get("k")


@pytest.mark.asyncio
async def test_local_lock_serializes_same_name():
    storage = InMemoryStorage()
    order = []

    async def worker(name):
        async with storage.lock("doc1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_concurrent_accesses_are_all_counted(service):
    link = await service.create_share_link("doc1", "user-1", "view")

    results = await asyncio.gather(*(service.access_share_link(link.token) for _ in range(10)))

    assert all(r is not None for r in results)
    assert sorted(r.access_count for r in results) == list(range(1, 11))
    assert (await service.get_share_links("doc1"))[0].access_count == 10


@pytest.mark.asyncio
async def test_concurrent_access_and_revoke(service, storage):
    link = await service.create_share_link("doc1", "user-1", "view")

    accessed, revoked = await asyncio.gather(
        service.access_share_link(link.token),
        service.revoke_share_link(link.id),
    )

    assert revoked is True
    if accessed is not None:
        assert accessed.access_count == 1
    assert await service.get_share_links("doc1") == []
    assert await service.access_share_link(link.token) is None
    assert not [key for key in storage.keys() if key.startswith("share_token:")]
    assert f"share_link_ref:{link.id}" not in storage.keys()


@pytest.mark.asyncio
async def test_concurrent_comments_are_all_kept(service):
    await asyncio.gather(*(
        service.add_comment("doc1", "user-1", "Alice", f"comment {i}") for i in range(10)
    ))

    assert (await service.get_comment_count("doc1")).total == 10


def test_create_storage_default_is_memory():
    assert isinstance(create_storage(Settings(storage_backend="memory")), InMemoryStorage)


def test_create_storage_redis():
    storage = create_storage(Settings(storage_backend="redis", redis_url="redis://localhost:6379/3"))
    assert isinstance(storage, RedisStorage)
    assert storage.key_prefix == "collab:"


# ===== SQL =====


@pytest.fixture
async def sql_storage(tmp_path):
    storage = SQLStorage.from_url(f"sqlite+aiosqlite:///{tmp_path / 'collab.db'}")
    await storage.init()
    yield storage
    await storage.close()


@pytest.mark.asyncio
async def test_sql_roundtrip(sql_storage):
    batch = StorageBatch()
    batch.put("comments:doc1", [{"id": "c1", "content": "привет"}])
    batch.put("comment_ref:c1", "doc1")
    await sql_storage.commit(batch)

    assert await sql_storage.get("comments:doc1") == [{"id": "c1", "content": "привет"}]

    update = StorageBatch()
    update.put("comments:doc1", [])
    update.delete("comment_ref:c1")
    await sql_storage.commit(update)

    assert await sql_storage.get("comments:doc1") == []
    assert await sql_storage.get("comment_ref:c1") is None


@pytest.mark.asyncio
async def test_sql_service_flow(sql_storage, settings, clock):
    service = CollaborationService(sql_storage, settings, clock=clock)

    root = await service.add_comment("doc1", "user-1", "Alice", "hi @bob")
    await service.add_comment("doc1", "user-2", "Bob", "hey", parent_id=root.id)
    link = await service.create_share_link("doc1", "user-1", "view", password="pw")
    accessed = await service.access_share_link(link.token, "pw")

    threads = await service.get_comments("doc1")
    assert threads[0].mentions == ["bob"]
    assert len(threads[0].replies) == 1
    assert accessed.access_count == 1
    assert len(await service.get_activity("doc1")) == 3

    assert await service.delete_comment(root.id) is True
    assert await service.get_comments("doc1") == []


@pytest.mark.asyncio
async def test_sql_read_failure_wrapped():
    storage = SQLStorage.from_url("sqlite+aiosqlite:////nonexistent-dir/collab.db")

    with pytest.raises(StorageError):
        await storage.get("k")

    await storage.close()


# ===== Redis =====


@pytest.fixture
def mock_pipeline():
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = None
    pipe.execute = AsyncMock(return_value=[])
    return pipe


@pytest.fixture
def mock_lock():
    lock = MagicMock()
    lock.name = "collab:lock:doc1"
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock()
    lock.owned = AsyncMock(return_value=True)
    return lock


@pytest.fixture
def mock_redis(mock_pipeline, mock_lock):
    """Redis mock with async methods"""
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.aclose = AsyncMock()
    client.pipeline = MagicMock(return_value=mock_pipeline)
    client.lock = MagicMock(return_value=mock_lock)
    return client


@pytest.mark.asyncio
async def test_redis_get_prefixes_and_decodes(mock_redis):
    mock_redis.get.return_value = json.dumps({"document_id": "doc1", "link_id": "l1"})
    storage = RedisStorage(mock_redis, key_prefix="test:")

    value = await storage.get("share_token:abc")

    mock_redis.get.assert_awaited_once_with("test:share_token:abc")
    assert value == {"document_id": "doc1", "link_id": "l1"}


@pytest.mark.asyncio
async def test_redis_get_missing(mock_redis):
    storage = RedisStorage(mock_redis)
    assert await storage.get("nothing") is None


@pytest.mark.asyncio
async def test_redis_get_error_wrapped(mock_redis):
    mock_redis.get.side_effect = RedisConnectionError("down")
    storage = RedisStorage(mock_redis)

    with pytest.raises(StorageError):
        await storage.get("k")


@pytest.mark.asyncio
async def test_redis_commit_uses_transaction(mock_redis, mock_pipeline):
    storage = RedisStorage(mock_redis, key_prefix="p:")
    batch = StorageBatch()
    batch.put("comments:doc1", [])
    batch.delete("comment_ref:c1")

    await storage.commit(batch)

    mock_redis.pipeline.assert_called_once_with(transaction=True)
    mock_pipeline.delete.assert_called_once_with("p:comment_ref:c1")
    mock_pipeline.set.assert_called_once_with("p:comments:doc1", "[]")
    mock_pipeline.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_empty_batch_skipped(mock_redis):
    storage = RedisStorage(mock_redis)

    await storage.commit(StorageBatch())

    mock_redis.pipeline.assert_not_called()


@pytest.mark.asyncio
async def test_redis_commit_error_wrapped(mock_redis, mock_pipeline):
    mock_pipeline.execute.side_effect = RedisConnectionError("down")
    storage = RedisStorage(mock_redis)
    batch = StorageBatch()
    batch.put("k", 1)

    with pytest.raises(StorageError):
        await storage.commit(batch)


@pytest.mark.asyncio
async def test_redis_lock(mock_redis, mock_lock):
    storage = RedisStorage(mock_redis, key_prefix="p:", lock_timeout=5.0)

    async with storage.lock("doc1"):
        mock_lock.acquire.assert_awaited_once()
        mock_lock.release.assert_not_awaited()

    mock_redis.lock.assert_called_once_with("p:lock:doc1", timeout=5.0)
    mock_lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lock_expired_on_release(mock_redis, mock_lock, caplog):
    mock_lock.release.side_effect = LockError("expired")
    storage = RedisStorage(mock_redis)

    async with storage.lock("doc1"):
        pass

    assert "expired before release" in caplog.text


@pytest.mark.asyncio
async def test_redis_lock_acquire_error(mock_redis, mock_lock):
    mock_lock.acquire.side_effect = RedisConnectionError("down")
    storage = RedisStorage(mock_redis)

    with pytest.raises(StorageError):
        async with storage.lock("doc1"):
            pass


@pytest.mark.asyncio
async def test_redis_close(mock_redis):
    storage = RedisStorage(mock_redis)

    await storage.close()

    mock_redis.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_commit_inside_lock_checks_lease(mock_redis, mock_lock, mock_pipeline):
    storage = RedisStorage(mock_redis)
    batch = StorageBatch()
    batch.put("k", 1)

    async with storage.lock("doc1"):
        await storage.commit(batch)

    mock_lock.owned.assert_awaited_once()
    mock_pipeline.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_commit_refused_after_lease_expired(mock_redis, mock_lock, mock_pipeline):
    mock_lock.owned.return_value = False
    storage = RedisStorage(mock_redis)
    batch = StorageBatch()
    batch.put("k", 1)

    with pytest.raises(StorageError):
        async with storage.lock("doc1"):
            await storage.commit(batch)

    mock_redis.pipeline.assert_not_called()
    mock_lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lease_check_scoped_to_lock_holder(mock_redis, mock_lock):
    mock_lock.owned.return_value = False
    storage = RedisStorage(mock_redis)

    async with storage.lock("doc1"):
        pass

    batch = StorageBatch()
    batch.put("k", 1)
    await storage.commit(batch)

    mock_lock.owned.assert_not_awaited()


# ===== Блокировки PostgreSQL =====


def test_advisory_lock_key_is_stable_signed_64bit():
    key = advisory_lock_key("doc1")

    assert key == advisory_lock_key("doc1")
    assert key != advisory_lock_key("doc2")
    assert -(2 ** 63) <= key < 2 ** 63


@pytest.mark.asyncio
async def test_sqlite_uses_local_locks_only(sql_storage):
    assert sql_storage.uses_advisory_locks is False


@pytest.fixture
def pg_connection():
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.close = AsyncMock()
    conn.invalidate = AsyncMock()
    return conn


@pytest.fixture
def pg_storage(pg_connection):
    engine = MagicMock()
    engine.dialect.name = "postgresql"
    engine.connect = AsyncMock(return_value=pg_connection)
    return SQLStorage(engine)


@pytest.mark.asyncio
async def test_postgres_lock_uses_advisory_lock(pg_storage, pg_connection):
    async with pg_storage.lock("doc1"):
        statements = [str(c.args[0]) for c in pg_connection.execute.await_args_list]
        assert statements == ["SELECT pg_advisory_lock(:key)"]

    statements = [str(c.args[0]) for c in pg_connection.execute.await_args_list]
    params = [c.args[1] for c in pg_connection.execute.await_args_list]
    assert statements == ["SELECT pg_advisory_lock(:key)", "SELECT pg_advisory_unlock(:key)"]
    assert params == [{"key": advisory_lock_key("doc1")}] * 2
    pg_connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_postgres_lock_released_on_error(pg_storage, pg_connection):
    with pytest.raises(RuntimeError):
        async with pg_storage.lock("doc1"):
            raise RuntimeError("boom")

    assert str(pg_connection.execute.await_args_list[-1].args[0]) == "SELECT pg_advisory_unlock(:key)"
    pg_connection.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_postgres_lock_acquire_failure(pg_storage, pg_connection):
    pg_connection.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

    with pytest.raises(StorageError):
        async with pg_storage.lock("doc1"):
            pass

    pg_connection.close.assert_awaited_once()
