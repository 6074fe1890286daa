import asyncio

from creaturehunt.backend.cache import (
    LIST_KEY,
    InMemoryCatalogCache,
    SqliteCatalogCache,
    create_cache,
    detail_key,
)


def test_detail_key_is_namespaced() -> None:
    assert detail_key(25) == "catalog:detail:25"
    assert LIST_KEY == "catalog:list"


def test_create_cache_returns_sqlite_cache_when_path_present(tmp_path) -> None:
    cache = create_cache(str(tmp_path / "cache.db"))

    assert isinstance(cache, SqliteCatalogCache)


def test_create_cache_returns_in_memory_cache_when_path_missing() -> None:
    assert isinstance(create_cache(None), InMemoryCatalogCache)


def test_sqlite_cache_persists_across_instances(tmp_path) -> None:
    path = str(tmp_path / "cache.db")

    async def scenario():
        writer = SqliteCatalogCache(db_path=path)
        assert await writer.set(LIST_KEY, "[1]") is True
        assert await writer.set(LIST_KEY, "[1, 2]") is True
        reader = SqliteCatalogCache(db_path=path)
        return await reader.get(LIST_KEY), await reader.get(detail_key(1))

    value, missing = asyncio.run(scenario())

    assert value == "[1, 2]"
    assert missing is None


def test_clear_namespace_only_drops_matching_keys(tmp_path) -> None:
    async def scenario(cache):
        await cache.set(LIST_KEY, "[]")
        await cache.set(detail_key(1), "{}")
        await cache.set(detail_key(2), "{}")
        removed = await cache.clear_namespace("catalog:detail:")
        return removed, await cache.get(LIST_KEY), await cache.get(detail_key(1))

    for cache in (InMemoryCatalogCache(), SqliteCatalogCache(db_path=str(tmp_path / "cache.db"))):
        removed, kept, dropped = asyncio.run(scenario(cache))
        assert removed == 2
        assert kept == "[]"
        assert dropped is None


def test_unavailable_storage_degrades_to_miss(tmp_path) -> None:
    cache = SqliteCatalogCache(db_path=str(tmp_path / "missing-dir" / "cache.db"))

    async def scenario():
        return await cache.set(LIST_KEY, "[]"), await cache.get(LIST_KEY), await cache.clear_namespace(LIST_KEY)

    written, value, removed = asyncio.run(scenario())

    assert written is False
    assert value is None
    assert removed == 0
