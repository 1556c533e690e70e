import pytest

from mediabot.destinations import DestinationResolver, RemoteStoreError, SearchUnsupported


@pytest.mark.asyncio
async def test_second_resolve_is_a_cache_hit(fake_store, album_cache):
    resolver = DestinationResolver(fake_store, album_cache)

    first = await resolver.resolve("general")
    second = await resolver.resolve("general")

    assert first == second == "container-1"
    fake_store.find_by_name.assert_awaited_once_with("general")
    fake_store.create.assert_awaited_once_with("general")
    assert album_cache.get("general") == "container-1"


@pytest.mark.asyncio
async def test_existing_container_is_found_not_created(fake_store, album_cache):
    fake_store.find_by_name.return_value = "existing-9"
    resolver = DestinationResolver(fake_store, album_cache)

    assert await resolver.resolve("memes") == "existing-9"
    fake_store.create.assert_not_awaited()
    assert album_cache.get("memes") == "existing-9"


@pytest.mark.asyncio
async def test_force_fresh_bypasses_cache(fake_store, album_cache):
    album_cache.set("general", "old-id")
    resolver = DestinationResolver(fake_store, album_cache)

    assert await resolver.resolve("general") == "old-id"
    fake_store.find_by_name.assert_not_awaited()

    assert await resolver.resolve("general", force_fresh=True) == "container-1"
    fake_store.find_by_name.assert_awaited_once()
    assert album_cache.get("general") == "container-1"


@pytest.mark.asyncio
async def test_search_unsupported_falls_through_to_create(fake_store, album_cache):
    fake_store.find_by_name.side_effect = SearchUnsupported("403")
    resolver = DestinationResolver(fake_store, album_cache)

    assert await resolver.resolve("art") == "container-1"
    fake_store.create.assert_awaited_once_with("art")


@pytest.mark.asyncio
async def test_create_failure_propagates_and_caches_nothing(fake_store, album_cache):
    fake_store.create.side_effect = RuntimeError("quota")
    resolver = DestinationResolver(fake_store, album_cache)

    with pytest.raises(RuntimeError):
        await resolver.resolve("art")
    assert album_cache.get("art") is None


@pytest.mark.asyncio
async def test_refresh_invalidates_and_recreates(fake_store, album_cache):
    album_cache.set("general", "stale")
    resolver = DestinationResolver(fake_store, album_cache)

    fresh = await resolver.refresh("general", "stale")

    assert fresh == "container-1"
    assert album_cache.get("general") == "container-1"
    fake_store.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_refresh_reuses_id_already_replaced_by_another_task(fake_store, album_cache):
    album_cache.set("general", "newer")
    resolver = DestinationResolver(fake_store, album_cache)

    assert await resolver.refresh("general", "stale") == "newer"
    fake_store.find_by_name.assert_not_awaited()
    fake_store.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_search_falls_through_to_create(fake_store, album_cache):
    fake_store.find_by_name.side_effect = RemoteStoreError("HTTP 503 backendError")
    resolver = DestinationResolver(fake_store, album_cache)

    assert await resolver.resolve("art") == "container-1"
    fake_store.create.assert_awaited_once_with("art")
    assert album_cache.get("art") == "container-1"
