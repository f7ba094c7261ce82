from __future__ import annotations

import uuid

import pytest

from webhook_service.core.exceptions import NotFoundError, WebhookValidationError
from webhook_service.services.webhook_cache import ACTIVE_SET_KEY


@pytest.mark.asyncio
async def test_register_applies_defaults_and_caches(registry, cache):
    view = await registry.register(url=" https://example.com/hook ", secret="s")
    assert view.url == "https://example.com/hook"
    assert view.events == ["*"]
    assert view.max_retries == 3
    assert view.retry_delay == 1000
    assert view.enabled is True
    assert view.has_secret is True
    assert view.total_deliveries == 0

    cached = await cache.get(view.id)
    assert cached is not None and cached.secret == "s"


@pytest.mark.asyncio
async def test_view_never_exposes_secret(registry):
    view = await registry.register(url="https://example.com/hook", secret="s")
    assert "secret" not in view.model_dump()


@pytest.mark.asyncio
async def test_register_deduplicates_events(registry):
    view = await registry.register(
        url="https://example.com/hook",
        events=["file.deleted", "file.upload.completed", "file.deleted"],
    )
    assert view.events == ["file.deleted", "file.upload.completed"]


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/x", "/relative"])
async def test_register_rejects_invalid_url(registry, url):
    with pytest.raises(WebhookValidationError):
        await registry.register(url=url)


@pytest.mark.asyncio
@pytest.mark.parametrize("events", [[], ["file.exploded"], [" "]])
async def test_register_rejects_invalid_events(registry, events):
    with pytest.raises(WebhookValidationError):
        await registry.register(url="https://example.com/hook", events=events)


@pytest.mark.asyncio
async def test_register_rejects_negative_retries(registry):
    with pytest.raises(WebhookValidationError):
        await registry.register(url="https://example.com/hook", max_retries=-1)


@pytest.mark.asyncio
async def test_get_unknown_raises(registry):
    with pytest.raises(NotFoundError):
        await registry.get(uuid.uuid4())


@pytest.mark.asyncio
async def test_list_filters_by_active(registry):
    on = await registry.register(url="https://example.com/a")
    off = await registry.register(url="https://example.com/b")
    await registry.update(off.id, {"enabled": False})

    assert {w.id for w in await registry.list()} == {on.id, off.id}
    assert [w.id for w in await registry.list(active=True)] == [on.id]
    assert [w.id for w in await registry.list(active=False)] == [off.id]


@pytest.mark.asyncio
async def test_list_is_newest_first(registry):
    first = await registry.register(url="https://example.com/a")
    second = await registry.register(url="https://example.com/b")
    assert [w.id for w in await registry.list()] == [second.id, first.id]


@pytest.mark.asyncio
async def test_disable_evicts_cache_and_enable_restores(registry, cache, redis):
    view = await registry.register(url="https://example.com/hook")
    await registry.update(view.id, {"enabled": False})
    assert await cache.get(view.id) is None
    assert str(view.id) not in await redis.smembers(ACTIVE_SET_KEY)

    await registry.update(view.id, {"enabled": True})
    assert await cache.get(view.id) is not None


@pytest.mark.asyncio
async def test_update_refreshes_cached_entry(registry, cache):
    view = await registry.register(url="https://example.com/hook")
    updated = await registry.update(
        view.id, {"url": "https://example.org/new", "events": ["file.deleted"], "retry_delay": 250}
    )
    assert updated.url == "https://example.org/new"
    cached = await cache.get(view.id)
    assert cached.url == "https://example.org/new"
    assert cached.events == ["file.deleted"]
    assert cached.retry_delay == 250


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes",
    [
        {"url": "nope"},
        {"events": []},
        {"events": None},
        {"max_retries": -1},
        {"retry_delay": 0},
        {"enabled": None},
    ],
)
async def test_update_rejects_invalid_changes(registry, changes):
    view = await registry.register(url="https://example.com/hook")
    with pytest.raises(WebhookValidationError):
        await registry.update(view.id, changes)


@pytest.mark.asyncio
async def test_update_unknown_raises(registry):
    with pytest.raises(NotFoundError):
        await registry.update(uuid.uuid4(), {"enabled": False})


@pytest.mark.asyncio
async def test_delete_removes_cache_and_stats_but_keeps_history(
    registry, cache, stats, delivery_repo
):
    view = await registry.register(url="https://example.com/hook")
    await stats.record(view.id, True, 10)
    await delivery_repo.create(
        webhook_id=view.id,
        event_id=uuid.uuid4(),
        event_type="file.deleted",
        payload={},
        success=True,
        status_code=200,
        response=None,
        error=None,
        duration=10,
        attempt=1,
    )

    await registry.delete(view.id)

    assert await cache.get(view.id) is None
    assert (await stats.read(view.id)).total_calls == 0
    assert len(delivery_repo.for_webhook(view.id)) == 1
    with pytest.raises(NotFoundError):
        await registry.get(view.id)
    with pytest.raises(NotFoundError):
        await registry.delete(view.id)


@pytest.mark.asyncio
async def test_view_includes_stats(registry, stats):
    view = await registry.register(url="https://example.com/hook")
    await stats.record(view.id, True, 10)
    await stats.record(view.id, False, 30)

    fetched = await registry.get(view.id)
    assert fetched.total_deliveries == 2
    assert fetched.successful_deliveries == 1
    assert fetched.stats.failures == 1
    assert fetched.stats.average_duration == 10.0


@pytest.mark.asyncio
async def test_delivery_history_requires_known_webhook(registry):
    with pytest.raises(NotFoundError):
        await registry.delivery_history(uuid.uuid4())


@pytest.mark.asyncio
async def test_delivery_history_caps_limit(registry, delivery_repo):
    view = await registry.register(url="https://example.com/hook")
    for _ in range(120):
        await delivery_repo.create(
            webhook_id=view.id,
            event_id=uuid.uuid4(),
            event_type="file.deleted",
            payload=None,
            success=False,
            status_code=500,
            response=None,
            error="HTTP 500",
            duration=1,
            attempt=1,
        )
    items, total = await registry.delivery_history(view.id, limit=500)
    assert len(items) == 100
    assert total == 120

    items, _ = await registry.delivery_history(view.id, limit=10, offset=115)
    assert len(items) == 5


@pytest.mark.asyncio
async def test_warm_cache_rebuilds_from_store(registry, cache, redis):
    kept = await registry.register(url="https://example.com/a")
    off = await registry.register(url="https://example.com/b")
    await registry.update(off.id, {"enabled": False})
    await redis.delete(f"webhook:{kept.id}", ACTIVE_SET_KEY)

    assert await registry.warm_cache() == 1
    assert await cache.get(kept.id) is not None
    assert await cache.get(off.id) is None
