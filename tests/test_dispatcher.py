from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.dispatcher import EventDispatcher


def make_event(event_type: EventType = EventType.UPLOAD_COMPLETED) -> DomainEvent:
    return DomainEvent.create(event_type, {"file_id": "f-1"}, source="storage")


@pytest.fixture
def dispatcher(cache, webhook_repo, executor) -> EventDispatcher:
    return EventDispatcher(cache, webhook_repo, executor)


@pytest.mark.asyncio
async def test_dispatch_matches_exact_and_wildcard(make_receiver, register_fast, dispatcher):
    uploads = await make_receiver()
    deletes = await make_receiver()
    everything = await make_receiver()
    upload_hook = await register_fast(uploads.url, events=["file.upload.completed"])
    await register_fast(deletes.url, events=["file.deleted"])
    wildcard_hook = await register_fast(everything.url, events=["*"])

    matched = await dispatcher.dispatch(make_event())
    await dispatcher.wait_idle()

    assert set(matched) == {upload_hook.id, wildcard_hook.id}
    assert (uploads.calls, deletes.calls, everything.calls) == (1, 0, 1)
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_no_prefix_matching(make_receiver, register_fast, dispatcher):
    receiver = await make_receiver()
    await register_fast(receiver.url, events=["file.upload.started"])

    assert await dispatcher.dispatch(make_event(EventType.UPLOAD_PROGRESS)) == []
    await dispatcher.wait_idle()
    assert receiver.calls == 0


@pytest.mark.asyncio
async def test_disabled_webhook_receives_nothing(make_receiver, register_fast, registry, webhook_repo, dispatcher):
    receiver = await make_receiver()
    view = await register_fast(receiver.url)
    await registry.update(view.id, {"enabled": False})

    assert await dispatcher.dispatch(make_event()) == []
    target = (await webhook_repo.get(view.id)).to_target()
    assert dispatcher.dispatch_to(target, make_event()) is False
    await dispatcher.wait_idle()

    assert receiver.calls == 0


@pytest.mark.asyncio
async def test_rate_limited_webhook_is_skipped_alone(make_receiver, register_fast, rate_limiter, delivery_repo, dispatcher):
    busy_receiver = await make_receiver()
    quiet_receiver = await make_receiver()
    busy = await register_fast(busy_receiver.url)
    quiet = await register_fast(quiet_receiver.url)
    for _ in range(60):
        await rate_limiter.consume(busy.id)

    matched = await dispatcher.dispatch(make_event())
    await dispatcher.wait_idle()

    assert set(matched) == {busy.id, quiet.id}
    assert busy_receiver.calls == 0
    assert quiet_receiver.calls == 1
    assert delivery_repo.for_webhook(busy.id) == []
    assert len(delivery_repo.for_webhook(quiet.id)) == 1


@pytest.mark.asyncio
async def test_sixty_first_dispatch_in_window(make_receiver, register_fast, dispatcher):
    receiver = await make_receiver()
    await register_fast(receiver.url)

    for _ in range(61):
        await dispatcher.dispatch(make_event())
    await dispatcher.wait_idle()

    assert receiver.calls == 60


@pytest.mark.asyncio
async def test_evicted_cache_entry_is_read_through(make_receiver, register_fast, cache, redis, dispatcher):
    receiver = await make_receiver()
    view = await register_fast(receiver.url)
    await redis.delete(f"webhook:{view.id}")

    assert await dispatcher.dispatch(make_event()) == [view.id]
    await dispatcher.wait_idle()

    assert receiver.calls == 1
    assert await cache.get(view.id) is not None


@pytest.mark.asyncio
async def test_indexed_id_of_deleted_webhook_is_dropped(redis, cache, dispatcher):
    await redis.sadd("webhooks:active", "00000000-0000-0000-0000-000000000001")

    assert await dispatcher.dispatch(make_event()) == []
    assert await redis.smembers("webhooks:active") == set()


@pytest.mark.asyncio
async def test_crashing_delivery_never_reaches_emitter(register_fast, cache, webhook_repo):
    await register_fast("https://example.com/hook")
    executor = AsyncMock()
    executor.deliver.side_effect = RuntimeError("boom")
    dispatcher = EventDispatcher(cache, webhook_repo, executor)

    matched = await dispatcher.dispatch(make_event())
    await dispatcher.wait_idle()

    assert len(matched) == 1
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_close_cancels_in_flight(register_fast, cache, webhook_repo):
    view = await register_fast("https://example.com/hook")
    started = asyncio.Event()

    async def hang(target, event):
        started.set()
        await asyncio.sleep(3600)

    executor = AsyncMock()
    executor.deliver.side_effect = hang
    dispatcher = EventDispatcher(cache, webhook_repo, executor)

    await dispatcher.dispatch(make_event())
    await asyncio.wait_for(started.wait(), timeout=1)
    assert dispatcher.in_flight == 1

    await dispatcher.close()
    assert dispatcher.in_flight == 0
    executor.deliver.assert_awaited_once()
    assert executor.deliver.await_args.args[0].id == view.id


@pytest.mark.asyncio
async def test_cache_sweep_keeps_webhook_disabled_mid_sweep(
    make_receiver, register_fast, registry, webhook_repo, dispatcher, monkeypatch
):
    receiver = await make_receiver()
    view = await register_fast(receiver.url)
    list_enabled = webhook_repo.list_webhooks

    async def disable_after_listing(**kwargs):
        snapshot = await list_enabled(**kwargs)
        await registry.update(view.id, {"enabled": False})
        return snapshot

    monkeypatch.setattr(webhook_repo, "list_webhooks", disable_after_listing)
    assert await registry.warm_cache() == 0

    assert await dispatcher.dispatch(make_event()) == []
    await dispatcher.wait_idle()
    assert receiver.calls == 0


@pytest.mark.asyncio
async def test_cache_sweep_keeps_webhook_registered_mid_sweep(
    make_receiver, register_fast, registry, webhook_repo, dispatcher, monkeypatch
):
    receiver = await make_receiver()
    list_enabled = webhook_repo.list_webhooks
    registered = []

    async def register_after_listing(**kwargs):
        snapshot = await list_enabled(**kwargs)
        registered.append(await register_fast(receiver.url))
        return snapshot

    monkeypatch.setattr(webhook_repo, "list_webhooks", register_after_listing)
    assert await registry.warm_cache() == 1

    assert await dispatcher.dispatch(make_event()) == [registered[0].id]
    await dispatcher.wait_idle()
    assert receiver.calls == 1
