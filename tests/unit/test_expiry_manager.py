import dataclasses

import pytest

from img2url.errors import ObjectExpiredError
from img2url.errors import ObjectNotFoundError
from img2url.errors import ReadRateLimitedError
from img2url.models import ObjectMetadata
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.expiry_manager import metadata_key
from img2url.utils import epoch_ms
from img2url.utils import utc_date


IP = "198.51.100.20"
DAY_MS = 24 * 60 * 60 * 1000


async def store_object(content_store, state_store, clock, file_name: str, *, expires_in_ms=None) -> None:
    await content_store.put(file_name, b"webp-bytes-" + file_name.encode(), "image/webp")
    now_ms = epoch_ms(clock())
    metadata = ObjectMetadata(
        code=file_name.split(".")[0],
        file_name=file_name,
        expiry_time=now_ms + expires_in_ms if expires_in_ms is not None else None,
        upload_time=now_ms,
        size=11 + len(file_name),
    )
    await state_store.put(metadata_key(file_name), metadata.to_json())


@pytest.mark.asyncio
async def test_fetch_serves_live_object(expiry_manager, content_store, state_store, clock) -> None:
    await store_object(content_store, state_store, clock, "abcd1234.webp", expires_in_ms=DAY_MS)

    result = await expiry_manager.fetch("abcd1234.webp", IP)

    assert result.data == b"webp-bytes-abcd1234.webp"
    assert result.content_type == "image/webp"
    assert result.cache_control == "public, max-age=31536000, immutable"
    assert await state_store.get(f"stats:{utc_date(clock())}") == "1"


@pytest.mark.asyncio
async def test_fetch_missing_object(expiry_manager) -> None:
    with pytest.raises(ObjectNotFoundError) as exc_info:
        await expiry_manager.fetch("nope0000.webp", IP)

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Image not found"


@pytest.mark.asyncio
async def test_fetch_expired_object_removes_it(expiry_manager, content_store, state_store, clock) -> None:
    await store_object(content_store, state_store, clock, "old00000.webp", expires_in_ms=DAY_MS)
    clock.advance(2 * 24 * 60 * 60)

    with pytest.raises(ObjectExpiredError) as exc_info:
        await expiry_manager.fetch("old00000.webp", IP)

    assert exc_info.value.status_code == 410
    assert "old00000.webp" not in content_store.objects
    assert await state_store.get(metadata_key("old00000.webp")) is None

    with pytest.raises(ObjectNotFoundError):
        await expiry_manager.fetch("old00000.webp", IP)


@pytest.mark.asyncio
async def test_object_without_metadata_never_expires(expiry_manager, content_store, clock) -> None:
    await content_store.put("bare0000.webp", b"x", "image/webp")
    clock.advance(1000 * 24 * 60 * 60)

    result = await expiry_manager.fetch("bare0000.webp", IP)

    assert result.data == b"x"


@pytest.mark.asyncio
async def test_read_rate_limit(config, state_store, content_store, stats, clock) -> None:
    limited = dataclasses.replace(config, read_rate_per_minute=3)
    manager = ExpiryManager(limited, state_store, content_store, stats, clock=clock)
    await store_object(content_store, state_store, clock, "rate0000.webp")

    for _ in range(3):
        await manager.fetch("rate0000.webp", IP)

    with pytest.raises(ReadRateLimitedError) as exc_info:
        await manager.fetch("rate0000.webp", IP)
    assert exc_info.value.status_code == 429

    clock.advance(60)
    await manager.fetch("rate0000.webp", IP)


@pytest.mark.asyncio
async def test_sweep_expires_only_due_objects_without_reading_them(
    expiry_manager, content_store, state_store, clock
) -> None:
    await store_object(content_store, state_store, clock, "due00000.webp", expires_in_ms=1000)
    await store_object(content_store, state_store, clock, "live0000.webp", expires_in_ms=DAY_MS)
    await store_object(content_store, state_store, clock, "perm0000.webp")
    clock.advance(60)

    report = await expiry_manager.sweep()

    assert report.scanned == 3
    assert report.expired == 1
    assert report.failed == 0
    assert sorted(content_store.objects) == ["live0000.webp", "perm0000.webp"]
    assert content_store.get_calls == 0


@pytest.mark.asyncio
async def test_sweep_walks_every_page(config, state_store, content_store, stats, clock) -> None:
    paged = dataclasses.replace(config, sweep_page_size=2)
    manager = ExpiryManager(paged, state_store, content_store, stats, clock=clock)
    for i in range(5):
        await store_object(content_store, state_store, clock, f"page000{i}.webp", expires_in_ms=1000)
    clock.advance(60)

    report = await manager.sweep()

    assert report.pages == 3
    assert report.scanned == 5
    assert report.expired == 5
    assert content_store.objects == {}


@pytest.mark.asyncio
async def test_sweep_continues_past_failures(expiry_manager, content_store, state_store, clock) -> None:
    await store_object(content_store, state_store, clock, "aaaa0000.webp", expires_in_ms=1000)
    await store_object(content_store, state_store, clock, "bbbb0000.webp", expires_in_ms=1000)
    content_store.fail_delete_keys.add("aaaa0000.webp")
    clock.advance(60)

    report = await expiry_manager.sweep()

    assert report.failed == 1
    assert report.expired == 1
    assert "bbbb0000.webp" not in content_store.objects


@pytest.mark.asyncio
async def test_expire_if_due_is_idempotent(expiry_manager, content_store, state_store, clock) -> None:
    await store_object(content_store, state_store, clock, "twice000.webp", expires_in_ms=1000)
    clock.advance(60)

    assert await expiry_manager.expire_if_due("twice000.webp") is True
    assert await expiry_manager.expire_if_due("twice000.webp") is False
