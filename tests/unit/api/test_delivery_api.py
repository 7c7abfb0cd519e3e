"""Tests for short link delivery and the stats/maintenance endpoints."""

from typing import Any

import pytest
from httpx import ASGITransport
from httpx import AsyncClient

from img2url.models import ObjectMetadata
from img2url.services.expiry_manager import metadata_key
from img2url.utils import epoch_minute
from img2url.utils import epoch_ms


CLIENT_IP = "198.51.100.4"


async def request(app: Any, method: str, path: str):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.request(method, path, headers={"X-Real-IP": CLIENT_IP})


async def store_image(content_store, state_store, clock, file_name: str, expiry_time=None) -> None:
    await content_store.put(file_name, b"RIFF....WEBPdata", "image/webp")
    metadata = ObjectMetadata(
        code=file_name.split(".")[0], file_name=file_name, expiry_time=expiry_time, upload_time=epoch_ms(clock())
    )
    await state_store.put(metadata_key(file_name), metadata.to_json())


@pytest.mark.asyncio
async def test_serves_image(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "abcd1234.webp")

    response = await request(api_app, "GET", "/abcd1234.webp")

    assert response.status_code == 200
    assert response.content == b"RIFF....WEBPdata"
    assert response.headers["content-type"] == "image/webp"
    assert response.headers["cache-control"] == "public, max-age=31536000, immutable"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/favicon.ico", "/abc.webp", "/abcd1234.exe", "/abcd-234.png"])
async def test_malformed_short_links_are_not_found(api_app: Any, content_store, path: str) -> None:
    response = await request(api_app, "GET", path)

    assert response.status_code == 404
    assert content_store.get_calls == 0


@pytest.mark.asyncio
async def test_unknown_image(api_app: Any) -> None:
    response = await request(api_app, "GET", "/zzzz9999.PNG")

    assert response.status_code == 404
    assert response.text == "Image not found"


@pytest.mark.asyncio
async def test_expired_image_is_gone(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "old00000.webp", expiry_time=epoch_ms(clock()) - 1)

    response = await request(api_app, "GET", "/old00000.webp")

    assert response.status_code == 410
    assert response.text == "Image has expired"
    assert content_store.objects == {}


@pytest.mark.asyncio
async def test_read_rate_limited(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "abcd1234.webp")
    await state_store.put(f"rate:{CLIENT_IP}:{epoch_minute(clock())}", "100")

    response = await request(api_app, "GET", "/abcd1234.webp")

    assert response.status_code == 429
    assert response.text == "Rate limit exceeded"


@pytest.mark.asyncio
async def test_storage_error_is_500(api_app: Any, content_store) -> None:
    async def broken_get(key: str) -> None:
        raise RuntimeError("bucket unreachable")

    content_store.get = broken_get

    response = await request(api_app, "GET", "/abcd1234.webp")

    assert response.status_code == 500
    assert response.text == "Failed to retrieve image"


@pytest.mark.asyncio
async def test_stats_endpoint(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "abcd1234.webp")

    response = await request(api_app, "GET", "/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["cached"] is False
    assert body["data"]["images"] == 1

    again = await request(api_app, "GET", "/stats")
    assert again.json()["cached"] is True


@pytest.mark.asyncio
async def test_sync_stats(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "abcd1234.webp")

    response = await request(api_app, "POST", "/sync-stats")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["syncedImages"] == 1
    assert data["syncedSize"] == len(b"RIFF....WEBPdata")
    assert data["syncedSizeFormatted"] == "16 B"


@pytest.mark.asyncio
async def test_sync_stats_failure(api_app: Any, content_store) -> None:
    content_store.fail_list = True

    response = await request(api_app, "POST", "/sync-stats")

    assert response.status_code == 500
    assert response.json()["error"] == "SYNC_FAILED"


@pytest.mark.asyncio
async def test_cleanup_runs_sweep(api_app: Any, content_store, state_store, clock) -> None:
    await store_image(content_store, state_store, clock, "old00000.webp", expiry_time=epoch_ms(clock()) - 1)
    await store_image(content_store, state_store, clock, "abcd1234.webp")

    response = await request(api_app, "POST", "/cleanup")

    assert response.status_code == 200
    assert response.json()["data"] == {"deletedCount": 1, "scanned": 2, "failed": 0}
    assert list(content_store.objects) == ["abcd1234.webp"]
