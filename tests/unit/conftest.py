import dataclasses
import io
import itertools
import os
from typing import Any
from typing import Callable
from typing import Optional

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from PIL import Image


os.environ.setdefault("ENVIRONMENT", "test")

from img2url.config import GIB  # noqa: E402
from img2url.config import Config  # noqa: E402
from img2url.services.abuse_gate import AbuseGate  # noqa: E402
from img2url.services.captcha_client import CaptchaServiceError  # noqa: E402
from img2url.services.captcha_client import TurnstileResult  # noqa: E402
from img2url.services.dedup_index import DedupIndex  # noqa: E402
from img2url.services.expiry_manager import ExpiryManager  # noqa: E402
from img2url.services.ingestion import IngestionPipeline  # noqa: E402
from img2url.services.stats_aggregator import StatsAggregator  # noqa: E402
from img2url.services.transcoder import Transcoder  # noqa: E402
from img2url.stores import ListEntry  # noqa: E402
from img2url.stores import ListPage  # noqa: E402
from img2url.stores import RedisStateStore  # noqa: E402
from img2url.stores import StoredBlob  # noqa: E402


class FakeClock:
    """Mutable stand-in for time.time()."""

    def __init__(self, now: float = 1_750_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryContentStore:
    """ContentStore double that keeps blobs in a dict and lists keys in sorted order."""

    def __init__(self) -> None:
        self.objects: dict[str, StoredBlob] = {}
        self.get_calls = 0
        self.fail_put = False
        self.fail_list = False
        self.fail_delete_keys: set[str] = set()

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        if self.fail_put:
            raise RuntimeError("bucket unavailable")
        self.objects[key] = StoredBlob(data=data, content_type=content_type)

    async def get(self, key: str) -> Optional[StoredBlob]:
        self.get_calls += 1
        return self.objects.get(key)

    async def delete(self, key: str) -> None:
        if key in self.fail_delete_keys:
            raise RuntimeError(f"delete failed for {key}")
        self.objects.pop(key, None)

    async def list(self, page_token: Optional[str] = None, limit: int = 1000) -> ListPage:
        if self.fail_list:
            raise RuntimeError("listing unavailable")
        # Token is the last key returned (S3 StartAfter semantics)
        keys = [key for key in sorted(self.objects) if page_token is None or key > page_token]
        chunk = keys[:limit]
        next_token = chunk[-1] if len(keys) > limit else None
        return ListPage(
            entries=[ListEntry(key=key, size=len(self.objects[key].data)) for key in chunk],
            next_page_token=next_token,
        )


class FakeCaptchaVerifier:
    def __init__(self) -> None:
        self.success = True
        self.error_codes: list[str] = []
        self.unavailable = False
        self.calls: list[tuple[str, str]] = []

    async def verify(self, token: str, remote_ip: str) -> TurnstileResult:
        self.calls.append((token, remote_ip))
        if self.unavailable:
            raise CaptchaServiceError("connection refused")
        return TurnstileResult(success=self.success, error_codes=self.error_codes)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return dataclasses.replace(
        Config(),
        environment="test",
        public_base_url="https://img.example.com",
        turnstile_secret_key="test-secret",
        storage_limit_bytes=10 * GIB,
    )


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis(server=FakeServer())


@pytest.fixture
def state_store(redis_client: FakeRedis) -> RedisStateStore:
    return RedisStateStore(redis_client)


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def captcha_verifier() -> FakeCaptchaVerifier:
    return FakeCaptchaVerifier()


@pytest.fixture
def stats(config: Config, state_store: RedisStateStore, content_store: InMemoryContentStore, clock: FakeClock):
    return StatsAggregator(config, state_store, content_store, clock=clock)


@pytest.fixture
def expiry_manager(config, state_store, content_store, stats, clock) -> ExpiryManager:
    return ExpiryManager(config, state_store, content_store, stats, clock=clock)


@pytest.fixture
def abuse_gate(config, state_store, captcha_verifier, clock) -> AbuseGate:
    return AbuseGate(config, state_store, captcha_verifier, clock=clock)


@pytest.fixture
def make_pipeline(
    config, state_store, content_store, captcha_verifier, clock
) -> Callable[..., IngestionPipeline]:
    """Build a pipeline over the shared stores; keyword overrides are applied to the config."""

    def _make(**overrides: Any) -> IngestionPipeline:
        cfg = dataclasses.replace(config, **overrides) if overrides else config
        counter = itertools.count(1)
        stats = StatsAggregator(cfg, state_store, content_store, clock=clock)
        expiry = ExpiryManager(cfg, state_store, content_store, stats, clock=clock)
        return IngestionPipeline(
            cfg,
            state_store,
            content_store,
            DedupIndex(cfg, state_store, clock=clock),
            AbuseGate(cfg, state_store, captcha_verifier, clock=clock),
            Transcoder(cfg),
            expiry,
            stats,
            clock=clock,
            code_factory=lambda length: f"code{next(counter):04d}"[:length],
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline) -> IngestionPipeline:
    return make_pipeline()


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    def _make(size: tuple[int, int] = (32, 32), mode: str = "RGB", color: Any = (200, 40, 40)) -> bytes:
        buf = io.BytesIO()
        Image.new(mode, size, color).save(buf, format="PNG")
        return buf.getvalue()

    return _make
