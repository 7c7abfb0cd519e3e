"""Delivery of stored images and reclamation of expired ones.

Expired objects are removed in two places: lazily when someone requests them,
and by a periodic sweep over the whole content store. Both go through
``expire_if_due``. The sweep reclaims objects nobody reads; expire-on-access
stops stale content from being served between sweeps.
The two may race on the same object; deletes are idempotent.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable
from typing import Optional

from img2url.config import Config
from img2url.errors import ObjectExpiredError
from img2url.errors import ObjectNotFoundError
from img2url.errors import ReadRateLimitedError
from img2url.models import ObjectMetadata
from img2url.monitoring import get_metrics_collector
from img2url.services.stats_aggregator import StatsAggregator
from img2url.stores.content_store import IMMUTABLE_CACHE_CONTROL
from img2url.stores.content_store import ContentStore
from img2url.stores.state_store import StateStore
from img2url.utils import epoch_minute
from img2url.utils import epoch_ms
from img2url.utils import parse_int


logger = logging.getLogger(__name__)


def metadata_key(file_name: str) -> str:
    return f"meta:{file_name}"


@dataclass
class FetchResult:
    data: bytes
    content_type: str
    cache_control: str = IMMUTABLE_CACHE_CONTROL


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    failed: int = 0
    pages: int = 0


class ExpiryManager:
    def __init__(
        self,
        config: Config,
        state_store: StateStore,
        content_store: ContentStore,
        stats: StatsAggregator,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.state = state_store
        self.content = content_store
        self.stats = stats
        self.clock = clock

    def _read_rate_key(self, client_ip: str) -> str:
        return f"rate:{client_ip}:{epoch_minute(self.clock())}"

    async def load_metadata(self, file_name: str) -> Optional[ObjectMetadata]:
        raw = await self.state.get(metadata_key(file_name))
        if not raw:
            return None
        try:
            return ObjectMetadata.model_validate_json(raw)
        except ValueError:
            logger.warning(f"Unreadable metadata for {file_name}; treating as non-expiring")
            return None

    async def expire_if_due(self, file_name: str, *, trigger: str = "access") -> bool:
        """Delete the object and its metadata if its expiry has passed.

        Returns True when the metadata showed the object past expiry and both were deleted.
        """
        metadata = await self.load_metadata(file_name)
        if metadata is None or not metadata.is_expired(epoch_ms(self.clock())):
            return False

        await self.content.delete(file_name)
        await self.state.delete(metadata_key(file_name))
        get_metrics_collector().record_expiry(trigger)
        logger.info(f"Expired object removed file={file_name} trigger={trigger} expiry={metadata.expiry_time}")
        return True

    async def _check_read_rate(self, client_ip: str) -> None:
        key = self._read_rate_key(client_ip)
        count = parse_int(await self.state.get(key))
        if count >= self.config.read_rate_per_minute:
            raise ReadRateLimitedError()
        await self.state.put(key, str(count + 1), ttl_seconds=self.config.rate_window_seconds)

    async def fetch(self, file_name: str, client_ip: str) -> FetchResult:
        await self._check_read_rate(client_ip)

        blob = await self.content.get(file_name)
        if blob is None:
            raise ObjectNotFoundError()

        if await self.expire_if_due(file_name, trigger="access"):
            raise ObjectExpiredError()

        try:
            await self.stats.record_read()
        except Exception as e:
            logger.warning(f"Failed to record read for {file_name}: {e}")

        return FetchResult(data=blob.data, content_type=blob.content_type)

    async def sweep(self) -> SweepReport:
        """Walk the full content store listing page by page and expire what is due."""
        report = SweepReport()
        page_token: Optional[str] = None

        while True:
            page = await self.content.list(page_token=page_token, limit=self.config.sweep_page_size)
            report.pages += 1

            for entry in page.entries:
                report.scanned += 1
                try:
                    if await self.expire_if_due(entry.key, trigger="sweep"):
                        report.expired += 1
                except Exception as e:
                    report.failed += 1
                    logger.error(f"Error processing key {entry.key}: {e}")

            if not page.next_page_token or not page.entries:
                break
            page_token = page.next_page_token

        logger.info(
            f"Sweep complete: scanned={report.scanned} expired={report.expired} "
            f"failed={report.failed} pages={report.pages}"
        )
        return report
