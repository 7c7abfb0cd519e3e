"""Approximate global usage statistics.

Two sources feed the numbers:

- ``global:stats``: an incremental record bumped on every successful upload.
  It is a read-then-write counter, so concurrent uploads can lose increments.
- a listing of the content store, which is authoritative but expensive.

``get_stats`` reports the larger of the two (a bounded listing guards against
an incremental record that drifted low) and caches the derived view for a few
minutes. ``reconcile`` walks the full listing and overwrites the incremental
record. Everything here is secondary to serving uploads and images, so read
failures degrade to zeros instead of failing the caller.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any
from typing import Callable
from typing import Optional

from img2url.config import Config
from img2url.models import GlobalStatsRecord
from img2url.models import StatsCacheRecord
from img2url.models import StatsView
from img2url.stores.content_store import ContentStore
from img2url.stores.state_store import StateStore
from img2url.utils import epoch_ms
from img2url.utils import format_size
from img2url.utils import parse_int
from img2url.utils import utc_date


logger = logging.getLogger(__name__)

GLOBAL_STATS_KEY = "global:stats"
STATS_CACHE_KEY = "stats:cache"


@dataclass
class ReconcileResult:
    count: int
    total_size: int
    pages: int


def build_warnings(total_size: int, storage_limit: int, read_count: int, read_limit: int) -> list[str]:
    warnings: list[str] = []
    storage_percent = (total_size / storage_limit) * 100 if storage_limit else 0.0
    read_percent = (read_count / read_limit) * 100 if read_limit else 0.0

    if storage_percent >= 90:
        warnings.append("Storage usage is above 90%, please clean up images!")
    elif storage_percent >= 70:
        warnings.append("Storage usage is above 70%, consider removing old images.")

    if read_percent >= 90:
        warnings.append("Daily read count is close to the limit!")
    elif read_percent >= 70:
        warnings.append("Daily read count is high, please watch usage.")

    return warnings


class StatsAggregator:
    def __init__(
        self,
        config: Config,
        state_store: StateStore,
        content_store: ContentStore,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.state = state_store
        self.content = content_store
        self.clock = clock

    def _read_counter_key(self) -> str:
        return f"stats:{utc_date(self.clock())}"

    async def read_global_stats(self) -> GlobalStatsRecord:
        try:
            raw = await self.state.get(GLOBAL_STATS_KEY)
        except Exception as e:
            logger.warning(f"Error reading global stats, assuming zero: {e}")
            return GlobalStatsRecord()
        if not raw:
            return GlobalStatsRecord()
        try:
            return GlobalStatsRecord.model_validate_json(raw)
        except ValueError as e:
            logger.error(f"Error parsing global stats: {e}")
            return GlobalStatsRecord()

    async def total_stored_size(self) -> int:
        return (await self.read_global_stats()).total_size

    async def _write_global_stats(self, total_size: int, count: int) -> None:
        record = GlobalStatsRecord(total_size=total_size, count=count, last_update=epoch_ms(self.clock()))
        await self.state.put(GLOBAL_STATS_KEY, record.to_json(), ttl_seconds=self.config.global_stats_ttl_seconds)

    async def record_ingestion(self, size_delta: int, count_delta: int = 1) -> None:
        try:
            current = await self.read_global_stats()
            await self._write_global_stats(current.total_size + size_delta, current.count + count_delta)
            await self.invalidate_cache()
        except Exception as e:
            logger.error(f"Error updating stats: {e}")

    async def invalidate_cache(self) -> None:
        await self.state.delete(STATS_CACHE_KEY)

    async def read_count_today(self) -> int:
        try:
            return parse_int(await self.state.get(self._read_counter_key()))
        except Exception as e:
            logger.warning(f"Error reading daily read counter: {e}")
            return 0

    async def record_read(self) -> int:
        key = self._read_counter_key()
        read_count = parse_int(await self.state.get(key))
        if read_count >= self.config.read_limit_per_day * 0.95:
            logger.warning(f"Read limit nearly reached: {read_count}/{self.config.read_limit_per_day}")
        await self.state.put(key, str(read_count + 1), ttl_seconds=self.config.read_counter_ttl_seconds)
        return read_count + 1

    async def _list_totals(self, max_pages: int) -> tuple[int, int, int]:
        count = 0
        total_size = 0
        pages = 0
        page_token: Optional[str] = None

        while pages < max_pages:
            page = await self.content.list(page_token=page_token, limit=self.config.stats_list_page_size)
            pages += 1
            for entry in page.entries:
                count += 1
                total_size += entry.size or 0
            if not page.next_page_token or not page.entries:
                break
            page_token = page.next_page_token
        else:
            logger.warning(f"Listing stopped after {max_pages} pages; totals may be partial")

        return count, total_size, pages

    async def _read_cache(self) -> Optional[dict[str, Any]]:
        try:
            raw = await self.state.get(STATS_CACHE_KEY)
            if not raw:
                return None
            cached = StatsCacheRecord.model_validate_json(raw)
        except Exception as e:
            logger.warning(f"Ignoring unreadable stats cache: {e}")
            return None

        age_ms = epoch_ms(self.clock()) - cached.last_update
        if age_ms < self.config.stats_cache_ttl_seconds * 1000:
            return cached.data
        return None

    def _empty_view(self) -> StatsView:
        return StatsView(
            count=0,
            total_size=0,
            total_size_formatted=format_size(0),
            storage_usage=0.0,
            read_count=0,
            read_limit=self.config.read_limit_per_day,
            read_usage=0.0,
            limits={"storage": format_size(self.config.storage_limit_bytes), "read": self.config.read_limit_per_day},
            warnings=[],
        )

    async def get_stats(self) -> tuple[dict[str, Any], bool]:
        """Return ``(view, cached)``; never raises."""
        try:
            cached = await self._read_cache()
            if cached is not None:
                return cached, True

            incremental = await self.read_global_stats()

            listed_count, listed_size = 0, 0
            try:
                listed_count, listed_size, _ = await self._list_totals(self.config.stats_list_max_pages)
            except Exception as e:
                logger.error(f"Error listing content store: {e}")

            final_count = max(incremental.count, listed_count)
            final_size = max(incremental.total_size, listed_size)
            read_count = await self.read_count_today()

            storage_limit = self.config.storage_limit_bytes
            read_limit = self.config.read_limit_per_day
            view = StatsView(
                count=final_count,
                total_size=final_size,
                total_size_formatted=format_size(final_size),
                storage_usage=(final_size / storage_limit) * 100,
                read_count=read_count,
                read_limit=read_limit,
                read_usage=(read_count / read_limit) * 100,
                limits={"storage": format_size(storage_limit), "read": read_limit},
                warnings=build_warnings(final_size, storage_limit, read_count, read_limit),
            ).to_dict()

            try:
                cache_record = StatsCacheRecord(data=view, last_update=epoch_ms(self.clock()))
                await self.state.put(
                    STATS_CACHE_KEY, cache_record.to_json(), ttl_seconds=self.config.stats_cache_ttl_seconds
                )
            except Exception as e:
                logger.warning(f"Failed to cache stats: {e}")

            return view, False
        except Exception:
            logger.exception("Stats error")
            return self._empty_view().to_dict(), False

    async def reconcile(self) -> ReconcileResult:
        """Recompute totals from a full listing and overwrite the incremental record."""
        count, total_size, pages = await self._list_totals(self.config.sync_list_max_pages)
        await self._write_global_stats(total_size, count)
        await self.invalidate_cache()
        logger.info(f"Stats reconciled: count={count} total_size={total_size} pages={pages}")
        return ReconcileResult(count=count, total_size=total_size, pages=pages)
