#!/usr/bin/env python3
"""Sweeper task that reclaims expired images.

Runs an expiry sweep over the whole content store on a fixed interval, so
images nobody requests after their expiry still get deleted.
"""

import asyncio
import logging
import sys
import time
from pathlib import Path

import redis.asyncio as async_redis


sys.path.insert(0, str(Path(__file__).parent.parent))

from img2url.config import get_config
from img2url.logging_config import setup_loki_logging
from img2url.monitoring import MetricsCollector
from img2url.monitoring import get_metrics_collector
from img2url.monitoring import set_metrics_collector
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.expiry_manager import SweepReport
from img2url.services.stats_aggregator import StatsAggregator
from img2url.stores import RedisStateStore
from img2url.stores import S3ContentStore


config = get_config()
setup_loki_logging(config, "sweeper")
logger = logging.getLogger(__name__)


async def run_sweep_once(expiry_manager: ExpiryManager) -> SweepReport:
    start = time.time()
    try:
        report = await expiry_manager.sweep()
    except Exception:
        get_metrics_collector().record_sweep(time.time() - start, success=False)
        raise
    get_metrics_collector().record_sweep(time.time() - start, success=True)
    return report


async def run_sweeper_loop():
    """Main sweeper loop: sweep immediately on start, then every interval."""
    redis_client = async_redis.from_url(config.redis_url)
    state_store = RedisStateStore(redis_client)
    content_store = S3ContentStore.from_config(config)
    stats = StatsAggregator(config, state_store, content_store)
    expiry_manager = ExpiryManager(config, state_store, content_store, stats)

    try:
        set_metrics_collector(MetricsCollector())
    except Exception:
        logger.debug("Metrics initialization failed; continuing without metrics", exc_info=True)

    logger.info("Starting sweeper service...")
    logger.info(f"Bucket: {config.content_bucket}")
    logger.info(f"Sweep interval: {config.sweep_interval_seconds}s")

    while True:
        try:
            logger.info("Sweep cycle starting...")
            report = await run_sweep_once(expiry_manager)
            logger.info(f"Sweep cycle complete: expired={report.expired} scanned={report.scanned}")
        except Exception as e:
            logger.error(f"Sweep cycle error: {e}", exc_info=True)

        logger.info(f"Sweeper sleeping {config.sweep_interval_seconds}s until next cycle...")
        await asyncio.sleep(config.sweep_interval_seconds)


if __name__ == "__main__":
    asyncio.run(run_sweeper_loop())
