"""Usage statistics and maintenance endpoints."""

import logging
import time

from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse

from img2url.dependencies import get_expiry_manager
from img2url.dependencies import get_stats_aggregator
from img2url.errors import json_error_response
from img2url.monitoring import get_metrics_collector
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.stats_aggregator import StatsAggregator
from img2url.utils import format_size


logger = logging.getLogger(__name__)
router = APIRouter(tags=["stats"])


@router.get("/stats")
async def get_stats(stats: StatsAggregator = Depends(get_stats_aggregator)) -> JSONResponse:
    data, cached = await stats.get_stats()
    return JSONResponse({"success": True, "data": data, "cached": cached})


@router.post("/sync-stats")
async def sync_stats(stats: StatsAggregator = Depends(get_stats_aggregator)) -> JSONResponse:
    """Recompute global stats from a full content store listing."""
    try:
        result = await stats.reconcile()
    except Exception:
        logger.exception("Sync stats error")
        return json_error_response(500, "SYNC_FAILED", "Failed to sync stats")

    return JSONResponse(
        {
            "success": True,
            "code": 200,
            "data": {
                "syncedImages": result.count,
                "syncedSize": result.total_size,
                "syncedSizeFormatted": format_size(result.total_size),
                "message": "Stats synced",
            },
        }
    )


@router.post("/cleanup")
async def cleanup(expiry_manager: ExpiryManager = Depends(get_expiry_manager)) -> JSONResponse:
    """Run an expiry sweep on demand."""
    start = time.time()
    try:
        report = await expiry_manager.sweep()
    except Exception:
        logger.exception("Cleanup error")
        get_metrics_collector().record_sweep(time.time() - start, success=False)
        return json_error_response(500, "CLEANUP_FAILED", "Cleanup failed")

    get_metrics_collector().record_sweep(time.time() - start, success=True)
    return JSONResponse(
        {
            "success": True,
            "code": 200,
            "data": {"deletedCount": report.expired, "scanned": report.scanned, "failed": report.failed},
        }
    )
