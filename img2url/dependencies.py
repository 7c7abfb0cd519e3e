import logging

from fastapi import Request

from img2url.config import Config
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.ingestion import IngestionPipeline
from img2url.services.stats_aggregator import StatsAggregator


logger = logging.getLogger(__name__)


def get_config(request: Request) -> Config:
    """Extract the application Config from the request."""
    config: Config = request.app.state.config
    return config


def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    pipeline: IngestionPipeline = request.app.state.ingestion_pipeline
    return pipeline


def get_expiry_manager(request: Request) -> ExpiryManager:
    expiry_manager: ExpiryManager = request.app.state.expiry_manager
    return expiry_manager


def get_stats_aggregator(request: Request) -> StatsAggregator:
    stats: StatsAggregator = request.app.state.stats_aggregator
    return stats


def get_client_ip(request: Request) -> str:
    """Extract the real client IP from request headers."""
    # Cloudflare sets CF-Connecting-IP in front of the service
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    xff = request.headers.get("X-Forwarded-For")
    if xff:
        # Take the first IP in the chain (the original client)
        return xff.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    logger.warning(f"Could not find client origin IP for {request.url.path}")
    return "unknown"
