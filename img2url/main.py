"""Main application module for the img2url service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from typing import Optional

import redis.asyncio as async_redis
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi import Response
from fastapi.responses import JSONResponse

from img2url.api.delivery import router as delivery_router
from img2url.api.middlewares import cors_middleware
from img2url.api.middlewares import metrics_middleware
from img2url.api.middlewares import ray_id_middleware
from img2url.api.stats import router as stats_router
from img2url.api.upload import router as upload_router
from img2url.config import Config
from img2url.config import get_config
from img2url.logging_config import setup_loki_logging
from img2url.services.abuse_gate import AbuseGate
from img2url.services.captcha_client import CaptchaVerifier
from img2url.services.captcha_client import TurnstileClient
from img2url.services.dedup_index import DedupIndex
from img2url.services.expiry_manager import ExpiryManager
from img2url.services.ingestion import IngestionPipeline
from img2url.services.stats_aggregator import StatsAggregator
from img2url.services.transcoder import Transcoder
from img2url.stores import ContentStore
from img2url.stores import RedisStateStore
from img2url.stores import S3ContentStore
from img2url.stores import StateStore


logger = logging.getLogger(__name__)


def attach_services(
    app: FastAPI,
    config: Config,
    state_store: StateStore,
    content_store: ContentStore,
    captcha_verifier: Optional[CaptchaVerifier],
) -> None:
    """Build the service graph over the given stores and hang it on app.state."""
    stats = StatsAggregator(config, state_store, content_store)
    expiry_manager = ExpiryManager(config, state_store, content_store, stats)

    app.state.config = config
    app.state.state_store = state_store
    app.state.content_store = content_store
    app.state.stats_aggregator = stats
    app.state.expiry_manager = expiry_manager
    app.state.ingestion_pipeline = IngestionPipeline(
        config,
        state_store,
        content_store,
        DedupIndex(config, state_store),
        AbuseGate(config, state_store, captcha_verifier),
        Transcoder(config),
        expiry_manager,
        stats,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI application lifespan handler."""
    try:
        config = get_config()

        app.state.redis_client = async_redis.from_url(config.redis_url)
        logger.info("Redis client initialized")

        content_store = S3ContentStore.from_config(config)
        logger.info(f"Content store initialized bucket={config.content_bucket}")

        app.state.turnstile_client = None
        if config.turnstile_secret_key:
            app.state.turnstile_client = TurnstileClient(
                config.turnstile_secret_key,
                config.turnstile_verify_url,
                timeout_seconds=config.turnstile_timeout_seconds,
            )
            logger.info("Turnstile client initialized")
        else:
            logger.warning("TURNSTILE_SECRET_KEY not set; challenged uploads will fail with CONFIG_ERROR")

        attach_services(
            app,
            config,
            RedisStateStore(app.state.redis_client),
            content_store,
            app.state.turnstile_client,
        )

        from img2url.monitoring import MetricsCollector
        from img2url.monitoring import set_metrics_collector

        app.state.metrics_collector = MetricsCollector()
        set_metrics_collector(app.state.metrics_collector)
        logger.info("Metrics collector initialized")

        yield

    finally:
        try:
            if getattr(app.state, "turnstile_client", None) is not None:
                await app.state.turnstile_client.close()
                logger.info("Turnstile client closed")
        except Exception:
            logger.exception("Error shutting down Turnstile client")

        try:
            await app.state.redis_client.close()
            logger.info("Redis client closed")
        except Exception:
            logger.exception("Error shutting down Redis client")


def factory() -> FastAPI:
    """Factory function to create and configure the FastAPI application."""
    load_dotenv()
    config = get_config()
    setup_loki_logging(config, "api")

    app = FastAPI(
        title="img2url",
        description="Image upload and short link service",
        docs_url="/docs" if config.enable_api_docs else None,
        redoc_url="/redoc" if config.enable_api_docs else None,
        lifespan=lifespan,
        debug=config.debug,
        default_response_class=Response,
    )

    # middleware("http") executes in REVERSE order
    app.middleware("http")(metrics_middleware)
    app.middleware("http")(cors_middleware)
    app.middleware("http")(ray_id_middleware)

    @app.get("/health", include_in_schema=False, response_class=JSONResponse)
    async def health():
        """Health check endpoint for monitoring."""
        return JSONResponse(content={"status": "healthy"})

    app.include_router(upload_router, prefix="")
    app.include_router(stats_router, prefix="")
    # Catch-all short link route goes last
    app.include_router(delivery_router, prefix="")

    return app


app = factory()
