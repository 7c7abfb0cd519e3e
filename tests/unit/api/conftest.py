from typing import Any

import pytest
from fastapi import FastAPI


@pytest.fixture
def api_app(config, make_pipeline, expiry_manager, stats) -> Any:
    from img2url.api.delivery import router as delivery_router
    from img2url.api.middlewares import cors_middleware
    from img2url.api.middlewares import ray_id_middleware
    from img2url.api.stats import router as stats_router
    from img2url.api.upload import router as upload_router

    app = FastAPI()
    app.middleware("http")(cors_middleware)
    app.middleware("http")(ray_id_middleware)
    app.include_router(upload_router, prefix="")
    app.include_router(stats_router, prefix="")
    app.include_router(delivery_router, prefix="")

    app.state.config = config
    app.state.ingestion_pipeline = make_pipeline()
    app.state.expiry_manager = expiry_manager
    app.state.stats_aggregator = stats
    return app
