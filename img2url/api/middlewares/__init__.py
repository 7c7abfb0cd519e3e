from img2url.api.middlewares.cors import cors_middleware
from img2url.api.middlewares.metrics import metrics_middleware
from img2url.api.middlewares.ray_id import ray_id_middleware


__all__ = [
    "cors_middleware",
    "metrics_middleware",
    "ray_id_middleware",
]
