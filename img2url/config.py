import dataclasses

import dotenv

from img2url.utils import as_bool
from img2url.utils import env


dotenv.load_dotenv()

MIB = 1024 * 1024
GIB = 1024 * MIB
DAY_SECONDS = 24 * 60 * 60


@dataclasses.dataclass
class Config:
    """Application configuration settings."""

    # Server Configuration
    host: str = env("HOST:0.0.0.0")
    port: int = env("PORT:8000", convert=int)
    environment: str = env("ENVIRONMENT:development")
    debug: bool = env("DEBUG:false", convert=as_bool)
    enable_api_docs: bool = env("ENABLE_API_DOCS:false", convert=as_bool)
    cors_origin: str = env("CORS_ORIGIN:*")

    # Public URL prefix for short links
    public_base_url: str = env("CUSTOM_DOMAIN:http://localhost:8000")

    # Logging
    log_level: str = env("LOG_LEVEL:INFO")
    loki_url: str = env("LOKI_URL:", convert=str)
    loki_enabled: bool = env("LOKI_ENABLED:false", convert=as_bool)

    # Redis backs the state store (metadata, hash index, counters, caches)
    redis_url: str = env("REDIS_URL:redis://127.0.0.1:6379/0")

    # S3-compatible content store (Cloudflare R2, MinIO, AWS)
    content_bucket: str = env("R2_BUCKET:img2url")
    content_endpoint_url: str = env("R2_ENDPOINT:", convert=str)
    content_access_key_id: str = env("R2_ACCESS_KEY_ID:", convert=str)
    content_secret_access_key: str = env("R2_SECRET_ACCESS_KEY:", convert=str)
    content_region: str = env("R2_REGION:auto")

    # Turnstile CAPTCHA oracle
    turnstile_secret_key: str = env("TURNSTILE_SECRET_KEY:", convert=str)
    turnstile_verify_url: str = env(
        "TURNSTILE_VERIFY_URL:https://challenges.cloudflare.com/turnstile/v0/siteverify", convert=str
    )
    turnstile_timeout_seconds: float = env("TURNSTILE_TIMEOUT_SECONDS:10", convert=float)
    captcha_token_ttl_seconds: int = env("CAPTCHA_TOKEN_TTL_SECONDS:300", convert=int)

    # Upload validation
    max_upload_bytes: int = env(f"MAX_UPLOAD_BYTES:{10 * MIB}", convert=int)

    # Abuse gate (per IP, per UTC day)
    daily_upload_limit: int = env("DAILY_UPLOAD_LIMIT:500", convert=int)
    captcha_threshold: int = env("CAPTCHA_THRESHOLD:300", convert=int)
    captcha_interval: int = env("CAPTCHA_INTERVAL:50", convert=int)
    quota_ttl_seconds: int = env(f"QUOTA_TTL_SECONDS:{DAY_SECONDS}", convert=int)
    upload_rate_per_minute: int = env("UPLOAD_RATE_PER_MINUTE:30", convert=int)
    read_rate_per_minute: int = env("READ_RATE_PER_MINUTE:100", convert=int)
    rate_window_seconds = 60

    # Capacity
    storage_limit_bytes: int = env(f"STORAGE_LIMIT_BYTES:{10 * GIB}", convert=int)
    storage_full_ratio: float = env("STORAGE_FULL_RATIO:0.95", convert=float)
    read_limit_per_day: int = env("READ_LIMIT_PER_DAY:1000000", convert=int)

    # Storage format
    short_code_length = 8
    output_extension = "webp"
    output_content_type = "image/webp"
    output_format = "WEBP"
    quality_high: int = env("TRANSCODE_QUALITY_HIGH:85", convert=int)
    quality_medium: int = env("TRANSCODE_QUALITY_MEDIUM:80", convert=int)
    quality_low: int = env("TRANSCODE_QUALITY_LOW:75", convert=int)
    # Store the declared type instead of image/webp when transcoding falls back to the raw bytes
    label_passthrough_with_original_type: bool = env("LABEL_PASSTHROUGH_WITH_ORIGINAL_TYPE:false", convert=as_bool)

    # TTLs
    hash_index_ttl_seconds: int = env(f"HASH_INDEX_TTL_SECONDS:{30 * DAY_SECONDS}", convert=int)
    permanent_metadata_ttl_seconds: int = env(f"PERMANENT_METADATA_TTL_SECONDS:{365 * DAY_SECONDS}", convert=int)
    metadata_ttl_grace_seconds: int = env(f"METADATA_TTL_GRACE_SECONDS:{7 * DAY_SECONDS}", convert=int)
    global_stats_ttl_seconds: int = env(f"GLOBAL_STATS_TTL_SECONDS:{365 * DAY_SECONDS}", convert=int)
    stats_cache_ttl_seconds: int = env("STATS_CACHE_TTL_SECONDS:300", convert=int)
    read_counter_ttl_seconds: int = env(f"READ_COUNTER_TTL_SECONDS:{2 * DAY_SECONDS}", convert=int)

    # Listing
    stats_list_page_size: int = env("STATS_LIST_PAGE_SIZE:1000", convert=int)
    stats_list_max_pages: int = env("STATS_LIST_MAX_PAGES:100", convert=int)
    sync_list_max_pages: int = env("SYNC_LIST_MAX_PAGES:10000", convert=int)
    sweep_page_size: int = env("SWEEP_PAGE_SIZE:1000", convert=int)

    # worker specific settings
    sweep_interval_seconds: int = env("SWEEP_INTERVAL_SECONDS:3600", convert=int)

    def capacity_threshold_bytes(self) -> float:
        return self.storage_limit_bytes * self.storage_full_ratio


def get_config() -> Config:
    """Get application configuration."""
    cfg = Config()

    env_value = getattr(cfg, "environment", None)
    if not env_value or not env_value.strip():
        raise ValueError("ENVIRONMENT variable is required but not set or empty")

    if cfg.captcha_interval <= 0:
        raise ValueError("CAPTCHA_INTERVAL must be a positive integer")

    return cfg
