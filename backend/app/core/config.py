import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str | None
    redis_prefix: str
    db_pool_min: int
    db_pool_max: int
    db_pool_timeout: float
    db_pool_max_waiting: int
    list_cache_ttl: int
    log_level: str
    log_dir: str | None
    cors_origins: tuple[str, ...]


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL", "")
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")

    db_pool_min = max(1, int(os.getenv("DB_POOL_MIN", "1")))
    db_pool_max = max(db_pool_min, int(os.getenv("DB_POOL_MAX", "10")))

    cors_raw = os.getenv("CORS_ORIGINS") or ""
    cors_origins = tuple(origin.strip() for origin in cors_raw.split(",") if origin.strip())

    return Settings(
        database_url=database_url,
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        redis_prefix=(os.getenv("REDIS_PREFIX") or "wallet").strip() or "wallet",
        db_pool_min=db_pool_min,
        db_pool_max=db_pool_max,
        db_pool_timeout=float(os.getenv("DB_POOL_TIMEOUT", "30")),
        db_pool_max_waiting=int(os.getenv("DB_POOL_MAX_WAITING", "100")),
        list_cache_ttl=max(1, int(os.getenv("LIST_CACHE_TTL", "30"))),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper() or "INFO",
        log_dir=(os.getenv("LOG_DIR") or "").strip() or None,
        cors_origins=cors_origins,
    )


settings = load_settings()
