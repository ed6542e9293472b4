import hashlib
import json
import logging
import os
from typing import Optional

import redis

from crawlkit.url import Url

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
CACHE_TTL = int(os.getenv("CACHE_TTL_SECONDS", "3600"))  # 1 hour default
KEY_PREFIX = "crawlkit:doc:"

# module-level client; None if Redis is unavailable (cache degrades gracefully)
_client: Optional[redis.Redis] = None


def get_client() -> Optional[redis.Redis]:
    global _client
    if _client is None:
        try:
            _client = redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=2)
            _client.ping()
        except redis.RedisError as exc:
            logger.warning("Redis unavailable, caching disabled: %s", exc)
            _client = None
    return _client


def cache_key(url: str) -> str:
    # "http://example.com/" and "http://example.com" are the same page
    normalised = Url(url).without_trailing_slash()
    digest = hashlib.sha256(normalised.encode()).hexdigest()[:16]
    return f"{KEY_PREFIX}{digest}"


def get_cached(url: str) -> Optional[dict]:
    """The stored Document record for url, or None on a miss or any Redis problem."""
    client = get_client()
    if client is None:
        return None
    try:
        raw = client.get(cache_key(url))
        return json.loads(raw) if raw else None
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Cache read error: %s", exc)
        return None


def set_cached(url: str, record: dict, ttl: int = CACHE_TTL) -> None:
    client = get_client()
    if client is None:
        return
    try:
        client.setex(cache_key(url), ttl, json.dumps(record))
    except (redis.RedisError, TypeError) as exc:
        logger.warning("Cache write error: %s", exc)


def is_cache_healthy() -> bool:
    client = get_client()
    if client is None:
        return False
    try:
        client.ping()
        return True
    except redis.RedisError:
        return False
