import redis
from typing import Any, Optional, Dict, Tuple
from .config import REDIS_HOST, REDIS_PORT, REDIS_DB, TESTING
import os
import json
import logging

logger = logging.getLogger(__name__)

REDIRECT_PREFIX = "redirect:"

CACHE_TTL = int(os.getenv("CACHE_TTL", "3600"))

_memory_cache: Dict[str, Any] = {}

redis_client = None
if not TESTING:
    try:
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            redis_client = redis.from_url(redis_url, decode_responses=True)
            logger.info("Connected to Redis using REDIS_URL")
        else:
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                db=REDIS_DB,
                decode_responses=True
            )
            logger.info(f"Connected to Redis at {REDIS_HOST}:{REDIS_PORT}")
    except Exception as e:
        logger.error(f"Redis connection error: {e}")
        redis_client = None

def set_redirect_cache(short_url: str, url_mapping_id: int, original_url: str) -> None:
    """Кэширование id ссылки и адреса перенаправления"""
    key = f"{REDIRECT_PREFIX}{short_url}"
    value = json.dumps({"id": url_mapping_id, "original_url": original_url})
    if TESTING:
        _memory_cache[key] = value
        return

    if redis_client:
        try:
            redis_client.set(key, value, ex=CACHE_TTL)
        except Exception as e:
            logger.error(f"Error setting redirect cache: {e}")

def get_redirect_cache(short_url: str) -> Optional[Tuple[int, str]]:
    """Получение (id ссылки, адрес перенаправления) из кэша"""
    key = f"{REDIRECT_PREFIX}{short_url}"
    value = None
    if TESTING:
        value = _memory_cache.get(key)
    elif redis_client:
        try:
            value = redis_client.get(key)
        except Exception as e:
            logger.error(f"Error getting redirect from cache: {e}")

    if not value:
        return None
    try:
        data = json.loads(value)
        return int(data["id"]), data["original_url"]
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Malformed redirect cache entry for {short_url}: {e}")
        return None

def delete_redirect_cache(*short_urls: str) -> None:
    """Удаление адресов перенаправления из кэша"""
    keys = [f"{REDIRECT_PREFIX}{short_url}" for short_url in short_urls]
    if not keys:
        return

    if TESTING:
        for key in keys:
            _memory_cache.pop(key, None)
        return

    if redis_client:
        try:
            redis_client.delete(*keys)
        except Exception as e:
            logger.error(f"Error deleting from cache: {e}")

def ping() -> bool:
    """Проверка доступности Redis"""
    if TESTING:
        return True
    if not redis_client:
        return False
    try:
        return bool(redis_client.ping())
    except Exception as e:
        logger.error(f"Redis ping failed: {e}")
        return False
