from redis import Redis
from app.config import settings

LEGACY_SCAN_MATCH = "*"

def legacy_redis_client(url: str = settings.legacy_redis_url) -> Redis:
    """Client for the key-value store mappings are migrated from."""
    return Redis.from_url(url, decode_responses=True)
