"""
Client Redis pour la persistance des sessions de caisse.
- USE_FAKE_REDIS=1 (ou fake=True): fakeredis en mémoire (tests, mode démo)
- sinon redis.from_url(REDIS_URL)
"""
from typing import Optional
import redis

from caisse.config import REDIS_URL, USE_FAKE_REDIS

_redis: Optional[redis.Redis] = None

def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = make_redis(fake=USE_FAKE_REDIS)
    return _redis

def make_redis(fake: bool = False) -> redis.Redis:
    if fake:
        import fakeredis
        return fakeredis.FakeRedis(decode_responses=True)
    return redis.from_url(REDIS_URL, encoding="utf-8", decode_responses=True)
