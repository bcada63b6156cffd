import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "blacklist:"


def blacklist_key(token: str) -> str:
    # Only the token digest is ever stored
    return BLACKLIST_PREFIX + hashlib.sha256(token.encode("utf-8")).hexdigest()


class RedisService:
    """Revoked-token store. Every operation degrades to a no-op when Redis is unreachable."""

    def __init__(self, redis_url: Optional[str] = None, default_ttl_minutes: int = 60):
        self.redis_url = redis_url
        self.default_ttl_minutes = default_ttl_minutes
        self.redis_client = None
        self.connect()

    def connect(self):
        if not self.redis_url:
            logger.warning("No Redis URL provided, token revocation disabled")
            return
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
            self.redis_client.ping()
            logger.info("Redis connected successfully")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}")
            self.redis_client = None

    @property
    def available(self) -> bool:
        return self.redis_client is not None

    def ping(self) -> bool:
        if not self.available:
            return False
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False

    def blacklist_token(self, token: str, expires_in_minutes: Optional[int] = None) -> bool:
        """Revoke a token until it would have expired anyway"""
        if not self.available:
            return False
        ttl_minutes = self.default_ttl_minutes if expires_in_minutes is None else expires_in_minutes
        record = {
            "revoked_at": datetime.now(timezone.utc).isoformat(),
            "reason": "user_logout",
        }
        try:
            return bool(self.redis_client.setex(
                blacklist_key(token),
                max(1, ttl_minutes * 60),
                json.dumps(record),
            ))
        except redis.RedisError as e:
            logger.error(f"Redis blacklist error: {e}")
            return False

    def is_token_blacklisted(self, token: str) -> bool:
        if not self.available:
            return False
        try:
            return self.redis_client.exists(blacklist_key(token)) > 0
        except redis.RedisError as e:
            logger.error(f"Redis blacklist check error: {e}")
            return False
