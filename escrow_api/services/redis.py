# SPDX-License-Identifier: Apache-2.0

"""
Redis service for the JWT token blocklist and request rate limiting.

Every operation degrades gracefully: when Redis is unreachable the service
logs and returns a neutral value, and callers decide whether to fail open
(rate limiting) or fail secure (token blocklist).
"""

import os
import json
import time
from typing import Optional, Any, Dict, Union, List
import redis
from opentelemetry import trace
import logging

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class RedisConnectionError(Exception):
    """Raised when Redis connection fails."""
    pass


class RedisService:
    """Redis service built on the standard redis-py client."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize the Redis service.

        Args:
            redis_url: Redis connection URL (redis://host:port)
            client: Pre-built client, skips connection testing
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")

        if client is not None:
            self.client = client
            return

        try:
            self.client = redis.from_url(self.redis_url, decode_responses=True)
            self._test_connection()
            logger.info(f"Redis service initialized successfully at {self.redis_url}")

        except Exception as e:
            logger.error(f"Failed to initialize Redis service: {str(e)}")
            self.client = None

    def _test_connection(self) -> None:
        """Test Redis connection."""
        if not self.client:
            return

        try:
            if not self.client.ping():
                raise RedisConnectionError("Redis ping failed")
        except Exception as e:
            logger.error(f"Redis connection test failed: {str(e)}")
            raise RedisConnectionError(f"Redis connection failed: {str(e)}")

    def ping(self) -> bool:
        """Ping Redis; raises if the server is unreachable."""
        if not self.client:
            raise RedisConnectionError("Redis client not available")
        return bool(self.client.ping())

    def get_info(self) -> Dict[str, Any]:
        """Return the subset of INFO used by health checks."""
        if not self.client:
            return {}
        info = self.client.info()
        return {
            'redis_version': info.get('redis_version'),
            'connected_clients': info.get('connected_clients'),
            'used_memory_human': info.get('used_memory_human'),
        }

    def set_with_ttl(self, key: str, value: Union[str, Dict, List], ttl: Optional[int] = None) -> bool:
        """
        Set a key-value pair in Redis.

        Args:
            key: Redis key
            value: Value to store (will be JSON serialized if not string)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.client:
            logger.warning("Redis client not available, skipping set operation")
            return False

        with tracer.start_as_current_span("redis.set") as span:
            span.set_attributes({
                "redis.key": key,
                "redis.ttl": ttl or 0
            })

            try:
                if isinstance(value, (dict, list)):
                    value = json.dumps(value)

                if ttl:
                    result = self.client.setex(key, ttl, value)
                else:
                    result = self.client.set(key, value)

                span.set_attribute("redis.result", "success")
                return bool(result)

            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis set failed for key {key}: {str(e)}")
                return False

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from Redis.

        Args:
            key: Redis key

        Returns:
            Value if found, None otherwise
        """
        if not self.client:
            logger.warning("Redis client not available, skipping get operation")
            return None

        with tracer.start_as_current_span("redis.get") as span:
            span.set_attribute("redis.key", key)

            try:
                value = self.client.get(key)

                if value is None:
                    span.set_attribute("redis.result", "not_found")
                    return None

                try:
                    return json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    return value

            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis get failed for key {key}: {str(e)}")
                return None

    def increment(self, key: str, ttl: int) -> int:
        """
        Atomically increment a counter, setting its TTL on first use.

        Raises:
            RedisConnectionError: If Redis is not available
        """
        if not self.client:
            raise RedisConnectionError("Redis client not available")

        with tracer.start_as_current_span("redis.increment") as span:
            span.set_attributes({"redis.key": key, "redis.ttl": ttl})
            count = int(self.client.incr(key))
            if count == 1:
                self.client.expire(key, ttl)
            return count

    def delete(self, key: str) -> bool:
        """Delete a key from Redis."""
        if not self.client:
            logger.warning("Redis client not available, skipping delete operation")
            return False

        with tracer.start_as_current_span("redis.delete") as span:
            span.set_attribute("redis.key", key)

            try:
                result = self.client.delete(key)
                span.set_attribute("redis.result", "success")
                return bool(result)

            except Exception as e:
                span.set_attribute("redis.result", "error")
                logger.error(f"Redis delete failed for key {key}: {str(e)}")
                return False

    # JWT Token Blocklist Methods

    def add_to_blocklist(self, jti: str, exp: int) -> bool:
        """
        Add a JWT token to the blocklist.

        Args:
            jti: JWT ID (unique token identifier)
            exp: Token expiration timestamp

        Returns:
            True if successful, False otherwise
        """
        ttl = max(0, exp - int(time.time()))
        if ttl <= 0:
            return True  # Token already expired

        return self.set_with_ttl(f"blocklist:jwt:{jti}", "blocked", ttl)

    def is_token_blocked(self, jti: str) -> bool:
        """
        Check if a JWT token is in the blocklist.

        Raises:
            RedisConnectionError: If Redis cannot be queried
        """
        if not self.client:
            raise RedisConnectionError("Redis client not available")
        return bool(self.client.exists(f"blocklist:jwt:{jti}"))
