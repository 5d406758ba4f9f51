"""
Redis run lock so only one sampler runs against a catalog at a time.
"""

import redis
import structlog

from src.core.errors import ConfigurationError

from .models import SamplerConfig

logger = structlog.get_logger(__name__)


class RunLock:
    """Non-blocking Redis lock with a TTL, refreshed while the run is alive"""

    def __init__(self, client: redis.Redis, name: str, ttl_seconds: int = 120):
        self.client = client
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._lock = client.lock(name, timeout=ttl_seconds, blocking=False)

    @classmethod
    def from_config(cls, config: SamplerConfig) -> "RunLock":
        try:
            client = redis.Redis(
                host=config.redis_host,
                port=config.redis_port,
                db=config.redis_db,
                password=config.redis_password,
            )
            client.ping()  # Test connection
            logger.info("Redis run lock initialized", host=config.redis_host, name=config.lock_name)
        except Exception as e:
            logger.error("Failed to initialize Redis", error=str(e))
            raise ConfigurationError(f"Cannot connect to Redis at {config.redis_host}: {e}") from e
        return cls(client, config.lock_name, config.lock_ttl_seconds)

    def acquire(self) -> bool:
        acquired = bool(self._lock.acquire(blocking=False))
        logger.debug("Run lock acquire", name=self.name, acquired=acquired)
        return acquired

    def refresh(self) -> bool:
        """Reset the TTL; False when the lock was lost"""
        try:
            self._lock.reacquire()
            return True
        except redis.exceptions.RedisError as e:
            logger.warning("Run lock lost", name=self.name, error=str(e))
            return False

    def release(self) -> None:
        try:
            self._lock.release()
        except redis.exceptions.RedisError as e:
            logger.warning("Run lock already released", name=self.name, error=str(e))
