import time
import uuid
from redis import Redis

class RedisLock:
    def __init__(self, redis_client: Redis, lock_key: str, expire_seconds: int = 30):
        """
        Initialize a Redis-based lock shared by every server process
        :param redis_client: Redis client instance
        :param lock_key: Unique key for the lock
        :param expire_seconds: Lock expiry time in seconds (default: 30)
        """
        self.redis = redis_client
        self.lock_key = f"vpe:lock:{lock_key}"
        self.expire_seconds = expire_seconds
        self._token = None

    def acquire(self, timeout: float = 10, retry_delay: float = 0.5) -> bool:
        """
        Acquire the lock, trying at least once
        :param timeout: Maximum time to wait for lock in seconds (0 = single attempt)
        :param retry_delay: Time to wait between retries in seconds
        :return: True if lock acquired, False otherwise
        """
        token = uuid.uuid4().hex
        end_time = time.time() + timeout

        while True:
            success = self.redis.set(
                self.lock_key,
                token,
                ex=self.expire_seconds,
                nx=True  # Only set if key doesn't exist
            )
            if success:
                self._token = token
                return True
            if time.time() + retry_delay > end_time:
                return False
            time.sleep(retry_delay)

    def release(self) -> bool:
        """
        Release the lock if owned and not already taken over after expiry
        :return: True if lock was released, False if not owned
        """
        if self._token is None:
            return False

        current = self.redis.get(self.lock_key)
        if isinstance(current, bytes):
            current = current.decode()
        released = current == self._token
        if released:
            self.redis.delete(self.lock_key)
        self._token = None
        return released

    def __enter__(self):
        """Context manager entry"""
        success = self.acquire()
        if not success:
            raise TimeoutError(f"Could not acquire lock for {self.lock_key}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.release()
