import threading
from datetime import datetime, timedelta, timezone

import structlog
from redis import Redis

from vpe.db.models import Transfer
from vpe.db.store import ResourceStore
from vpe.services.transfer_service import remove_file
from vpe.utils.redis_lock import RedisLock

LOGGER = structlog.get_logger("vpe.transfer_sweeper")

LOCK_KEY = 'transfer-sweeper'


class TransferSweeper:
    """
    Background thread that deletes transfer sessions older than their
    life time, together with the partial files of uploads.

    stop() sets a flag and wakes the sleeping loop, so shutdown does not
    wait out the interval. A sweep already running is not interrupted.
    """

    def __init__(self, app, interval: float, life_time: float, redis_client: Redis = None):
        self.app = app
        self.interval = interval
        self.life_time = life_time
        self.redis = redis_client
        self._stopped = False
        self._wake = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.serve, name='transfer-sweeper', daemon=True)
        self._thread.start()

    def serve(self):
        LOGGER.info("transfer sweeper started", interval=self.interval, life_time=self.life_time)
        while not self._stopped:
            self._wake.wait(self.interval)
            self._wake.clear()
            if self._stopped:
                break
            try:
                self.sweep_once()
            except Exception as e:
                LOGGER.exception("transfer sweep failed", error=str(e))
        LOGGER.info("transfer sweeper stopped")

    def stop(self, timeout: float = None):
        self._stopped = True
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sweep_once(self, now: datetime = None) -> int:
        """Remove expired sessions. Returns how many were removed."""
        lock = None
        if self.redis is not None:
            lock = RedisLock(self.redis, LOCK_KEY, expire_seconds=max(int(self.interval), 1))
            if not lock.acquire(timeout=0):
                LOGGER.debug("transfer sweep skipped, another process holds the lock")
                return 0
        try:
            with self.app.app_context():
                return self._sweep(now or datetime.now(timezone.utc))
        finally:
            if lock is not None:
                lock.release()

    def _sweep(self, now: datetime) -> int:
        deadline = now - timedelta(seconds=self.life_time)
        removed = 0
        for transfer in ResourceStore.all(Transfer):
            if transfer.created_at() > deadline:
                continue
            if transfer.is_put:
                remove_file(transfer.path)
            ResourceStore.delete(transfer)
            removed += 1
        LOGGER.info("transfer sweep finished", removed=removed)
        return removed
