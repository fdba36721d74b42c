import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Tuple

import redis

from config import config


class FolderLockService:
    """
    Mutual exclusion for "look up, then create" on one (parent, name) pair.

    An in-process lock always guards the pair. With FOLDER_LOCKS_BACKEND=redis
    a Redis lock is taken as well, so workers sharing the same Redis wait for
    each other. When Redis is unreachable the service keeps working with the
    in-process lock only and logs the degradation.
    """

    def __init__(self, backend: Optional[str] = None, redis_client=None, timeout: Optional[int] = None):
        self.backend = (backend or config.FOLDER_LOCKS_BACKEND or "memory").lower()
        self.timeout = timeout or config.FOLDER_LOCK_TIMEOUT
        self.client = redis_client
        self._logger = logging.getLogger("erp_drive.locks")
        self._last_failure_logged_at: Optional[float] = None
        self._registry_lock = threading.Lock()
        self._locks: Dict[Tuple[str, str], Tuple[threading.Lock, int]] = {}

        if self.backend == "redis" and self.client is None:
            try:
                self.client = redis.from_url(
                    config.REDIS_URL,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30,
                    client_name="erp-drive-locks",
                )
                self.client.ping()
                self._logger.info("Redis folder locks enabled", extra={"redis_url": config.REDIS_URL})
            except redis.RedisError as e:
                self._log_failure("Redis connection failed, using in-process folder locks", e)
                self.client = None
        elif self.backend != "redis":
            self._logger.info("Using in-process folder locks", extra={"backend": self.backend})

    def _acquire_local(self, key: Tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        return lock

    def _release_local(self, key: Tuple[str, str], lock: threading.Lock) -> None:
        lock.release()
        with self._registry_lock:
            _, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold(self, parent_id: str, name: str) -> Iterator[None]:
        key = (parent_id, name)
        local = self._acquire_local(key)
        remote = None
        try:
            remote = self._acquire_remote(key)
            yield
        finally:
            if remote is not None:
                self._release_remote(remote)
            self._release_local(key, local)

    def _acquire_remote(self, key: Tuple[str, str]):
        if self.client is None:
            return None
        lock = self.client.lock(
            f"erp_drive:folder_lock:{key[0]}:{key[1]}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        try:
            if lock.acquire():
                return lock
            self._logger.warning(
                "Timed out waiting for Redis folder lock", extra={"parent_id": key[0], "folder_name": key[1]}
            )
        except redis.RedisError as e:
            self._log_failure("Redis folder lock unavailable", e)
        return None

    def _release_remote(self, lock) -> None:
        try:
            lock.release()
        except redis.RedisError as e:
            # LockError (expired or stolen) is a RedisError subclass.
            self._log_failure("Redis folder lock release failed", e)

    def _log_failure(self, message: str, exception: Exception) -> None:
        """Log failures without flooding logs."""
        now = time.time()
        if self._last_failure_logged_at is None or now - self._last_failure_logged_at > 60:
            self._last_failure_logged_at = now
            self._logger.warning(message, extra={"error": str(exception)})


_folder_locks: Optional[FolderLockService] = None
_folder_locks_guard = threading.Lock()


def get_folder_locks() -> FolderLockService:
    global _folder_locks
    with _folder_locks_guard:
        if _folder_locks is None:
            _folder_locks = FolderLockService()
        return _folder_locks
