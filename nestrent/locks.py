# Locking helpers that serialize booking writes per apartment.
# The in-process lock is always taken; the Redis lock additionally gates other processes
# and fails open so the application stays available if Redis is down.
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator
from uuid import uuid4

from .redis_client import get_redis

logger = logging.getLogger("nestrent.locks")

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

# Poll interval while waiting for a Redis lock held by another process
_RETRY_INTERVAL_S = 0.05


class _LocalEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


# Per-apartment locks; an entry lives only while some thread holds or waits on it
_local_locks: Dict[int, _LocalEntry] = {}
_registry_guard = threading.Lock()


@contextmanager
def _local_lock(apartment_id: int) -> Iterator[None]:
    with _registry_guard:
        entry = _local_locks.get(apartment_id)
        if entry is None:
            entry = _local_locks[apartment_id] = _LocalEntry()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _registry_guard:
            entry.users -= 1
            if entry.users == 0:
                del _local_locks[apartment_id]


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000, wait_ms: int = 0) -> Iterator[bool]:
    """
    Best-effort distributed lock implemented with Redis SET NX PX.

    Retries for up to wait_ms while another process holds the key.

    Yields:
    - True when the lock is acquired, or when Redis is unavailable (fail-open).
    - False when another process still holds the lock after waiting.

    Release uses a token-checked Lua script so we never delete a lock we don't own.
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    deadline = time.monotonic() + wait_ms / 1000.0
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
        while not acquired and time.monotonic() < deadline:
            time.sleep(_RETRY_INTERVAL_S)
            acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except Exception as exc:
        logger.warning("redis_try_lock error (key=%s): %s", key, exc)
        acquired = None

    if acquired is None:
        yield True
        return
    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except Exception as exc:
                # The lock will expire by TTL
                logger.debug("redis_try_lock release error (key=%s): %s", key, exc)


@contextmanager
def apartment_lock(apartment_id: int, ttl_ms: int = 5000, wait_ms: int = 0) -> Iterator[bool]:
    """
    Serialize booking check-and-insert for one apartment.

    Blocks on the in-process lock, then tries the cross-process Redis lock for up to wait_ms.
    Yields False only when another process kept the Redis lock for the whole wait.
    Requests for different apartments never contend.
    """
    with _local_lock(apartment_id):
        with redis_try_lock(f"lock:booking:apartment:{apartment_id}", ttl_ms=ttl_ms, wait_ms=wait_ms) as locked:
            yield locked
