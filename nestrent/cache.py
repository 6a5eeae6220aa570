# Short-lived key/value state (typing indicators) behind a small interface.
# In-process storage is bounded by capacity (LRU) and per-entry TTL; with Redis enabled
# the state is shared across processes via SET ... PX.
from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

from .redis_client import get_redis

logger = logging.getLogger("nestrent.cache")


class TTLStore:
    """Interface for expiring key/value state."""

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryTTLStore(TTLStore):
    """
    Thread-safe LRU with per-entry expiry.

    - Expired entries are dropped lazily on read and eagerly when making room.
    - When full, the least recently used entry is evicted.
    - `clock` is injectable for tests (defaults to time.monotonic).
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        expires = self._clock() + ttl_seconds
        with self._lock:
            self._data[key] = (expires, value)
            self._data.move_to_end(key)
            if len(self._data) > self.max_entries:
                self._purge_expired()
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires, value = item
            if expires <= self._clock():
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        for k in [k for k, (exp, _) in self._data.items() if exp <= now]:
            del self._data[k]


class RedisTTLStore(TTLStore):
    """JSON values in Redis with millisecond expiry; keys are namespaced by prefix."""

    def __init__(self, client, prefix: str = "ttl:") -> None:
        self.client = client
        self.prefix = prefix

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self.client.set(self.prefix + key, json.dumps(value), px=max(1, int(ttl_seconds * 1000)))

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self.prefix + key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def delete(self, key: str) -> None:
        self.client.delete(self.prefix + key)


class TypingIndicator:
    """
    "Is typing" state per chat: who is typing and until when.

    Redis is preferred when available so every process sees the same state; on Redis
    errors the in-process store is used for that call.
    """

    def __init__(self, ttl_seconds: float, local: MemoryTTLStore, redis_factory: Callable = get_redis) -> None:
        self.ttl_seconds = ttl_seconds
        self.local = local
        self._redis_factory = redis_factory

    def _store(self) -> TTLStore:
        client = self._redis_factory()
        if client is None:
            return self.local
        return RedisTTLStore(client, prefix="typing:chat:")

    def _call(self, op: str, *args):
        store = self._store()
        try:
            return getattr(store, op)(*args)
        except Exception as exc:
            if store is self.local:
                raise
            logger.warning("typing.redis.fallback", extra={"op": op, "error": str(exc)})
            return getattr(self.local, op)(*args)

    def set_typing(self, chat_id: int, user_id: int, is_typing: bool) -> None:
        if is_typing:
            self._call("set", str(chat_id), {"user_id": user_id}, self.ttl_seconds)
        else:
            self._call("delete", str(chat_id))

    def get_typing(self, chat_id: int) -> Optional[int]:
        """Return the id of the user currently typing in the chat, or None."""
        state = self._call("get", str(chat_id))
        if not state:
            return None
        return int(state["user_id"])
