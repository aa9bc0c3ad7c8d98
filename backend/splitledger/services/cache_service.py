"""
Cache collaborator for ledger reads.

The ledger engine only depends on invalidate(keys); it is handed a backend
explicitly. Keys may be glob patterns ("settlements:7:*").
"""
import fnmatch
import logging
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Minimal capability the ledger needs from a cache."""

    def invalidate(self, keys: Iterable[str]) -> None:
        ...


class ReadThroughCache(CacheBackend, Protocol):
    """What the routes use: cached reads on top of invalidation."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...


class NullCache:
    """Cache that stores nothing."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    def invalidate(self, keys: Iterable[str]) -> None:
        pass


class InMemoryCache:
    """Process-local TTL cache."""

    def __init__(self, clock=time.monotonic):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def invalidate(self, keys: Iterable[str]) -> None:
        with self._lock:
            for pattern in keys:
                if any(ch in pattern for ch in "*?["):
                    for key in fnmatch.filter(list(self._entries), pattern):
                        del self._entries[key]
                else:
                    self._entries.pop(pattern, None)


# Key scheme

def user_debts_key(user_id: int) -> str:
    return f"user_debts:{user_id}"


def user_debts_detailed_key(user_id: int, group_id: Optional[int] = None) -> str:
    return f"user_debts_detailed:{user_id}:{group_id if group_id is not None else 'all'}"


def settlement_history_key(user_id: int, *parts: Any) -> str:
    return ":".join([f"settlements:{user_id}"] + ["" if p is None else str(p) for p in parts])


def group_expenses_key(group_id: int, *parts: Any) -> str:
    return ":".join([f"group:{group_id}:expenses"] + ["" if p is None else str(p) for p in parts])


def user_expenses_key(user_id: int, *parts: Any) -> str:
    return ":".join([f"user:{user_id}:expenses"] + ["" if p is None else str(p) for p in parts])


def debt_cache_keys(user_ids: Iterable[int]) -> List[str]:
    """Every cached read that depends on these users' obligations or settlements."""
    keys = []
    for user_id in sorted(set(user_ids)):
        keys.append(user_debts_key(user_id))
        keys.append(f"user_debts_detailed:{user_id}:*")
        keys.append(f"settlements:{user_id}:*")
    return keys


def group_cache_keys(group_id: int) -> List[str]:
    return [f"group:{group_id}:expenses:*", f"group:{group_id}:balances"]


def invalidate_quietly(cache: Optional[CacheBackend], keys: Iterable[str]) -> None:
    """Best-effort invalidation: a cache failure never fails the mutation."""
    if cache is None:
        return
    keys = list(keys)
    try:
        cache.invalidate(keys)
        logger.debug(f"Invalidated {len(keys)} cache keys")
    except Exception as e:
        logger.warning(f"Cache invalidation error: {e}")
