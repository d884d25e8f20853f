import functools
import time
import weakref
from typing import Any, Callable, Dict, Optional


class ResponseCache:
    """
    In-memory TTL cache for read-only API lookups (locations, car lists).

    Not for anything with side effects, and not for reservation lists:
    those must always be fetched fresh so the countdown reconciles against
    the server.

    Entries are held per client instance and go away with it.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Optional[Callable[[], float]] = None):
        self._cache: "weakref.WeakKeyDictionary[Any, Dict[str, Any]]" = weakref.WeakKeyDictionary()
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic

    def cached(self, func):
        """Decorator for coroutine methods; the key is the function name plus arguments."""
        @functools.wraps(func)
        async def wrapper(instance, *args, **kwargs):
            key_parts = [func.__name__]
            key_parts.extend(str(arg) for arg in args)
            key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
            key = ":".join(key_parts)

            entries = self._cache.setdefault(instance, {})
            if key in entries:
                timestamp, value = entries[key]
                if self._clock() - timestamp < self._ttl:
                    return value

            result = await func(instance, *args, **kwargs)
            entries[key] = (self._clock(), result)
            return result

        return wrapper

    def clear(self):
        self._cache = weakref.WeakKeyDictionary()

    def __len__(self):
        """Number of client instances with cached entries."""
        return len(self._cache)


catalog_cache = ResponseCache()
