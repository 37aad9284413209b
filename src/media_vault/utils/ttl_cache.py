import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Небольшой кэш с временем жизни записи.

    Просроченные записи выкидываются при чтении; при переполнении вытесняется
    самая давно вставленная запись.
    """

    def __init__(self, ttl: float, maxsize: int = 1024, clock: Callable[[], float] = time.monotonic):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._ttl = ttl
        self._maxsize = maxsize
        self._clock = clock
        self._data: "OrderedDict[Hashable, tuple[float, V]]" = OrderedDict()

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._data.pop(key, None)
        self._data[key] = (self._clock() + self._ttl, value)
        while len(self._data) > self._maxsize:
            self._data.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def invalidate_where(self, predicate: Callable[[V], bool]) -> int:
        stale = [k for k, (_, v) in self._data.items() if predicate(v)]
        for k in stale:
            del self._data[k]
        return len(stale)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)
