import collections
import logging
import typing

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class ConvolutionCache:
    """Fixed-capacity least-recently-used memo.

    Both reads and writes promote an entry; inserting a new key when full
    evicts the least recently used one. Keys must already be canonical.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValueError("cache capacity must be a positive integer, got %r" % (capacity,))
        self.capacity = capacity
        self._entries: "collections.OrderedDict[typing.Hashable, typing.Any]" = (
            collections.OrderedDict()
        )
        self.hits = 0
        self.misses = 0

    def get(self, key: typing.Hashable, default=None):
        try:
            value = self._entries[key]
        except KeyError:
            self.misses += 1
            return default
        self._entries.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: typing.Hashable, value) -> "ConvolutionCache":
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("evicting cache entry %.60r", evicted)
        self._entries[key] = value
        return self

    def has(self, key: typing.Hashable) -> bool:
        return key in self._entries

    def delete(self, key: typing.Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def keys(self) -> typing.Iterator[typing.Hashable]:
        return iter(self._entries.keys())

    def values(self) -> typing.Iterator[typing.Any]:
        return iter(self._entries.values())

    def __contains__(self, key: typing.Hashable) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return "ConvolutionCache(%s/%s)" % (len(self._entries), self.capacity)
