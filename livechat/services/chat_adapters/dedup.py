"""Bounded memories of recently seen and recently sent message ids."""

from collections import OrderedDict, deque
from typing import Deque, Hashable


class DedupWindow:
    """Ordered set of recently seen ids with a fixed capacity.

    When full, the oldest id is evicted first.
    """

    def __init__(self, capacity: int = 2000):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._ids: "OrderedDict[Hashable, None]" = OrderedDict()

    def seen(self, item_id: Hashable) -> bool:
        return item_id in self._ids

    def add(self, item_id: Hashable) -> bool:
        """Remember ``item_id``; return False if it was already known."""
        if item_id in self._ids:
            return False
        self._ids[item_id] = None
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)
        return True

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, item_id: Hashable) -> bool:
        return item_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class EchoFilter:
    """FIFO of ids this adapter just sent.

    ``consume()`` reports a self-sent id once and then forgets it, so only the
    first reappearance of a sent message is dropped.
    """

    def __init__(self, capacity: int = 5):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._sent: Deque[Hashable] = deque(maxlen=capacity)

    def remember(self, item_id: Hashable) -> None:
        self._sent.append(item_id)

    def consume(self, item_id: Hashable) -> bool:
        try:
            self._sent.remove(item_id)
        except ValueError:
            return False
        return True

    def clear(self) -> None:
        self._sent.clear()

    def __len__(self) -> int:
        return len(self._sent)
