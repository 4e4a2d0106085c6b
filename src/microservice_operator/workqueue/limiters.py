import dataclasses
import math
import time

from typing import Dict, List


class RateLimiter:
    # Interface

    def delay(self, item) -> float:
        """Return the number of seconds to wait before item may be
        processed again and record the attempt."""
        raise NotImplementedError()

    def forget(self, item):
        """Stop tracking item, e.g. because it was processed successfully."""
        raise NotImplementedError()

    def count(self, item) -> int:
        """Number of times item was rate limited since it was last forgotten."""
        raise NotImplementedError()


@dataclasses.dataclass(init=False)
class MaxOfRateLimiter(RateLimiter):
    """Use the longest delay of all given limiters."""

    limiters: List[RateLimiter]

    def __init__(self, *limiters):
        self.limiters = list(limiters)

    def delay(self, item):
        return max(limiter.delay(item) for limiter in self.limiters)

    def forget(self, item):
        for limiter in self.limiters:
            limiter.forget(item)

    def count(self, item):
        return max(limiter.count(item) for limiter in self.limiters)


@dataclasses.dataclass
class BucketRateLimiter(RateLimiter):
    """Overall token bucket, independent of the item."""

    # Maximum number of tokens in the bucket
    capacity: int = 100
    # Rate of token addition per second
    rate: float = 10
    clock: object = time.monotonic

    def __post_init__(self):
        self._tokens = self.capacity
        self._last_added = self.clock()
        self._missing_tokens = 0

    def _add_tokens(self):
        now = self.clock()
        tokens_to_add = int((now - self._last_added) * self.rate)
        if tokens_to_add > 0:
            self._tokens = min(self.capacity, self._tokens + tokens_to_add)
            self._last_added = now

    def delay(self, item):
        self._add_tokens()
        if self._tokens > 0:
            self._missing_tokens = 0
            self._tokens -= 1
            return 0
        # Wait for as many tokens as are missing.
        # See https://danielmangum.com/posts/controller-runtime-client-go-rate-limiting/
        self._missing_tokens += 1
        return self._missing_tokens / self.rate

    def forget(self, item):
        pass

    def count(self, item):
        return 0


@dataclasses.dataclass
class ItemExponentialFailureRateLimiter(RateLimiter):
    """Doubles the delay of an item on every failure, up to max_delay."""

    base_delay: float = 0.005  # 5 Milliseconds
    max_delay: float = 1000  # 1000 Seconds
    items: Dict[object, int] = dataclasses.field(default_factory=dict, init=False)

    def delay(self, item):
        failures = self.items.get(item, 0)
        self.items[item] = failures + 1
        # Avoid overflowing math.pow for items failing for a very long time.
        if failures > 64:
            return self.max_delay
        return min(self.base_delay * math.pow(2, failures), self.max_delay)

    def forget(self, item):
        self.items.pop(item, None)

    def count(self, item):
        return self.items.get(item, 0)
