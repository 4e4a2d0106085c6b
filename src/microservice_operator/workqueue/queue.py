import math

import anyio

from ..tasks import Task

from .limiters import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
)


class Queue:
    """FIFO of unique items."""

    def __init__(self):
        self._items = {}

    def push(self, item):
        self._items[item] = None

    def pop(self):
        item = next(iter(self._items))
        del self._items[item]
        return item

    def __contains__(self, item):
        return item in self._items

    def __len__(self):
        return len(self._items)

    def __repr__(self):
        return f'<Queue {list(self._items)}>'


def default_rate_limiter(base_delay=0.005, max_delay=1000):
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay=base_delay, max_delay=max_delay),
        BucketRateLimiter(),
    )


class Workqueue(Task):
    """A work queue which guarantees that:

    - an item is queued at most once, no matter how often it is added
      before it is processed
    - an item is never handed out to more than one worker at a time: an
      item added while it is being processed is queued again once the
      worker calls done()
    """

    def __init__(self, rate_limiter=None):
        super().__init__()
        self._rate_limiter = rate_limiter or default_rate_limiter()
        self._buffer = []
        self._queue = Queue()
        # item -> deadline of the pending delayed add
        self._delayed = {}
        self._processing = set()
        self._dirty = set()
        self._condition = anyio.Condition()

    def __len__(self):
        return len(self._queue)

    def __repr__(self):
        length = len(self)
        delayed = len(self._delayed)
        dirty = len(self._dirty)
        processing = len(self._processing)
        out = f'queued: {length}, delayed: {delayed}, dirty: {dirty}, processing: {processing}'
        if not self.is_running:
            out += f', buffered: {len(self._buffer)}'
        return f'<Workqueue {out}>'

    def is_processing(self, item):
        return item in self._processing

    async def _add(self, item):
        async with self._condition:
            if item in self._dirty:
                # Already waiting to be processed.
                return
            self._dirty.add(item)
            if item not in self._processing:
                self._queue.push(item)
                self._condition.notify()

    async def add(self, item):
        """Mark item as needing processing."""
        if self.is_running:
            await self._add(item)
        else:
            # Items added before the queue is started are added on startup.
            self._buffer.append(item)

    async def get(self):
        """Block until an item can be processed and return it.
        The caller must call done() with the item once finished."""
        async with self._condition:
            while len(self._queue) == 0:
                await self._condition.wait()
            item = self._queue.pop()
            self._processing.add(item)
            self._dirty.discard(item)
            return item

    async def done(self, item):
        """Mark item as done processing. If it has been added again while it
        was being processed, it is queued for processing again.
        """
        async with self._condition:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.push(item)
                self._condition.notify()

    async def _add_after(self, item, delay, deadline):
        await anyio.sleep(delay)
        if self._delayed.get(item) == deadline:
            del self._delayed[item]
        await self.add(item)

    async def add_after(self, item, delay):
        """Add item after the given number of seconds."""
        if delay <= 0:
            await self.add(item)
            return
        if not self.is_running:
            self._buffer.append(item)
            return
        deadline = anyio.current_time() + delay
        pending = self._delayed.get(item, math.inf)
        if pending <= deadline:
            # Will be added earlier anyway.
            return
        self._delayed[item] = deadline
        self._task_group.start_soon(self._add_after, item, delay, deadline)

    async def add_rate_limited(self, item):
        """Add item after the delay the rate limiter decides on."""
        await self.add_after(item, self._rate_limiter.delay(item))

    async def forget(self, item):
        """Stop rate limiting item."""
        self._rate_limiter.forget(item)

    async def num_requeues(self, item):
        return self._rate_limiter.count(item)

    async def __call__(self, task_status=anyio.TASK_STATUS_IGNORED):
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            self._running.set()

            # Add any buffered items.
            while self._buffer:
                await self._add(self._buffer.pop(0))

            task_status.started()
            await self._stop.wait()
            tg.cancel_scope.cancel()
