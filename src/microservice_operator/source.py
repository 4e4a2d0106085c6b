import logging
import typing

import anyio

from .cache import UpdateEvent
from .invocation import invoke, nonblocking
from .resources import Resource
from .tasks import Task


__all__ = [
    'EventSource',
    'ignore_status_updates',
]

log = logging.getLogger(__name__)


class EventSource(Task):
    """Receives events from informers, filters them through predicates and
    turns them into requests which are added to a work queue.
    """

    def __init__(
        self,
        queue,
        resource: Resource,
        handler: typing.Callable,
        kwargs: dict = None,
        predicates: typing.List[typing.Callable] = None,
    ):
        super().__init__()
        self.queue = queue
        self.resource = resource
        self.handler = handler
        self.kwargs = kwargs or {}
        self.predicates = predicates or []
        self.tx, self.rx = anyio.create_memory_object_stream(max_buffer_size=100)
        self._informer_streams = {}

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.resource}>'

    async def _accepts(self, event):
        for predicate in self.predicates:
            if not await invoke(predicate, event):
                log.debug('predicate %r prevented event: %r', predicate, event)
                return False
        return True

    async def event_stream_handler(self):
        async with self.rx:
            async for event in self.rx:
                log.debug('received event: %r', event)
                if not await self._accepts(event):
                    continue
                try:
                    requests = await invoke(self.handler, event, **self.kwargs)
                except Exception:
                    log.exception('failed to map %r to requests', event)
                    continue
                for request in requests or ():
                    await self.queue.add(request)

    def add_informer(self, informer):
        # Each informer gets its own clone of our inbound stream.
        stream = self.tx.clone()
        self._informer_streams[informer] = stream
        informer.add_stream(stream, key=self)

    async def __call__(self, task_status=anyio.TASK_STATUS_IGNORED):
        log.debug('starting %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg

                try:
                    tg.start_soon(self.event_stream_handler)

                    log.debug('started %s', self)
                    # Inform any awaiters that we are ready.
                    self._running.set()
                    task_status.started()

                    # Wait until told otherwise.
                    await self._stop.wait()
                    tg.cancel_scope.cancel()

                except anyio.get_cancelled_exc_class():
                    log.debug('canceled %s', self)
                    raise

                finally:
                    log.debug('stopping %s', self)
                    # Remove our streams from the informers to which we added them.
                    for informer, stream in self._informer_streams.items():
                        informer.remove_stream(key=self)
                        stream.close()
                    self._informer_streams.clear()

        finally:
            log.debug('stopped %s', self)


@nonblocking
def ignore_status_updates(event):
    """Predicate that drops update events which only touched the status
    or other fields that do not affect the desired state."""
    if not isinstance(event, UpdateEvent):
        return True
    old = event.old['metadata']
    new = event.new['metadata']
    return (
        old.get('generation') != new.get('generation')
        or old.get('deletionTimestamp') != new.get('deletionTimestamp')
        or old.get('finalizers') != new.get('finalizers')
    )
