import dataclasses
import logging
import random
import typing

import anyio

from ..exceptions import Error
from ..resources import Resource, is_same_version
from ..tasks import Task
from .events import CreateEvent, DeleteEvent, UpdateEvent
from .store import Store


log = logging.getLogger(__name__)


class WatchExpired(Error):
    """The api server can no longer serve our resource version."""


@dataclasses.dataclass
class Informer(Task):
    """Lists and then watches all objects of one resource kind, optionally
    limited to one namespace, and sends Create/Update/Delete events to all
    added streams.
    """

    client: object
    resource: Resource
    namespace: typing.Optional[str] = None
    store: Store = dataclasses.field(default_factory=Store)
    # 10 hours + 0..9 Minutes
    resync_after: typing.Optional[float] = 10 * 60 * 60 + 60 * random.randint(0, 9)
    list_timeout: float = 60
    watch_timeout: int = 300
    max_backoff: float = 60
    resource_version: typing.Optional[str] = None

    def __post_init__(self):
        Task.__init__(self)
        self._streams = {}

    def __hash__(self):
        return hash((self.resource, self.namespace))

    def __eq__(self, other):
        return self is other

    def __repr__(self):
        out = [str(self.resource)]
        if self.namespace is not None:
            out.append(self.namespace)
        if self.resource_version:
            out.append(self.resource_version)
        return f"<Informer {' '.join(out)}>"

    def add_stream(self, stream, key=None):
        if key is None:
            key = stream
        self._streams[key] = stream

    def remove_stream(self, stream=None, key=None):
        if key is None:
            key = stream
        self._streams.pop(key, None)

    def purge_streams(self):
        for stream in self._streams.values():
            stream.close()
        self._streams.clear()

    async def _dispatch(self, event):
        # We iterate over a list of keys because the dict may change
        # while we're iterating over it.
        for key in list(self._streams.keys()):
            stream = self._streams.get(key)
            if stream is None:
                continue
            try:
                await stream.send(event)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                self.remove_stream(key=key)

    async def _add_or_update(self, obj):
        try:
            old = self.store.get(obj)
        except KeyError:
            self.store.add(obj)
            await self._dispatch(CreateEvent(obj))
        else:
            if not is_same_version(obj, old):
                self.store.update(obj)
                await self._dispatch(UpdateEvent(old, obj))

    async def _delete(self, obj):
        self.store.delete(obj)
        await self._dispatch(DeleteEvent(obj))

    async def _list(self):
        log.debug('start listing %s', self.resource)
        with anyio.fail_after(self.list_timeout):
            items, resource_version = await self.client.list(
                self.resource, namespace=self.namespace
            )
        listed = {self.store.key_func(obj) for obj in items}
        # Objects deleted while we were not watching.
        for obj in self.store.list():
            if self.store.key_func(obj) not in listed:
                await self._delete(obj)
        for obj in items:
            await self._add_or_update(obj)
        self.resource_version = resource_version
        log.debug('done listing %s %s', self.resource, self.resource_version)

    async def _watch(self):
        log.debug('start watching %s %s', self.resource, self.resource_version)
        async for event_type, obj in self.client.watch(
            self.resource,
            namespace=self.namespace,
            resource_version=self.resource_version,
            timeout=self.watch_timeout,
        ):
            match event_type:
                case 'ADDED' | 'MODIFIED':
                    await self._add_or_update(obj)
                case 'DELETED':
                    await self._delete(obj)
                case 'BOOKMARK':
                    pass
                case 'ERROR':
                    raise WatchExpired((obj or {}).get('message'))
            resource_version = ((obj or {}).get('metadata') or {}).get('resourceVersion')
            if resource_version:
                self.resource_version = resource_version

    async def _listwatch(self):
        failures = 0
        while True:
            try:
                await self._list()
                failures = 0
                # We are running and our store is synced.
                self._running.set()

                with anyio.move_on_after(self.resync_after) as scope:
                    while True:
                        await self._watch()
                if scope.cancelled_caught:
                    log.debug('resyncing %s %s', self.resource, self.resource_version)

            except WatchExpired as e:
                log.debug('relisting %s: %s', self.resource, e.message)
            except (Error, TimeoutError) as e:
                failures += 1
                delay = min(2 ** failures, self.max_backoff)
                log.error('list/watch of %s failed, retrying in %is: %s',
                    self.resource, delay, e)
                await anyio.sleep(delay)

    async def __call__(self, task_status=anyio.TASK_STATUS_IGNORED):
        log.debug('starting %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg

                try:
                    tg.start_soon(self._listwatch)

                    await self
                    log.info('started %s', self)
                    task_status.started()

                    # Wait until told otherwise.
                    await self._stop.wait()
                    tg.cancel_scope.cancel()

                except anyio.get_cancelled_exc_class():
                    log.debug('canceled %s', self)
                    raise

                finally:
                    log.debug('stopping %s', self)
                    self.purge_streams()

        finally:
            log.info('stopped %s', self)
