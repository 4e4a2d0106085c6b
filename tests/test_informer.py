import anyio
import pytest

from microservice_operator.cache import (
    CreateEvent,
    DeleteEvent,
    Informer,
    Store,
    UpdateEvent,
)
from microservice_operator.exceptions import StoreKeyError, UnavailableError
from microservice_operator.resources import Deployment


def obj(name, resource_version, namespace='default'):
    return {
        'apiVersion': 'apps/v1',
        'kind': 'Deployment',
        'metadata': {'name': name, 'namespace': namespace, 'resourceVersion': resource_version},
    }


class ScriptedClient:
    """Serves lists and watches from prepared scripts.

    lists is a list of (items, resourceVersion) or exceptions, consumed one
    per list call. watches is a list of event lists, consumed one per watch
    call. Once exhausted, watches block forever.
    """

    def __init__(self, lists, watches=()):
        self.lists = list(lists)
        self.watches = list(watches)
        self.list_calls = 0
        self.watch_calls = []

    async def list(self, resource, namespace=None):
        self.list_calls += 1
        result = self.lists.pop(0) if len(self.lists) > 1 else self.lists[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def watch(self, resource, namespace=None, resource_version=None, timeout=None):
        self.watch_calls.append(resource_version)
        if not self.watches:
            await anyio.sleep_forever()
        for event in self.watches.pop(0):
            yield event


async def collect(informer, count):
    tx, rx = anyio.create_memory_object_stream(max_buffer_size=100)
    informer.add_stream(tx, key='test')
    events = []
    async with anyio.create_task_group() as tg:
        tg.start_soon(informer)
        with anyio.fail_after(2):
            async for event in rx:
                events.append(event)
                if len(events) == count:
                    break
        informer.stop()
    return events


def describe(events):
    out = []
    for event in events:
        if isinstance(event, UpdateEvent):
            out.append(('update', event.new['metadata']['name'], event.new['metadata']['resourceVersion']))
        elif isinstance(event, CreateEvent):
            out.append(('create', event.obj['metadata']['name']))
        elif isinstance(event, DeleteEvent):
            out.append(('delete', event.obj['metadata']['name']))
    return out


def test_store():
    store = Store()
    store.add(obj('a', '1'))
    store.add(obj('a', '2', namespace='other'))
    assert len(store) == 2
    assert sorted(store.keys()) == ['default/a', 'other/a']
    assert store.get(obj('a', '5'))['metadata']['resourceVersion'] == '1'
    assert obj('a', '7') in store
    store.delete(obj('a', '1'))
    store.delete(obj('a', '1'))
    with pytest.raises(KeyError):
        store.get(obj('a', '1'))
    with pytest.raises(StoreKeyError):
        store.add({'kind': 'Broken'})


@pytest.mark.anyio
async def test_list_then_watch():
    client = ScriptedClient(
        lists=[([obj('a', '1'), obj('b', '1')], '10')],
        watches=[[
            ('MODIFIED', obj('a', '11')),
            ('BOOKMARK', {'metadata': {'resourceVersion': '12'}}),
            ('ADDED', obj('c', '13')),
            ('DELETED', obj('b', '14')),
        ]],
    )
    informer = Informer(client, Deployment, namespace='default')

    events = await collect(informer, 5)

    assert describe(events) == [
        ('create', 'a'),
        ('create', 'b'),
        ('update', 'a', '11'),
        ('create', 'c'),
        ('delete', 'b'),
    ]
    assert sorted(informer.store.keys()) == ['default/a', 'default/c']
    # Watches resume where the previous one ended.
    assert client.watch_calls == ['10', '14']


@pytest.mark.anyio
async def test_unchanged_objects_are_not_dispatched():
    client = ScriptedClient(
        lists=[([obj('a', '1')], '10')],
        watches=[[('MODIFIED', obj('a', '1')), ('MODIFIED', obj('a', '2'))]],
    )
    informer = Informer(client, Deployment)

    events = await collect(informer, 2)

    assert describe(events) == [('create', 'a'), ('update', 'a', '2')]


@pytest.mark.anyio
async def test_expired_watch_relists():
    client = ScriptedClient(
        lists=[
            ([obj('a', '1'), obj('b', '1')], '10'),
            ([obj('a', '5')], '20'),
        ],
        watches=[[('ERROR', {'code': 410, 'message': 'too old resource version'})]],
    )
    informer = Informer(client, Deployment)

    events = await collect(informer, 4)

    # b was deleted while we were not watching.
    assert describe(events) == [
        ('create', 'a'),
        ('create', 'b'),
        ('delete', 'b'),
        ('update', 'a', '5'),
    ]
    assert client.list_calls == 2


@pytest.mark.anyio
async def test_failing_list_is_retried():
    client = ScriptedClient(lists=[UnavailableError('connection refused'), ([obj('a', '1')], '10')])
    informer = Informer(client, Deployment, max_backoff=0.01)

    events = await collect(informer, 1)

    assert describe(events) == [('create', 'a')]
    assert client.list_calls == 2
