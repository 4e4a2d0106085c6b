import copy
import itertools

import anyio
import pytest
from anyio.lowlevel import checkpoint

from microservice_operator.exceptions import ConflictError, ObjectNotFound
from microservice_operator.resources import MicroService


@pytest.fixture
def anyio_backend():
    return 'asyncio'


def microservice(name='foo', namespace='default', image='app:1.0', host='foo.example.com', secret=None, **metadata):
    spec = {'image': image, 'host': host}
    if secret is not None:
        spec['secret'] = secret
    return {
        'apiVersion': MicroService.api_version,
        'kind': MicroService.kind,
        'metadata': {'name': name, 'namespace': namespace, **metadata},
        'spec': spec,
    }


class FakeClient:
    """In memory api server.

    Mimics the parts of the api server semantics the operator relies on:
    resourceVersion checks on update, generation bumps on spec changes,
    status only written through the status subresource and deletion
    being blocked by finalizers.

    Every mutating call is recorded in calls as (operation, kind, name),
    including the ones that fail.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self._failures = {}
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)

    @staticmethod
    def _key(resource, name, namespace):
        return (resource, namespace, name)

    def _next_version(self):
        return str(next(self._versions))

    def fail(self, operation, resource, error, times=1):
        """Make the next times calls of operation on resource raise error."""
        self._failures.setdefault((operation, resource), []).extend([error] * times)

    def _record(self, operation, resource, name):
        if operation != 'get':
            self.calls.append((operation, resource.kind, name))
        failures = self._failures.get((operation, resource))
        if failures:
            raise failures.pop(0)

    def add(self, resource, obj):
        """Store obj as is the api server had created it."""
        obj = copy.deepcopy(obj)
        obj.setdefault('apiVersion', resource.api_version)
        obj.setdefault('kind', resource.kind)
        metadata = obj['metadata']
        metadata.setdefault('uid', f'uid-{next(self._uids)}')
        metadata.setdefault('generation', 1)
        metadata['resourceVersion'] = self._next_version()
        self.objects[self._key(resource, metadata['name'], metadata.get('namespace'))] = obj
        return copy.deepcopy(obj)

    def stored(self, resource, name, namespace='default'):
        return self.objects.get(self._key(resource, name, namespace))

    def _get_stored(self, resource, name, namespace):
        try:
            return self.objects[self._key(resource, name, namespace)]
        except KeyError:
            raise ObjectNotFound(resource, name, namespace=namespace) from None

    async def get(self, resource, name, namespace=None):
        self._record('get', resource, name)
        await checkpoint()
        return copy.deepcopy(self._get_stored(resource, name, namespace))

    async def create(self, resource, obj):
        metadata = obj['metadata']
        self._record('create', resource, metadata['name'])
        await checkpoint()
        key = self._key(resource, metadata['name'], metadata.get('namespace'))
        if key in self.objects:
            raise ConflictError(f'{resource} {metadata["name"]} already exists')
        obj = copy.deepcopy(obj)
        obj['metadata'].pop('resourceVersion', None)
        obj['metadata'].pop('uid', None)
        obj.pop('status', None)
        return self.add(resource, obj)

    def _check_version(self, resource, obj):
        metadata = obj['metadata']
        stored = self._get_stored(resource, metadata['name'], metadata.get('namespace'))
        if metadata.get('resourceVersion') != stored['metadata']['resourceVersion']:
            raise ConflictError(f'{resource} {metadata["name"]} has been modified')
        return stored

    async def update(self, resource, obj):
        metadata = obj['metadata']
        self._record('update', resource, metadata['name'])
        await checkpoint()
        stored = self._check_version(resource, obj)
        obj = copy.deepcopy(obj)
        # Status can only be changed through the status subresource.
        obj.pop('status', None)
        if 'status' in stored:
            obj['status'] = copy.deepcopy(stored['status'])
        obj['metadata']['uid'] = stored['metadata']['uid']
        obj['metadata']['generation'] = stored['metadata'].get('generation', 1)
        if stored['metadata'].get('deletionTimestamp'):
            obj['metadata']['deletionTimestamp'] = stored['metadata']['deletionTimestamp']
        if obj.get('spec') != stored.get('spec'):
            obj['metadata']['generation'] += 1
        obj['metadata']['resourceVersion'] = self._next_version()
        key = self._key(resource, metadata['name'], metadata.get('namespace'))
        if obj['metadata'].get('deletionTimestamp') and not obj['metadata'].get('finalizers'):
            # The last finalizer is gone, deletion completes.
            del self.objects[key]
        else:
            self.objects[key] = obj
        return copy.deepcopy(obj)

    async def update_status(self, resource, obj):
        metadata = obj['metadata']
        self._record('update_status', resource, metadata['name'])
        await checkpoint()
        stored = self._check_version(resource, obj)
        stored['status'] = copy.deepcopy(obj.get('status'))
        stored['metadata']['resourceVersion'] = self._next_version()
        return copy.deepcopy(stored)

    async def delete(self, resource, name, namespace=None):
        self._record('delete', resource, name)
        await checkpoint()
        stored = self._get_stored(resource, name, namespace)
        if stored['metadata'].get('finalizers'):
            stored['metadata'].setdefault('deletionTimestamp', '2024-01-01T00:00:00Z')
            stored['metadata']['resourceVersion'] = self._next_version()
        else:
            del self.objects[self._key(resource, name, namespace)]

    async def list(self, resource, namespace=None):
        await checkpoint()
        items = [
            copy.deepcopy(obj)
            for (r, ns, _), obj in self.objects.items()
            if r == resource and (namespace is None or ns == namespace)
        ]
        return items, self._next_version()

    async def watch(self, resource, namespace=None, resource_version=None, timeout=None):
        # Nothing ever changes behind our back.
        await anyio.sleep_forever()
        yield


@pytest.fixture
def client():
    return FakeClient()
