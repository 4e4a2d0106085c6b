import functools
import logging
import pathlib

import anyio
from kubernetes import client as k8s_client
from kubernetes import config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .exceptions import ObjectNotFound, PermanentError, classify, transport_errors
from .resources import Resource

__all__ = [
    'Client',
    'default_namespace',
    'load_config',
]

log = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = pathlib.Path(
    '/var/run/secrets/kubernetes.io/serviceaccount/namespace'
)


def load_config():
    """Load the in cluster config, or the kubeconfig when running outside
    of a cluster."""
    try:
        config.load_incluster_config()
        log.debug('loaded in cluster config')
    except config.ConfigException:
        config.load_kube_config()
        log.debug('loaded kubeconfig')


def default_namespace():
    """The namespace we are running in, or the one of the current kubeconfig
    context."""
    try:
        return SERVICE_ACCOUNT_NAMESPACE.read_text().strip()
    except OSError:
        pass
    try:
        _, context = config.list_kube_config_contexts()
    except config.ConfigException:
        return 'default'
    return (context or {}).get('context', {}).get('namespace') or 'default'


class Client:
    """Async access to the api server.

    Objects go in and come out as plain dicts. Every error is translated
    into one of the errors in .exceptions before it leaves this class.
    """

    def __init__(self, api_client=None):
        self.api_client = api_client
        self._dynamic = None
        self._apis = {}

    def __repr__(self):
        return f'<{self.__class__.__name__} {list(self._apis)}>'

    async def _call(self, func, *args, **kwargs):
        return await anyio.to_thread.run_sync(
            functools.partial(func, *args, **kwargs),
            abandon_on_cancel=True,
        )

    def _api_sync(self, resource: Resource):
        if self._dynamic is None:
            # Runs api discovery.
            self._dynamic = DynamicClient(self.api_client or k8s_client.ApiClient())
        try:
            return self._apis[resource]
        except KeyError:
            pass
        try:
            api = self._dynamic.resources.get(
                api_version=resource.api_version, kind=resource.kind
            )
        except ResourceNotFoundError as e:
            raise PermanentError(f'{resource} is not served by the api server') from e
        self._apis[resource] = api
        return api

    async def _request(self, operation, resource, func_name, name=None, namespace=None, **kwargs):
        try:
            return await self._call(
                self._request_sync, resource, func_name, name=name, namespace=namespace, **kwargs
            )
        except ApiException as e:
            if e.status == 404:
                raise ObjectNotFound(resource, name, namespace=namespace) from e
            error = classify(e, operation)
            if error is e:
                raise
            raise error from e
        except transport_errors as e:
            raise classify(e, operation) from e

    def _request_sync(self, resource, func_name, **kwargs):
        api = self._api_sync(resource)
        if func_name.startswith('status.'):
            func_name = func_name.split('.', 1)[1]
            target = api.subresources['status']
        else:
            target = api
        # Unset arguments are left to the defaults of the dynamic client.
        kwargs = {key: value for key, value in kwargs.items() if value is not None}
        result = getattr(self._dynamic, func_name)(target, **kwargs)
        return result.to_dict() if hasattr(result, 'to_dict') else result

    @staticmethod
    def _ident(obj):
        metadata = obj['metadata']
        return metadata['name'], metadata.get('namespace')

    async def get(self, resource: Resource, name: str, namespace: str = None) -> dict:
        return await self._request(
            f'get {resource}', resource, 'get', name=name, namespace=namespace
        )

    async def create(self, resource: Resource, obj: dict) -> dict:
        name, namespace = self._ident(obj)
        log.debug('create %s %s/%s', resource, namespace, name)
        return await self._request(
            f'create {resource}', resource, 'create', body=obj, namespace=namespace
        )

    async def update(self, resource: Resource, obj: dict) -> dict:
        """Replace the object. The resourceVersion of obj has to match the
        stored one, otherwise a ConflictError is raised."""
        name, namespace = self._ident(obj)
        log.debug('update %s %s/%s', resource, namespace, name)
        return await self._request(
            f'update {resource}', resource, 'replace', body=obj, name=name, namespace=namespace
        )

    async def update_status(self, resource: Resource, obj: dict) -> dict:
        name, namespace = self._ident(obj)
        log.debug('update status %s %s/%s', resource, namespace, name)
        return await self._request(
            f'update {resource} status', resource, 'status.replace',
            body=obj, name=name, namespace=namespace,
        )

    async def delete(self, resource: Resource, name: str, namespace: str = None):
        log.debug('delete %s %s/%s', resource, namespace, name)
        return await self._request(
            f'delete {resource}', resource, 'delete', name=name, namespace=namespace
        )

    async def list(self, resource: Resource, namespace: str = None):
        """List all objects, in all namespaces if namespace is None.
        Returns the objects and the resourceVersion of the list."""
        result = await self._request(
            f'list {resource}', resource, 'get', namespace=namespace
        )
        items = result.get('items') or []
        for item in items:
            # List items come without type information.
            item.setdefault('apiVersion', resource.api_version)
            item.setdefault('kind', resource.kind)
        return items, (result.get('metadata') or {}).get('resourceVersion')

    async def watch(self, resource: Resource, namespace: str = None, resource_version: str = None, timeout: int = None):
        """Yield (event type, object) tuples until the server ends the watch.

        An expired resource version is reported as an ERROR event with
        code 410, as the api server does.
        """
        stream = await self._request(
            f'watch {resource}', resource, 'watch',
            namespace=namespace, resource_version=resource_version, timeout=timeout,
        )
        operation = f'watch {resource}'
        while True:
            try:
                event = await self._call(next, stream, None)
            except ApiException as e:
                if e.status == 410:
                    yield 'ERROR', {'code': 410, 'message': e.reason}
                    return
                raise classify(e, operation) from e
            except transport_errors as e:
                raise classify(e, operation) from e
            if event is None:
                return
            yield event['type'], event['raw_object']
