"""
The kinds of objects a MicroService owns.

Each kind knows which of its fields are managed by us. Only those fields
are compared when deciding if an object needs an update, and only those
fields are written when updating it. Everything else, e.g. replica counts
set by an autoscaler or labels added by other tools, is left alone.
"""

import copy

from . import resources
from .resources import controller_of

__all__ = [
    'DependentKind',
    'DeploymentKind',
    'IngressKind',
    'ServiceKind',
    'KINDS',
    'TEARDOWN_ORDER',
]


def _get(obj, *path, default=None):
    for key in path:
        if not isinstance(obj, dict):
            return default
        obj = obj.get(key)
        if obj is None:
            return default
    return obj


def _setdefault(obj, *path):
    for key in path:
        value = obj.get(key)
        if value is None:
            value = obj[key] = {}
        obj = value
    return obj


class DependentKind:
    """Interface: one kind of object owned by a MicroService."""

    resource: resources.Resource
    # Field of desired.Desired holding this kinds manifest.
    field: str

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.resource}>'

    def name(self, owner):
        return owner['metadata']['name']

    def desired(self, desired):
        return getattr(desired, self.field)

    def managed(self, obj):
        """Return the managed subset of the given object in a comparable form."""
        controller = controller_of(obj)
        return {
            'app': _get(obj, 'metadata', 'labels', 'app'),
            'controller': controller.get('uid') if controller else None,
        }

    def is_equal(self, actual, desired):
        return self.managed(actual) == self.managed(desired)

    def merge(self, actual, desired):
        """Return a copy of actual with all managed fields set from desired."""
        obj = copy.deepcopy(actual)
        labels = _setdefault(obj, 'metadata', 'labels')
        labels.update(_get(desired, 'metadata', 'labels', default={}))
        desired_refs = _get(desired, 'metadata', 'ownerReferences', default=[])
        uids = {ref['uid'] for ref in desired_refs}
        refs = [
            ref
            for ref in obj['metadata'].get('ownerReferences') or []
            if ref.get('uid') not in uids
        ]
        obj['metadata']['ownerReferences'] = refs + copy.deepcopy(desired_refs)
        if not obj['metadata']['ownerReferences']:
            del obj['metadata']['ownerReferences']
        return obj


class DeploymentKind(DependentKind):
    resource = resources.Deployment
    field = 'deployment'

    @staticmethod
    def _container(obj, name):
        containers = _get(obj, 'spec', 'template', 'spec', 'containers', default=[])
        for container in containers:
            if container.get('name') == name:
                return container
        return None

    def managed(self, obj):
        name = obj['metadata']['name']
        pod_spec = _get(obj, 'spec', 'template', 'spec', default={})
        container = self._container(obj, name)
        if container is not None:
            container = {
                'image': container.get('image'),
                'imagePullPolicy': container.get('imagePullPolicy'),
                'ports': [p.get('containerPort') for p in container.get('ports') or []],
            }
        return {
            **super().managed(obj),
            'selector': _get(obj, 'spec', 'selector', 'matchLabels'),
            'podApp': _get(obj, 'spec', 'template', 'metadata', 'labels', 'app'),
            'container': container,
            'imagePullSecrets': [
                s.get('name') for s in pod_spec.get('imagePullSecrets') or []
            ],
        }

    def merge(self, actual, desired):
        obj = super().merge(actual, desired)
        name = obj['metadata']['name']
        spec = _setdefault(obj, 'spec')
        spec['selector'] = copy.deepcopy(desired['spec']['selector'])
        template_labels = _setdefault(spec, 'template', 'metadata', 'labels')
        template_labels.update(desired['spec']['template']['metadata']['labels'])

        pod_spec = _setdefault(spec, 'template', 'spec')
        want = self._container(desired, name)
        have = self._container(obj, name)
        if have is None:
            pod_spec.setdefault('containers', []).append(copy.deepcopy(want))
        else:
            have['image'] = want['image']
            have['imagePullPolicy'] = want['imagePullPolicy']
            have['ports'] = copy.deepcopy(want['ports'])

        secrets = desired['spec']['template']['spec'].get('imagePullSecrets')
        if secrets:
            pod_spec['imagePullSecrets'] = copy.deepcopy(secrets)
        else:
            pod_spec.pop('imagePullSecrets', None)
        return obj


class ServiceKind(DependentKind):
    resource = resources.Service
    field = 'service'

    def managed(self, obj):
        ports = [
            (p.get('name'), p.get('port'), p.get('targetPort'), p.get('protocol'))
            for p in _get(obj, 'spec', 'ports', default=[])
        ]
        return {
            **super().managed(obj),
            'selector': _get(obj, 'spec', 'selector'),
            'ports': ports,
        }

    def merge(self, actual, desired):
        obj = super().merge(actual, desired)
        spec = _setdefault(obj, 'spec')
        spec['selector'] = copy.deepcopy(desired['spec']['selector'])
        # Keep server assigned fields (e.g. nodePort) of ports we know.
        existing = {p.get('name'): p for p in spec.get('ports') or []}
        ports = []
        for want in desired['spec']['ports']:
            port = copy.deepcopy(existing.get(want['name'], {}))
            port.update(want)
            ports.append(port)
        spec['ports'] = ports
        return obj


class IngressKind(DependentKind):
    resource = resources.Ingress
    field = 'ingress'

    def managed(self, obj):
        rules = []
        for rule in _get(obj, 'spec', 'rules', default=[]):
            paths = [
                (
                    p.get('path'),
                    p.get('pathType'),
                    _get(p, 'backend', 'service', 'name'),
                    _get(p, 'backend', 'service', 'port', 'number'),
                )
                for p in _get(rule, 'http', 'paths', default=[])
            ]
            rules.append((rule.get('host'), paths))
        return {
            **super().managed(obj),
            'rules': rules,
        }

    def merge(self, actual, desired):
        obj = super().merge(actual, desired)
        spec = _setdefault(obj, 'spec')
        spec['rules'] = copy.deepcopy(desired['spec']['rules'])
        return obj


# Creation order. Nothing depends on it, but it keeps api calls predictable.
KINDS = (DeploymentKind(), ServiceKind(), IngressKind())

# Deletion order: the reverse of creation.
TEARDOWN_ORDER = tuple(reversed(KINDS))
