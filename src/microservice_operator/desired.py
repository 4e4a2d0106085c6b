"""
Desired state of the objects a MicroService owns.

Everything in here is a pure function of the MicroService object: no api
calls and no cluster state is consulted, so the same MicroService always
produces the same manifests.
"""

import dataclasses
import re
import typing

from .exceptions import ValidationError
from .resources import Deployment, Ingress, Service, owner_reference

__all__ = [
    'CONTAINER_PORT',
    'Desired',
    'MicroServiceSpec',
    'SERVICE_PORT',
    'build',
    'build_deployment',
    'build_ingress',
    'build_service',
    'pod_labels',
    'validate',
]


CONTAINER_PORT = 8080
SERVICE_PORT = 80

# RFC 1123 subdomain, as used for host names and most object names.
_dns_label = r'[a-z0-9]([-a-z0-9]*[a-z0-9])?'
_dns_subdomain = re.compile(rf'^{_dns_label}(\.{_dns_label})*$')


@dataclasses.dataclass(frozen=True)
class MicroServiceSpec:
    """MicroServiceSpec defines the desired state of MicroService."""

    image: str
    host: str
    secret: typing.Optional[str] = None

    @classmethod
    def from_dict(cls, d):
        d = d or {}
        return cls(
            image=d.get('image') or '',
            host=d.get('host') or '',
            secret=d.get('secret') or None,
        )


class Desired(typing.NamedTuple):
    deployment: dict
    service: dict
    ingress: dict


def _is_subdomain(value):
    return len(value) <= 253 and _dns_subdomain.match(value) is not None


def validate(spec: MicroServiceSpec) -> None:
    """Raise ValidationError if the spec can not produce valid objects."""
    problems = []
    if not spec.image.strip():
        problems.append('spec.image must not be empty')
    host = spec.host
    if host.startswith('*.'):
        host = host[2:]
    if not host or not _is_subdomain(host):
        problems.append(f'spec.host {spec.host!r} is not a valid DNS name')
    if spec.secret is not None and not _is_subdomain(spec.secret):
        problems.append(f'spec.secret {spec.secret!r} is not a valid secret name')
    if problems:
        raise ValidationError(', '.join(problems))


def pod_labels(name):
    return {'app': name}


def _metadata(owner, resource):
    metadata = owner['metadata']
    name = metadata['name']
    out = {
        'name': name,
        'namespace': metadata['namespace'],
        'labels': pod_labels(name),
    }
    if metadata.get('uid'):
        out['ownerReferences'] = [owner_reference(owner)]
    return {
        'apiVersion': resource.api_version,
        'kind': resource.kind,
        'metadata': out,
    }


def build_deployment(owner, spec: MicroServiceSpec):
    name = owner['metadata']['name']
    pod_spec = {
        'containers': [
            {
                'name': name,
                'image': spec.image,
                'imagePullPolicy': 'Always',
                'ports': [{'containerPort': CONTAINER_PORT}],
            }
        ],
    }
    if spec.secret:
        pod_spec['imagePullSecrets'] = [{'name': spec.secret}]
    obj = _metadata(owner, Deployment)
    obj['spec'] = {
        'selector': {'matchLabels': pod_labels(name)},
        'template': {
            'metadata': {'labels': pod_labels(name)},
            'spec': pod_spec,
        },
    }
    return obj


def build_service(owner, spec: MicroServiceSpec):
    name = owner['metadata']['name']
    obj = _metadata(owner, Service)
    obj['spec'] = {
        'selector': pod_labels(name),
        'ports': [
            {
                'name': name,
                'port': SERVICE_PORT,
                'targetPort': CONTAINER_PORT,
                'protocol': 'TCP',
            }
        ],
    }
    return obj


def build_ingress(owner, spec: MicroServiceSpec):
    name = owner['metadata']['name']
    obj = _metadata(owner, Ingress)
    obj['spec'] = {
        'rules': [
            {
                'host': spec.host,
                'http': {
                    'paths': [
                        {
                            'path': '/',
                            'pathType': 'Prefix',
                            'backend': {
                                'service': {
                                    'name': name,
                                    'port': {'number': SERVICE_PORT},
                                },
                            },
                        }
                    ],
                },
            }
        ],
    }
    return obj


def build(owner) -> Desired:
    """Build the desired Deployment, Service and Ingress of a MicroService."""
    spec = MicroServiceSpec.from_dict(owner.get('spec'))
    return Desired(
        deployment=build_deployment(owner, spec),
        service=build_service(owner, spec),
        ingress=build_ingress(owner, spec),
    )
