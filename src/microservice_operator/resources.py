import dataclasses

import yaml

__all__ = [
    'Deployment',
    'GROUP',
    'Ingress',
    'MicroService',
    'Resource',
    'Service',
    'controller_of',
    'is_controlled_by',
    'is_same_version',
    'microservice_crd',
    'object_ref',
    'owner_reference',
    'resources_to_yaml',
]


GROUP = 'devops.kinnylee.com'


@dataclasses.dataclass(frozen=True)
class Resource:
    """Describes a kind of object the api server serves."""

    api_version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def group(self) -> str:
        if '/' in self.api_version:
            return self.api_version.split('/', 1)[0]
        return ''

    @property
    def version(self) -> str:
        return self.api_version.rsplit('/', 1)[-1]

    def __str__(self):
        return f'{self.api_version}/{self.kind}'


MicroService = Resource(f'{GROUP}/v1', 'MicroService', 'microservices')
Deployment = Resource('apps/v1', 'Deployment', 'deployments')
Service = Resource('v1', 'Service', 'services')
Ingress = Resource('networking.k8s.io/v1', 'Ingress', 'ingresses')


def object_ref(obj):
    """Short human readable identity of an object, for logging."""
    metadata = obj.get('metadata') or {}
    out = [f"{obj.get('apiVersion')}/{obj.get('kind')}"]
    namespace = metadata.get('namespace')
    name = metadata.get('name')
    if namespace is not None:
        out.append(f'{namespace}/{name}')
    elif name is not None:
        out.append(name)
    resource_version = metadata.get('resourceVersion')
    if resource_version is not None:
        out.append(resource_version)
    ident = ' '.join(out)
    return f'<Object {ident}>'


def is_same_version(o1, o2):
    o1_resource_version = o1['metadata'].get('resourceVersion')
    o2_resource_version = o2['metadata'].get('resourceVersion')
    return (
        o1_resource_version is not None and o1_resource_version == o2_resource_version
    )


def owner_reference(owner, block_owner_deletion=True, controller=True):
    metadata = owner['metadata']
    return {
        'apiVersion': owner['apiVersion'],
        'kind': owner['kind'],
        'name': metadata['name'],
        'uid': metadata['uid'],
        'blockOwnerDeletion': block_owner_deletion,
        'controller': controller,
    }


def controller_of(obj):
    """Return the controlling owner reference of the given object, if any."""
    for ref in obj['metadata'].get('ownerReferences') or []:
        if ref.get('controller'):
            return ref
    return None


def is_controlled_by(obj, owner):
    ref = controller_of(obj)
    return ref is not None and ref.get('uid') == owner['metadata']['uid']


def _printcolumn(name, jsonpath, type='string', description=None):
    column = {'name': name, 'type': type, 'jsonPath': jsonpath}
    if description:
        column['description'] = description
    return column


def microservice_crd():
    """The CustomResourceDefinition serving MicroService objects."""
    spec_schema = {
        'type': 'object',
        'description': 'MicroServiceSpec defines the desired state of MicroService.',
        'required': ['image', 'host'],
        'properties': {
            'image': {
                'type': 'string',
                'description': 'Container image reference.',
            },
            'host': {
                'type': 'string',
                'description': 'Host name the service is exposed on.',
            },
            'secret': {
                'type': 'string',
                'description': 'Optional image pull secret name.',
            },
        },
    }
    status_schema = {
        'type': 'object',
        'description': 'MicroServiceStatus defines the observed state of MicroService.',
        'properties': {
            'condition': {
                'type': 'string',
                'enum': ['Ready', 'Progressing', 'Error'],
            },
            'message': {'type': 'string'},
            'observedGeneration': {'type': 'integer', 'format': 'int64'},
        },
    }
    version = {
        'name': MicroService.version,
        'served': True,
        'storage': True,
        'subresources': {'status': {}},
        'additionalPrinterColumns': [
            _printcolumn('image', '.spec.image'),
            _printcolumn('host', '.spec.host'),
            _printcolumn('condition', '.status.condition'),
            _printcolumn('age', '.metadata.creationTimestamp', type='date'),
        ],
        'schema': {
            'openAPIV3Schema': {
                'type': 'object',
                'description': 'MicroService is the Schema for the microservices API.',
                'properties': {
                    'apiVersion': {'type': 'string'},
                    'kind': {'type': 'string'},
                    'metadata': {'type': 'object'},
                    'spec': spec_schema,
                    'status': status_schema,
                },
            },
        },
    }
    singular = MicroService.kind.lower()
    return {
        'apiVersion': 'apiextensions.k8s.io/v1',
        'kind': 'CustomResourceDefinition',
        'metadata': {'name': f'{MicroService.plural}.{GROUP}'},
        'spec': {
            'group': GROUP,
            'scope': 'Namespaced',
            'names': {
                'kind': MicroService.kind,
                'listKind': f'{MicroService.kind}List',
                'plural': MicroService.plural,
                'singular': singular,
                'shortNames': ['ms'],
            },
            'versions': [version],
        },
    }


class YamlDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        return True


def _str_presenter(dumper, data):
    """
    Preserve multiline strings when dumping yaml.
    https://github.com/yaml/pyyaml/issues/240
    """
    if '\n' in data:
        # Remove trailing spaces messing out the output.
        block = '\n'.join([line.rstrip() for line in data.splitlines()])
        if data.endswith('\n'):
            block += '\n'
        return dumper.represent_scalar('tag:yaml.org,2002:str', block, style='|')
    return dumper.represent_scalar('tag:yaml.org,2002:str', data)


yaml.add_representer(str, _str_presenter, Dumper=YamlDumper)


def resources_to_yaml(*objects):
    """Serialize one or more manifests to a yaml document that kubernetes
    understands.

    We prevent the yaml Dumper from using any alias references as
    kubernetes does not understand those.
    """
    return yaml.dump_all(list(objects), sort_keys=False, Dumper=YamlDumper)
