import copy

import pytest

from conftest import microservice

from microservice_operator.apply import Op, converge, plan
from microservice_operator.dependents import KINDS, DeploymentKind, IngressKind, ServiceKind
from microservice_operator.desired import build
from microservice_operator.exceptions import ApiException, OwnershipError, UnavailableError
from microservice_operator.resources import MicroService


@pytest.fixture
def owner():
    return microservice(uid='1234')


@pytest.fixture
def desired(owner):
    return build(owner)


def served(obj, **fields):
    """Simulate what the api server returns for a created object."""
    obj = copy.deepcopy(obj)
    obj['metadata'].update(uid='abcd', resourceVersion='42', **fields)
    return obj


def test_create_when_missing(owner, desired):
    action = plan(DeploymentKind(), owner, desired.deployment, None)
    assert action.op is Op.CREATE
    assert action.obj == desired.deployment


@pytest.mark.parametrize('kind', KINDS)
def test_noop_when_equal(kind, owner, desired):
    actual = served(kind.desired(desired))
    action = plan(kind, owner, kind.desired(desired), actual)
    assert action.op is Op.NOOP
    assert not action.is_mutating


def test_unmanaged_fields_do_not_cause_updates(owner, desired):
    actual = served(desired.deployment)
    actual['metadata']['labels']['team'] = 'blue'
    actual['metadata']['annotations'] = {'deployment.kubernetes.io/revision': '3'}
    actual['spec']['replicas'] = 5
    actual['spec']['strategy'] = {'type': 'RollingUpdate'}
    pod_spec = actual['spec']['template']['spec']
    pod_spec['containers'][0]['resources'] = {}
    pod_spec['containers'][0]['ports'][0]['protocol'] = 'TCP'
    pod_spec['containers'].append({'name': 'sidecar', 'image': 'envoy'})
    pod_spec['restartPolicy'] = 'Always'

    assert plan(DeploymentKind(), owner, desired.deployment, actual).op is Op.NOOP


def test_update_keeps_unmanaged_fields(owner, desired):
    actual = served(desired.deployment)
    actual['spec']['replicas'] = 5
    actual['metadata']['labels']['team'] = 'blue'
    actual['spec']['template']['spec']['containers'].append({'name': 'sidecar', 'image': 'envoy'})
    actual['spec']['template']['spec']['containers'][0]['image'] = 'app:0.9'

    action = plan(DeploymentKind(), owner, desired.deployment, actual)

    assert action.op is Op.UPDATE
    obj = action.obj
    assert obj['metadata']['resourceVersion'] == '42'
    assert obj['metadata']['labels'] == {'app': 'foo', 'team': 'blue'}
    assert obj['spec']['replicas'] == 5
    containers = obj['spec']['template']['spec']['containers']
    assert [c['name'] for c in containers] == ['foo', 'sidecar']
    assert containers[0]['image'] == 'app:1.0'
    # The actual object is never modified in place.
    assert actual['spec']['template']['spec']['containers'][0]['image'] == 'app:0.9'


def test_update_removes_pull_secret(owner, desired):
    actual = served(desired.deployment)
    actual['spec']['template']['spec']['imagePullSecrets'] = [{'name': 'old'}]

    action = plan(DeploymentKind(), owner, desired.deployment, actual)

    assert action.op is Op.UPDATE
    assert 'imagePullSecrets' not in action.obj['spec']['template']['spec']


def test_service_update_keeps_server_assigned_fields(owner, desired):
    actual = served(desired.service)
    actual['spec']['clusterIP'] = '10.0.0.1'
    actual['spec']['ports'][0]['targetPort'] = 9090
    actual['spec']['ports'][0]['nodePort'] = 30080

    action = plan(ServiceKind(), owner, desired.service, actual)

    assert action.op is Op.UPDATE
    assert action.obj['spec']['clusterIP'] == '10.0.0.1'
    assert action.obj['spec']['ports'] == [{
        'name': 'foo',
        'port': 80,
        'targetPort': 8080,
        'protocol': 'TCP',
        'nodePort': 30080,
    }]


def test_ingress_host_change(owner, desired):
    actual = served(desired.ingress)
    actual['spec']['rules'][0]['host'] = 'old.example.com'

    action = plan(IngressKind(), owner, desired.ingress, actual)

    assert action.op is Op.UPDATE
    assert action.obj['spec']['rules'][0]['host'] == 'foo.example.com'


def test_foreign_controller_is_an_ownership_error(owner, desired):
    actual = served(desired.service)
    actual['metadata']['ownerReferences'][0]['uid'] = 'other'

    with pytest.raises(OwnershipError):
        plan(ServiceKind(), owner, desired.service, actual)


def test_uncontrolled_object_is_adopted(owner, desired):
    actual = served(desired.service)
    del actual['metadata']['ownerReferences']

    action = plan(ServiceKind(), owner, desired.service, actual)

    assert action.op is Op.UPDATE
    [ref] = action.obj['metadata']['ownerReferences']
    assert ref['uid'] == '1234'
    assert ref['controller'] is True


def test_delete_only_what_we_control(owner, desired):
    ours = served(desired.ingress)
    assert plan(IngressKind(), owner, None, ours).op is Op.DELETE

    theirs = served(desired.ingress)
    theirs['metadata']['ownerReferences'][0]['uid'] = 'other'
    assert plan(IngressKind(), owner, None, theirs).op is Op.NOOP

    assert plan(IngressKind(), owner, None, None).op is Op.NOOP


@pytest.mark.anyio
async def test_converge_attempts_every_kind(client):
    owner = client.add(MicroService, microservice())
    client.fail('create', KINDS[0].resource, UnavailableError('boom'))
    targets = [(kind, kind.desired(build(owner))) for kind in KINDS]

    with pytest.raises(UnavailableError):
        await converge(client, owner, targets)

    assert [call[1] for call in client.calls] == ['Deployment', 'Service', 'Ingress']


@pytest.mark.anyio
async def test_converge_classifies_client_errors(client):
    owner = client.add(MicroService, microservice())
    client.fail('create', KINDS[1].resource, ApiException(status=503, reason='Service Unavailable'))
    targets = [(kind, kind.desired(build(owner))) for kind in KINDS]

    with pytest.raises(UnavailableError) as exc_info:
        await converge(client, owner, targets)

    assert exc_info.value.message == 'service default/foo: Service Unavailable'


@pytest.mark.anyio
async def test_converge_does_not_swallow_bugs(client):
    owner = client.add(MicroService, microservice())
    client.fail('create', KINDS[0].resource, UnavailableError('boom'))
    client.fail('create', KINDS[1].resource, KeyError('spec'))
    targets = [(kind, kind.desired(build(owner))) for kind in KINDS]

    with pytest.raises(KeyError):
        await converge(client, owner, targets)
