import pytest

from conftest import microservice

from microservice_operator.cache import CreateEvent, DeleteEvent, UpdateEvent
from microservice_operator.controller import (
    Request,
    request_for_owner,
    requests_from_event_for_object,
    requests_from_event_for_owner,
)
from microservice_operator.desired import build
from microservice_operator.resources import MicroService
from microservice_operator.source import ignore_status_updates


@pytest.fixture
def deployment():
    return build(microservice(uid='1234')).deployment


def test_request_identity():
    r1 = Request(MicroService, 'foo', namespace='default')
    r2 = Request(MicroService, 'foo', namespace='default')
    r2.retries = 3
    assert r1 == r2
    assert hash(r1) == hash(r2)
    assert r1 != Request(MicroService, 'foo', namespace='other')
    assert repr(r1) == '<Request devops.kinnylee.com/v1/MicroService default/foo retries: 0>'


def test_object_events():
    obj = microservice()
    [request] = requests_from_event_for_object(CreateEvent(obj), resource=MicroService)
    assert request == Request(MicroService, 'foo', namespace='default')


def test_owner_of_owned_object(deployment):
    [request] = requests_from_event_for_owner(DeleteEvent(deployment), owner=MicroService)
    assert request == Request(MicroService, 'foo', namespace='default')


def test_update_event_maps_old_and_new_owner(deployment):
    new = build(microservice(name='bar', uid='5678')).deployment
    requests = list(requests_from_event_for_owner(UpdateEvent(deployment, new), owner=MicroService))
    assert [r.name for r in requests] == ['foo', 'bar']


def test_objects_without_our_controller_are_ignored(deployment):
    deployment['metadata']['ownerReferences'][0]['controller'] = False
    assert list(request_for_owner(deployment, MicroService)) == []

    deployment['metadata']['ownerReferences'][0].update(controller=True, kind='ReplicaSet')
    assert list(request_for_owner(deployment, MicroService)) == []

    del deployment['metadata']['ownerReferences']
    assert list(request_for_owner(deployment, MicroService)) == []


def with_metadata(obj, **metadata):
    obj = dict(obj, metadata=dict(obj['metadata'], **metadata))
    return obj


def test_status_only_updates_are_ignored():
    old = microservice(generation=1, resourceVersion='1')
    status_update = dict(with_metadata(old, resourceVersion='2'), status={'condition': 'Ready'})
    assert not ignore_status_updates(UpdateEvent(old, status_update))

    assert ignore_status_updates(UpdateEvent(old, with_metadata(old, generation=2)))
    assert ignore_status_updates(UpdateEvent(old, with_metadata(old, deletionTimestamp='now')))
    assert ignore_status_updates(UpdateEvent(old, with_metadata(old, finalizers=['x'])))
    assert ignore_status_updates(CreateEvent(old))
    assert ignore_status_updates(DeleteEvent(old))
