import itertools

from ..invocation import nonblocking
from ..resources import Resource


class Request:
    """Identity of an object to reconcile. Carries no object state."""

    resource: Resource
    name: str
    namespace: str = None
    retries: int = 0

    def __init__(self, resource, name, namespace=None):
        self.resource = resource
        self.name = name
        self.namespace = namespace
        self.retries = 0

    @property
    def key(self):
        return (self.resource.api_version, self.resource.kind, self.namespace, self.name)

    def __hash__(self):
        return hash(self.key)

    def __eq__(self, other):
        if not isinstance(other, Request):
            return NotImplemented
        return self.key == other.key

    def __repr__(self):
        if self.namespace is not None:
            name = f'{self.namespace}/{self.name}'
        else:
            name = self.name
        return f'<Request {self.resource} {name} retries: {self.retries}>'


def _for_event(func, event, **kwargs):
    match type(event):
        case event.CreateEvent | event.DeleteEvent:
            return func(event.obj, **kwargs)
        case event.UpdateEvent:
            return itertools.chain(
                func(event.old, **kwargs),
                func(event.new, **kwargs),
            )
    return iter(())


@nonblocking
def requests_from_event_for_object(event, resource):
    """Enqueue the object the event is about."""
    return _for_event(request_for_object, event, resource=resource)


@nonblocking
def requests_from_event_for_owner(event, owner):
    """Enqueue the controlling owner of the object the event is about,
    if the owner is of the given owner resource kind."""
    return _for_event(request_for_owner, event, owner=owner)


def request_for_object(obj, resource):
    if obj is None:
        return
    metadata = obj['metadata']
    yield Request(resource, metadata['name'], namespace=metadata.get('namespace'))


def request_for_owner(obj, owner):
    if obj is None:
        return
    metadata = obj['metadata']
    for ref in metadata.get('ownerReferences') or []:
        if (
            ref.get('apiVersion') == owner.api_version
            and ref.get('kind') == owner.kind
            and ref.get('controller')
        ):
            # Owner references can only point to objects in the same namespace.
            yield Request(owner, ref['name'], namespace=metadata.get('namespace'))
