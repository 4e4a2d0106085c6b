"""
Deletion of a MicroService.

With the finalizer strategy we hold a finalizer on the MicroService and
remove the objects it owns ourselves, in a fixed order, before letting the
api server delete it. With the cascade strategy the garbage collector
removes owned objects by following their owner references.
"""

import copy
import logging

from .apply import apply, fetch, plan
from .dependents import TEARDOWN_ORDER
from .exceptions import classify
from .resources import GROUP, MicroService

__all__ = [
    'FINALIZER',
    'add_finalizer',
    'has_finalizer',
    'remove_finalizer',
    'teardown',
]

log = logging.getLogger(__name__)


FINALIZER = f'{GROUP}/finalizer'


def has_finalizer(obj, finalizer=FINALIZER):
    return finalizer in (obj['metadata'].get('finalizers') or [])


async def add_finalizer(client, obj, finalizer=FINALIZER):
    """Add our finalizer, returns the updated object."""
    if has_finalizer(obj, finalizer):
        return obj
    updated = copy.deepcopy(obj)
    finalizers = updated['metadata'].get('finalizers') or []
    updated['metadata']['finalizers'] = finalizers + [finalizer]
    log.debug('adding finalizer to %s/%s', obj['metadata']['namespace'],
        obj['metadata']['name'])
    return await client.update(MicroService, updated)


async def remove_finalizer(client, obj, finalizer=FINALIZER):
    """Remove our finalizer, returns the updated object.
    Does nothing if the finalizer is not present.
    """
    if not has_finalizer(obj, finalizer):
        return obj
    updated = copy.deepcopy(obj)
    updated['metadata']['finalizers'] = [
        f for f in updated['metadata']['finalizers'] if f != finalizer
    ]
    log.debug('removing finalizer from %s/%s', obj['metadata']['namespace'],
        obj['metadata']['name'])
    return await client.update(MicroService, updated)


async def teardown(client, owner, kinds=TEARDOWN_ORDER):
    """Delete the objects owned by owner one after the other.

    Objects which do not exist are considered deleted, objects not
    controlled by owner are left alone. Stops at the first failure so that
    an object is never deleted before the ones preceding it in kinds.
    Returns the executed actions.
    """
    metadata = owner['metadata']
    namespace = metadata['namespace']
    actions = []
    for kind in kinds:
        name = kind.name(owner)
        operation = f'delete {kind.resource.kind.lower()} {namespace}/{name}'
        try:
            actual = await fetch(client, kind, name, namespace)
            action = plan(kind, owner, None, actual)
            await apply(client, action)
        except Exception as e:
            error = classify(e, operation)
            if error is e:
                raise
            raise error from e
        actions.append(action)
    return actions
