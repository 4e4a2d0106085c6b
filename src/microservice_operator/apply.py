import dataclasses
import enum
import logging
import typing

from .dependents import DependentKind
from .exceptions import (
    ConflictError,
    Error,
    ObjectNotFound,
    OwnershipError,
    aggregate,
    api_errors,
    classify,
)
from .resources import controller_of, is_controlled_by

__all__ = [
    'Action',
    'Op',
    'apply',
    'converge',
    'fetch',
    'plan',
]

log = logging.getLogger(__name__)


class Op(enum.Enum):
    CREATE = 'create'
    UPDATE = 'update'
    NOOP = 'noop'
    DELETE = 'delete'


@dataclasses.dataclass
class Action:
    op: Op
    kind: DependentKind
    name: str
    namespace: str
    # The object to create or update with, or the actual object otherwise.
    obj: typing.Optional[dict] = None

    @property
    def is_mutating(self):
        return self.op is not Op.NOOP

    def __repr__(self):
        return f'<Action {self.op.value} {self.kind.resource} {self.namespace}/{self.name}>'


def plan(kind: DependentKind, owner, desired, actual) -> Action:
    """Decide what needs to be done to turn actual into desired.

    Either of desired and actual may be None, meaning the object should
    not exist or does not exist.
    """
    metadata = owner['metadata']
    name = kind.name(owner)
    namespace = metadata['namespace']

    if desired is None:
        if actual is None:
            return Action(Op.NOOP, kind, name, namespace)
        if not is_controlled_by(actual, owner):
            # Not ours, nothing to clean up.
            return Action(Op.NOOP, kind, name, namespace, actual)
        return Action(Op.DELETE, kind, name, namespace, actual)

    if actual is None:
        return Action(Op.CREATE, kind, name, namespace, desired)

    ref = controller_of(actual)
    if ref is not None and ref.get('uid') != metadata.get('uid'):
        raise OwnershipError(
            f'{kind.resource} {namespace}/{name} is already controlled by '
            f"{ref.get('kind')} {ref.get('name')}"
        )

    if kind.is_equal(actual, desired):
        return Action(Op.NOOP, kind, name, namespace, actual)

    # The merged object carries the resourceVersion of actual, so the
    # update fails if someone changed the object since we read it.
    return Action(Op.UPDATE, kind, name, namespace, kind.merge(actual, desired))


async def fetch(client, kind: DependentKind, name, namespace):
    """Get the actual object of the given kind, or None if it does not exist."""
    try:
        return await client.get(kind.resource, name, namespace=namespace)
    except ObjectNotFound:
        return None


async def apply(client, action: Action):
    """Execute a planned action against the api server."""
    match action.op:
        case Op.CREATE:
            log.info('creating %s %s/%s', action.kind.resource, action.namespace, action.name)
            return await client.create(action.kind.resource, action.obj)
        case Op.UPDATE:
            log.info('updating %s %s/%s', action.kind.resource, action.namespace, action.name)
            return await client.update(action.kind.resource, action.obj)
        case Op.DELETE:
            log.info('deleting %s %s/%s', action.kind.resource, action.namespace, action.name)
            try:
                await client.delete(
                    action.kind.resource, action.name, namespace=action.namespace
                )
            except ObjectNotFound:
                log.debug('already gone %r', action)
            return None
        case Op.NOOP:
            return action.obj


async def converge(client, owner, targets):
    """Converge every (kind, desired) pair in targets.

    Each kind is handled independently: a failure of one does not prevent
    the others from being converged. All failures are collected and raised
    as a single aggregated error once every kind has been attempted.
    Returns the list of actions that were executed.
    """
    metadata = owner['metadata']
    actions = []
    errors = []
    for kind, desired in targets:
        name = kind.name(owner)
        operation = f'{kind.resource.kind.lower()} {metadata["namespace"]}/{name}'
        try:
            actual = await fetch(client, kind, name, metadata['namespace'])
            action = plan(kind, owner, desired, actual)
            log.debug('planned %r', action)
            try:
                await apply(client, action)
            except ObjectNotFound as e:
                # Deleted since we read it, start over from a fresh read.
                raise ConflictError(f'{operation}: deleted concurrently') from e
            actions.append(action)
        except (Error, *api_errors) as e:
            error = classify(e, operation)
            log.debug('failed to converge %s: %r', operation, error)
            errors.append(error)
    error = aggregate(errors)
    if error is not None:
        raise error
    return actions
