import logging

from .apply import converge
from .config import Settings
from .dependents import KINDS
from .desired import MicroServiceSpec, build, validate
from .exceptions import (
    ConflictError,
    Error,
    ForbiddenError,
    ObjectNotFound,
    PermanentError,
    TemporaryError,
)
from .finalizer import add_finalizer, has_finalizer, remove_finalizer, teardown
from .resources import MicroService
from .status import Condition, write_status

__all__ = [
    'MicroServiceReconciler',
]


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes the log message with the request being reconciled"""

    def process(self, msg, kwargs):
        return '%s: %s' % (self.extra['request'], msg), kwargs


class MicroServiceReconciler:
    """Converges the Deployment, Service and Ingress of a MicroService.

    The reconciler holds no state between calls, every call starts with a
    fresh read of the MicroService from the api server.
    Success is signaled by returning, failures by raising one of:

    - ObjectNotFound: the MicroService vanished while we worked on it
    - TemporaryError (and subclasses): retry later
    - PermanentError (and subclasses): retrying will not help, the user
      has to change something first
    """

    resource = MicroService

    def __init__(self, client, settings=None, log=None):
        self.client = client
        self.settings = settings or Settings()
        self.log = log or logging.getLogger(__name__)

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.resource}>'

    async def __call__(self, request):
        log = RequestLoggerAdapter(
            self.log, {'request': f'{request.namespace}/{request.name}'}
        )
        attempts = max(self.settings.conflict_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            try:
                obj = await self.client.get(
                    self.resource, request.name, namespace=request.namespace
                )
            except ObjectNotFound:
                # Deleted, owned objects are taken care of by either the
                # garbage collector or our finalizer.
                log.debug('no longer exists')
                return []
            try:
                return await self.reconcile(obj, log)
            except ConflictError as e:
                if attempt >= attempts:
                    raise
                log.debug('conflict, retrying from a fresh read (%i/%i): %s',
                    attempt, attempts - 1, e.message)

    async def reconcile(self, obj, log):
        if obj['metadata'].get('deletionTimestamp'):
            return await self._finalize(obj, log)
        try:
            validate(MicroServiceSpec.from_dict(obj.get('spec')))
            if self.settings.use_finalizer:
                # Must be in place before we create anything.
                obj = await add_finalizer(self.client, obj)
            actions = await self._converge(obj, log)
        except ConflictError:
            raise
        except Error as e:
            await self._report_failure(obj, e, log)
            raise
        await write_status(self.client, obj, Condition.READY)
        return actions

    async def _converge(self, obj, log):
        desired = build(obj)
        targets = [(kind, kind.desired(desired)) for kind in KINDS]
        actions = await converge(self.client, obj, targets)
        changes = [action for action in actions if action.is_mutating]
        if changes:
            log.info('converged: %s', ', '.join(
                f'{action.op.value} {action.kind.resource.kind}' for action in changes
            ))
        else:
            log.debug('up to date')
        return actions

    async def _finalize(self, obj, log):
        if not has_finalizer(obj):
            log.debug('being deleted, nothing left to do')
            return []
        actions = []
        try:
            if self.settings.use_finalizer:
                actions = await teardown(self.client, obj)
            await remove_finalizer(self.client, obj)
        except ObjectNotFound:
            log.debug('gone while finalizing')
            return actions
        except ConflictError:
            raise
        except Error as e:
            await self._report_failure(obj, e, log)
            raise
        log.info('finalized')
        return actions

    async def _report_failure(self, obj, error, log):
        if isinstance(error, TemporaryError):
            condition = Condition.PROGRESSING
            log.info('will retry: %s', error.message)
        elif isinstance(error, ForbiddenError):
            condition = Condition.ERROR
            log.error('permission denied, fix the operators rbac rules: %s',
                error.message)
        elif isinstance(error, PermanentError):
            condition = Condition.ERROR
            log.error('giving up: %s', error.message)
        else:
            condition = Condition.ERROR
            log.error('failed: %s', error.message)
        try:
            await write_status(self.client, obj, condition, error.message)
        except Error as e:
            # The original error is what the controller has to act upon.
            log.warning('could not write status: %s', e)
