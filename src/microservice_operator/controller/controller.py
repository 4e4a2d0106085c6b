import enum
import logging
import typing

import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus

from ..exceptions import (
    ObjectNotFound,
    PermanentError,
    Requeue,
    TemporaryError,
)
from ..invocation import invoke
from ..resources import Resource
from ..source import EventSource
from ..tasks import Task
from ..workqueue import Workqueue
from .request import requests_from_event_for_object, requests_from_event_for_owner


log = logging.getLogger(__name__)


class Outcome(enum.Enum):
    SUCCESS = 'success'
    # Dropped, until the next event for the object arrives.
    FORGOTTEN = 'forgotten'
    REQUEUED = 'requeued'


class ReconcilerLoggerAdapter(logging.LoggerAdapter):
    """Prefixes the log message with reconcilers number"""

    def process(self, msg, kwargs):
        reconciler = 'reconciler[%i]' % self.extra['num']
        return '%s: %s' % (reconciler, msg), kwargs


class Controller(Task):
    """Runs a reconcile function for every request in its work queue.

    Requests are produced by event sources: one for the reconciled
    resource itself and one for each owned resource kind, which enqueues
    the controlling owner of the changed object.

    Up to concurrent_reconciles requests are reconciled in parallel. The
    work queue guarantees that the same request is never reconciled
    concurrently.
    """

    def __init__(
        self,
        reconcile: typing.Callable,
        resource: Resource = None,
        name: str = None,
        owns: typing.Iterable[Resource] = (),
        predicates: typing.List[typing.Callable] = None,
        concurrent_reconciles: int = 1,
        reconcile_timeout: typing.Optional[float] = None,
        rate_limiter=None,
    ):
        super().__init__()
        self.reconcile = reconcile
        self.resource = resource or reconcile.resource
        self.name = name
        self.predicates = predicates or []
        self.concurrent_reconciles = concurrent_reconciles
        self.reconcile_timeout = reconcile_timeout
        self.queue = Workqueue(rate_limiter)
        self._event_sources = []

        self._add_event_source(
            self.resource,
            requests_from_event_for_object,
            predicates=self.predicates,
            resource=self.resource,
        )
        for owned in owns:
            self._add_event_source(owned, requests_from_event_for_owner, owner=self.resource)

    def __repr__(self):
        if self.name is not None:
            return f'<{self.__class__.__name__} {self.name} {self.resource}>'
        return f'<{self.__class__.__name__} {self.resource}>'

    @property
    def event_sources(self):
        return self._event_sources

    def _add_event_source(self, watched, handler, predicates=None, **kwargs):
        source = EventSource(
            self.queue,
            watched,
            handler,
            kwargs,
            predicates=predicates,
        )
        self._event_sources.append(source)

    async def process(self, request, logger=log):
        """Reconcile a single request and requeue or forget it depending
        on the result. Never raises, except for cancellation.
        """
        try:
            with anyio.fail_after(self.reconcile_timeout):
                await invoke(self.reconcile, request)
        except ObjectNotFound as e:
            logger.debug('%r', e)
            # There's no point to requeue the request, when the object
            # appears again we will get an event for it.
            await self.queue.forget(request)
            return Outcome.FORGOTTEN
        except PermanentError as e:
            logger.error('%r: %r', request, e)
            # The reconciler signaled to us that it can not handle this
            # request so we give up until the object changes.
            await self.queue.forget(request)
            return Outcome.FORGOTTEN
        except TemporaryError as e:
            request.retries += 1
            if e.delay is None:
                logger.info('requeuing with rate limiting %r: %r', request, e)
                await self.queue.add_rate_limited(request)
            else:
                logger.info('requeuing with delay %s %r: %r', e.delay, request, e)
                await self.queue.forget(request)
                await self.queue.add_after(request, e.delay)
            return Outcome.REQUEUED
        except Requeue as e:
            await self.queue.forget(request)
            if e.after:
                logger.debug('requeuing with delay %s %r', e.after, request)
                await self.queue.add_after(request, e.after)
            else:
                logger.debug('requeuing %r', request)
                await self.queue.add(request)
            return Outcome.REQUEUED
        except TimeoutError:
            logger.warning('reconcile of %r timed out after %ss',
                request, self.reconcile_timeout)
            request.retries = await self.queue.num_requeues(request) + 1
            await self.queue.add_rate_limited(request)
            return Outcome.REQUEUED
        except Exception as e:
            # Unexpected error, log it and requeue with rate limiting.
            logger.exception(e)
            request.retries = await self.queue.num_requeues(request) + 1
            await self.queue.add_rate_limited(request)
            return Outcome.REQUEUED
        else:
            # Success! Forget about this request.
            request.retries = 0
            await self.queue.forget(request)
            return Outcome.SUCCESS

    async def _reconciler(self, num):
        logger = ReconcilerLoggerAdapter(log, {'num': num})
        logger.debug('started')
        while True:
            request = await self.queue.get()
            logger.debug('processing %r', request)
            try:
                await self.process(request, logger)
            finally:
                # In any case, mark this request as done.
                logger.debug('done processing %r', request)
                await self.queue.done(request)

    async def _run_reconcilers(self):
        async with anyio.create_task_group() as tg:
            for num in range(self.concurrent_reconciles):
                tg.start_soon(self._reconciler, num)

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        log.debug('starting %s', self)

        try:
            async with anyio.create_task_group() as tg:
                self._task_group = tg

                try:
                    for source in self._event_sources:
                        await tg.start(source)
                    await tg.start(self.queue)

                    tg.start_soon(self._run_reconcilers)

                    log.info('started %s', self)
                    # Inform any awaiters that we are ready.
                    self._running.set()
                    task_status.started()

                    # Wait until told otherwise.
                    await self._stop.wait()
                    tg.cancel_scope.cancel()

                except anyio.get_cancelled_exc_class():
                    log.debug('canceled %s', self)
                    raise

                finally:
                    log.debug('stopping %s', self)

        finally:
            log.info('stopped %s', self)
