import functools
import logging
import signal

import anyio
import uvloop
from anyio import CancelScope, open_signal_receiver

from . import exceptions
from .cache import Informer
from .client import Client, default_namespace, load_config
from .config import Settings
from .controller import Controller
from .dependents import KINDS
from .reconciler import MicroServiceReconciler
from .source import ignore_status_updates
from .workqueue import default_rate_limiter


log = logging.getLogger(__name__)


async def signal_handler(scope: CancelScope):
    with open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            if signum == signal.SIGINT:
                print('Ctrl+C pressed!')
            else:
                print('Terminated!')

            scope.cancel()
            return


class Manager:
    """Wires the client, informers, event sources and the controller
    together and runs them until cancelled."""

    def __init__(self, settings: Settings = None, client=None, debug=False):
        self.settings = settings or Settings()
        self.client = client
        self.debug = debug
        self.controller = None
        self.informers = []
        self._exit = None

    def __repr__(self):
        if self.settings.all_namespaces:
            return '<Manager namespaces: all>'
        return f'<Manager namespaces: {self.settings.namespaces or "default"}>'

    @property
    def namespaces(self):
        """The namespaces to watch, [None] meaning all namespaces."""
        if self.settings.all_namespaces:
            return [None]
        if self.settings.namespaces:
            return sorted(set(self.settings.namespaces))
        return [default_namespace()]

    def run(self):
        anyio.run(
            functools.partial(self, setup_signal_handler=True),
            backend_options={'loop_factory': uvloop.new_event_loop},
        )

    def stop(self):
        log.debug('stop %r', self)
        if self._exit is not None:
            self._exit.set()

    def setup(self):
        """Create the controller and one informer per watched resource
        and namespace."""
        if self.client is None:
            load_config()
            self.client = Client()
        settings = self.settings
        reconciler = MicroServiceReconciler(self.client, settings)
        self.controller = Controller(
            reconciler,
            owns=[kind.resource for kind in KINDS],
            predicates=[ignore_status_updates],
            concurrent_reconciles=settings.concurrent_reconciles,
            reconcile_timeout=settings.reconcile_timeout,
            rate_limiter=default_rate_limiter(settings.base_backoff, settings.max_backoff),
        )
        self.informers = []
        for source in self.controller.event_sources:
            for namespace in self.namespaces:
                informer = Informer(
                    self.client,
                    source.resource,
                    namespace=namespace,
                    resync_after=settings.resync_after,
                    watch_timeout=settings.watch_timeout,
                )
                source.add_informer(informer)
                self.informers.append(informer)
        log.debug('setup %s', self)

    async def __call__(self, setup_signal_handler=False):
        if self.controller is None:
            self.setup()
        self._exit = anyio.Event()

        log.debug('startup %s', self)

        try:
            async with anyio.create_task_group() as tg:
                if setup_signal_handler:
                    tg.start_soon(signal_handler, tg.cancel_scope)

                # Event sources have to be listening before the informers
                # start sending.
                await tg.start(self.controller)
                for informer in self.informers:
                    tg.start_soon(informer)
                for informer in self.informers:
                    await informer
                log.info('started %s', self)

                # Wait until told otherwise.
                await self._exit.wait()
                tg.cancel_scope.cancel()
        except* exceptions.Error as eg:
            if self.debug:
                raise eg
            error_messages = []
            for error in exceptions.iterate_errors(eg):
                error_messages.append(str(error))
            raise exceptions.FatalError(' '.join(error_messages)) from eg

        log.debug('exiting %s', self)


def run(settings: Settings = None, debug=False):
    Manager(settings, debug=debug).run()
