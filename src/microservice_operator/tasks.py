import anyio
from anyio import TASK_STATUS_IGNORED
from anyio.abc import TaskStatus


class Task:
    """A long running task that can be awaited until it is running,
    independent of the TaskGroup it was started in.

    Subclasses implement __call__, set self._running once they are ready
    and return when self._stop is set or their task group is cancelled.
    """

    def __init__(self):
        self._task_group = None
        self._running = anyio.Event()
        self._stop = anyio.Event()

    @property
    def is_running(self):
        return self._running.is_set()

    @property
    def running(self):
        return self._running.wait()

    def __await__(self):
        return self._running.wait().__await__()

    async def __call__(self, task_status: TaskStatus[None] = TASK_STATUS_IGNORED):
        raise NotImplementedError()

    def stop(self):
        if self._task_group:
            self._task_group.cancel_scope.cancel()
        self._stop.set()
