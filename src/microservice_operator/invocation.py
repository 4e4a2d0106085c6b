import functools
import inspect

import anyio


def is_async_fn(fn) -> bool:
    if fn is None:
        return False
    elif isinstance(fn, functools.partial):
        return is_async_fn(fn.func)
    elif hasattr(fn, '__wrapped__'):  # @functools.wraps()
        return is_async_fn(fn.__wrapped__)
    elif inspect.iscoroutinefunction(fn):
        return True
    else:
        # Callable objects with an async __call__.
        return inspect.iscoroutinefunction(getattr(fn, '__call__', None))


def nonblocking(func):
    """Decorator that marks a given sync function as safe to call
    from the event loop."""
    func.__nonblocking__ = True
    return func


async def invoke(func, *args, **kwargs):
    """Call func no matter if it is sync or async.
    Blocking sync functions are run in a worker thread."""
    if is_async_fn(func):
        return await func(*args, **kwargs)
    elif hasattr(func, '__nonblocking__'):
        return func(*args, **kwargs)
    else:
        return await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))
