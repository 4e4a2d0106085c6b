import json

import urllib3.exceptions
from kubernetes.client.exceptions import ApiException

__all__ = [
    'ApiException',
    'ConflictError',
    'Error',
    'FatalError',
    'ForbiddenError',
    'ObjectNotFound',
    'OwnershipError',
    'PermanentError',
    'Requeue',
    'StoreKeyError',
    'TemporaryError',
    'UnavailableError',
    'ValidationError',
    'aggregate',
    'api_errors',
    'classify',
    'iterate_errors',
    'transport_errors',
]


def iterate_errors(exc):
    """
    iterate over all non-exceptiongroup parts of an exception(group)
    """
    if isinstance(exc, BaseExceptionGroup):
        for e in exc.exceptions:
            yield from iterate_errors(e)
    else:
        yield exc


class FatalError(Exception):
    """A fatal error that we can not recover from."""


class Error(Exception):
    """Base class for all custom Exceptions."""

    def __init__(self, message=None):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.__repr__()

    def __repr__(self):
        return f'{self.__class__.__name__}: {self.message}'


class ObjectNotFound(Error):
    """The requested object does not exist in the api server."""

    def __init__(self, resource, name, namespace=None):
        self.resource = resource
        self.name = name
        self.namespace = namespace
        if namespace is not None:
            ident = f'{namespace}/{name}'
        else:
            ident = name
        super().__init__(f'{resource} {ident}')


class StoreKeyError(Error):
    """An object could not be keyed for storage."""

    def __init__(self, obj):
        super().__init__(repr(obj))
        self.obj = obj


class TemporaryError(Error):
    """Raised by a reconciler when a recoverable error occurs.
    The request is requeued after the given delay, or rate limited
    if no delay is given."""

    def __init__(self, message=None, delay=None):
        super().__init__(message)
        self.delay = delay

    def __repr__(self):
        if self.delay is None:
            return f'{self.__class__.__name__}: {self.message}'
        return f'{self.__class__.__name__}: {self.message} delay: {self.delay}'


class ConflictError(TemporaryError):
    """The object was changed by someone else since we read it."""


class UnavailableError(TemporaryError):
    """The api server could not be reached or is overloaded."""


class PermanentError(Error):
    """Raised by a reconciler when a non-recoverable error occurs."""


class ValidationError(PermanentError):
    """The declared spec can not produce valid objects."""


class ForbiddenError(PermanentError):
    """We lack the rights to perform an operation."""


class OwnershipError(PermanentError):
    """An object we want to manage is controlled by someone else."""


class Requeue(Error):
    """Raised by a reconciler to requeue a request.
    The request will be requeued after the given delay."""

    def __init__(self, after=None):
        super().__init__(None)
        self.after = after

    def __repr__(self):
        return f'{self.__class__.__name__}: after: {self.after}'


def _api_message(exc):
    try:
        body = json.loads(exc.body)
        return body.get('message') or exc.reason
    except (TypeError, ValueError, AttributeError):
        return exc.reason


transport_errors = (urllib3.exceptions.HTTPError, ConnectionError, TimeoutError)
# Everything the kubernetes client raises that classify knows about.
api_errors = (ApiException,) + transport_errors


def classify(exc, operation=None):
    """Map an error raised while talking to the api server to one of our
    error types. Errors which are already classified are returned as is.
    """
    if isinstance(exc, Error):
        return exc
    prefix = f'{operation}: ' if operation else ''
    if isinstance(exc, ApiException):
        status = exc.status or 0
        message = f'{prefix}{_api_message(exc)}'
        match status:
            case 409:
                return ConflictError(message)
            case 401 | 403:
                return ForbiddenError(message)
            case 400 | 422:
                return ValidationError(message)
            case 429:
                return UnavailableError(message)
        if status >= 500 or status == 0:
            return UnavailableError(message)
        return PermanentError(message)
    if isinstance(exc, transport_errors):
        return UnavailableError(f'{prefix}{exc}')
    return exc


# Most actionable first.
_precedence = (ConflictError, TemporaryError, ForbiddenError, PermanentError)


def aggregate(errors):
    """Fold the errors of independent operations into the one error the
    controller acts upon. None if there are no errors.
    """
    errors = list(errors)
    if not errors:
        return None
    if len(errors) == 1:
        return errors[0]
    message = '; '.join(e.message if isinstance(e, Error) else str(e) for e in errors)
    for cls in _precedence:
        if any(isinstance(e, cls) for e in errors):
            error = cls(message)
            break
    else:
        error = Error(message)
    error.errors = errors
    return error
