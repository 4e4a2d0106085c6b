from .request import (
    Request,
    request_for_object,
    request_for_owner,
    requests_from_event_for_object,
    requests_from_event_for_owner,
)

from .controller import (
    Controller,
    Outcome,
)

__all__ = [
    'Controller',
    'Outcome',
    'Request',
    'request_for_object',
    'request_for_owner',
    'requests_from_event_for_object',
    'requests_from_event_for_owner',
]
