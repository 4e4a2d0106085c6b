from .events import (
    CreateEvent,
    UpdateEvent,
    DeleteEvent,
)
from .store import Store
from .informer import Informer

__all__ = [
    'CreateEvent',
    'DeleteEvent',
    'Informer',
    'Store',
    'UpdateEvent',
]
