import copy
import dataclasses
import enum
import logging

from .resources import MicroService

__all__ = [
    'Condition',
    'MicroServiceStatus',
    'write_status',
]

log = logging.getLogger(__name__)


class Condition(str, enum.Enum):
    READY = 'Ready'
    PROGRESSING = 'Progressing'
    ERROR = 'Error'


@dataclasses.dataclass(frozen=True)
class MicroServiceStatus:
    """MicroServiceStatus defines the observed state of MicroService.
    It should always be reconstructable from the state of the cluster.
    """

    condition: Condition = None
    message: str = ''
    observedGeneration: int = None

    @classmethod
    def from_dict(cls, d):
        d = d or {}
        condition = d.get('condition')
        try:
            condition = Condition(condition) if condition else None
        except ValueError:
            # Unknown value written by someone else, we will overwrite it.
            condition = None
        return cls(
            condition=condition,
            message=d.get('message') or '',
            observedGeneration=d.get('observedGeneration'),
        )

    def to_dict(self):
        d = {
            'condition': self.condition.value if self.condition else None,
            'message': self.message,
            'observedGeneration': self.observedGeneration,
        }
        # The api server rejects nulls for non nullable schema fields.
        return {k: v for k, v in d.items() if v is not None}


async def write_status(client, obj, condition, message=''):
    """Write the status of the given MicroService if it differs from the
    stored one. Returns the updated object, or obj if nothing was written.
    """
    status = MicroServiceStatus(
        condition=Condition(condition),
        message=message or '',
        observedGeneration=obj['metadata'].get('generation'),
    )
    if MicroServiceStatus.from_dict(obj.get('status')) == status:
        return obj
    log.debug('status of %s/%s -> %s', obj['metadata'].get('namespace'),
        obj['metadata']['name'], status)
    updated = copy.deepcopy(obj)
    updated['status'] = status.to_dict()
    return await client.update_status(MicroService, updated)
