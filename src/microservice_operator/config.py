import dataclasses
import enum
import typing


class DeletionStrategy(str, enum.Enum):
    # Let the garbage collector follow owner references.
    CASCADE = 'cascade'
    # Hold a finalizer and delete owned objects ourselves.
    FINALIZER = 'finalizer'


@dataclasses.dataclass
class Settings:
    """Runtime configuration of the operator."""

    # Namespaces to watch. None means the namespace we run in.
    namespaces: typing.Optional[typing.List[str]] = None
    all_namespaces: bool = False
    # Number of reconciles that may run in parallel, each for a different key.
    concurrent_reconciles: int = 4
    # Seconds after which a single reconcile is aborted and requeued.
    reconcile_timeout: float = 60
    deletion_strategy: DeletionStrategy = DeletionStrategy.CASCADE
    # How often a pass is re-run from a fresh read after a write conflict.
    conflict_retries: int = 3
    # Bounds of the per request exponential backoff, in seconds.
    base_backoff: float = 0.005
    max_backoff: float = 300
    # Seconds between full relists of watched resources.
    resync_after: typing.Optional[float] = 10 * 60 * 60
    # Server side timeout of a single watch request, in seconds.
    watch_timeout: int = 300

    @property
    def use_finalizer(self):
        return self.deletion_strategy == DeletionStrategy.FINALIZER
