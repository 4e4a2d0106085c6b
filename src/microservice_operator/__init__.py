# The types a user of the operator as a library would care about are made
# available in the top level package.

from .exceptions import *  # noqa: F403 public API
from .resources import *  # noqa: F403 public API
from .cache import *  # noqa: F403 public API
from .source import *  # noqa: F403 public API
from .controller import *  # noqa: F403 public API
from .client import *  # noqa: F403 public API
from .config import DeletionStrategy, Settings
from .reconciler import MicroServiceReconciler
from .manager import Manager, run
