from .limiters import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimiter,
)
from .queue import Workqueue, default_rate_limiter

__all__ = [
    'BucketRateLimiter',
    'ItemExponentialFailureRateLimiter',
    'MaxOfRateLimiter',
    'RateLimiter',
    'Workqueue',
    'default_rate_limiter',
]
