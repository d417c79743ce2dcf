"""Mutex implementation for distributed systems.
"""
from ._backoff import Backoff
from ._base import Mutex
from ._exceptions import (
    DeadlineExceededError,
    LockTimeoutError,
    MalformedRequestError,
    MutexError,
    UnlockTimeoutError,
)
from ._gcs import GCS
from ._local import Local
from ._timeout import lock_with_timeout, unlock_with_timeout


__version__ = '0.1.0'
__all__ = [
    'Backoff',
    'DeadlineExceededError',
    'GCS',
    'Local',
    'LockTimeoutError',
    'MalformedRequestError',
    'Mutex',
    'MutexError',
    'UnlockTimeoutError',
    'lock_with_timeout',
    'unlock_with_timeout',
]
