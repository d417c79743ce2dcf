import asyncio
import logging
from typing import TYPE_CHECKING

from ._exceptions import LockTimeoutError, UnlockTimeoutError

if TYPE_CHECKING:
    from ._base import Mutex


logger = logging.getLogger(__name__)


def _check(timeout: float) -> None:
    if timeout is None or timeout <= 0:
        raise ValueError('timeout must be a positive number of seconds')


async def lock_with_timeout(mutex: 'Mutex', timeout: float) -> None:
    """Wait up to `timeout` seconds to acquire the mutex.

    When the deadline passes, the acquire loop is cancelled: it sends
    no more requests to the store and its backoff timer is dropped.

    Raises:
        LockTimeoutError
        MalformedRequestError
    """
    _check(timeout)
    try:
        await asyncio.wait_for(mutex.acquire(), timeout=timeout)
    except asyncio.TimeoutError:
        # A create that reached the store right before the cancellation
        # may still have succeeded.
        logger.warning('%s: lock request timed out after %ss', mutex, timeout)
        raise LockTimeoutError(f'lock request timed out after {timeout}s') from None


async def unlock_with_timeout(mutex: 'Mutex', timeout: float) -> None:
    """Wait up to `timeout` seconds to release the mutex.

    Raises:
        UnlockTimeoutError
        MalformedRequestError
    """
    _check(timeout)
    try:
        await asyncio.wait_for(mutex.release(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning('%s: unlock request timed out after %ss', mutex, timeout)
        raise UnlockTimeoutError(f'unlock request timed out after {timeout}s') from None
