import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple, Type

from ._backoff import Backoff
from ._exceptions import UnlockTimeoutError
from ._timeout import lock_with_timeout, unlock_with_timeout


logger = logging.getLogger(__name__)


class State(enum.Enum):
    ATTEMPTING = 'attempting'
    SUCCEEDED = 'succeeded'
    RELEASED = 'released'


class Mutex(ABC):
    """A named lock whose state lives entirely in a shared store.

    The handle keeps no "held" flag of its own: the lock is held
    if and only if the lock object exists in the store.

    Args:
        bucket:     Namespace that contains the lock object.
        name:       Lock name, used as the key of the lock object.
        backoff:    Delays between failed attempts.
        sleep:      Coroutine used to wait between attempts, helpful for testing.
    """
    __slots__ = [
        'bucket',
        'name',
        'backoff',
        'sleep',
    ]

    bucket: str
    name: str
    backoff: Backoff
    sleep: Callable[[float], Awaitable[None]]

    # Errors that mean "the store did not answer, try again".
    transient_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        bucket: str,
        name: str,
        backoff: Optional[Backoff] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not bucket:
            raise ValueError('bucket must not be empty')
        if not name:
            raise ValueError('name must not be empty')
        self.bucket = bucket
        self.name = name
        self.backoff = backoff or Backoff()
        self.sleep = sleep  # type: ignore

    @abstractmethod
    async def _try_acquire(self) -> bool:
        """Create the lock object if it does not exist. True if it was created.
        """

    @abstractmethod
    async def _try_release(self) -> bool:
        """Delete the lock object. True if it no longer exists.
        """

    @abstractmethod
    async def acquired(self) -> bool:
        """Check if the mutex is currently acquired (locked) by anyone.
        """

    async def acquire(self) -> int:
        """Acquire (lock) the mutex, waiting as long as it takes.

        Returns the number of attempts it took.

        Raises:
            MalformedRequestError
        """
        return await self._run(self._try_acquire, State.SUCCEEDED)

    async def release(self) -> int:
        """Release (unlock) the mutex, waiting as long as it takes.

        Releasing a mutex that is not locked succeeds.

        Returns the number of attempts it took.

        Raises:
            MalformedRequestError
        """
        return await self._run(self._try_release, State.RELEASED)

    async def _run(self, attempt: Callable[[], Awaitable[bool]], goal: State) -> int:
        state = State.ATTEMPTING
        delays = self.backoff.delays()
        attempts = 0
        while state is State.ATTEMPTING:
            attempts += 1
            try:
                done = await attempt()
            except self.transient_errors as exc:
                logger.debug('%s: attempt %d failed: %r', self, attempts, exc)
                done = False
            if done:
                state = goal
                continue
            delay = next(delays)
            logger.debug('%s: attempt %d, retrying in %.3fs', self, attempts, delay)
            # Cancelling the task while it sleeps here stops the loop
            # before it issues another request.
            await self.sleep(delay)
        logger.debug('%s: %s after %d attempt(s)', self, state.value, attempts)
        return attempts

    @asynccontextmanager
    async def hold(self, timeout: Optional[float] = None) -> AsyncIterator['Mutex']:
        """Hold the mutex for the duration of the `async with` block.

        If `timeout` is given, both acquiring and releasing are bounded by it.
        If the block raises and then the release times out, the error from
        the block is raised and the release timeout is only logged.
        """
        if timeout is None:
            await self.acquire()
        else:
            await lock_with_timeout(self, timeout)
        try:
            yield self
        except BaseException:
            try:
                await self._release(timeout)
            except UnlockTimeoutError:
                logger.warning('%s: left locked, release timed out after an error', self)
            raise
        await self._release(timeout)

    async def _release(self, timeout: Optional[float]) -> None:
        if timeout is None:
            await self.release()
        else:
            await unlock_with_timeout(self, timeout)

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.bucket!r}, {self.name!r})'
