import asyncio
from typing import Awaitable, Callable, MutableSet, Optional, Tuple

from ._backoff import Backoff
from ._base import Mutex


Key = Tuple[str, str]

# Process-wide lock objects, shared by every `Local` built without `objects`.
_OBJECTS: MutableSet[Key] = set()


class Local(Mutex):
    """Mutex for a single process, with the same protocol as the remote ones.

    Useful in tests and as a fallback when there is only one process to serialize.

    Args:
        bucket:     Namespace of the lock.
        name:       Lock name.
        objects:    The set standing in for the store. Mutexes sharing it
                    exclude each other. If not passed, a single process-wide
                    set is used, so all such handles with the same bucket and
                    name contend for the same lock. Pass a fresh set to keep
                    handles independent, e.g. in tests.
        backoff:    Delays between failed attempts.
        sleep:      Coroutine used to wait between attempts.
    """
    __slots__ = ['objects']

    objects: MutableSet[Key]

    def __init__(
        self,
        bucket: str,
        name: str,
        objects: Optional[MutableSet[Key]] = None,
        backoff: Optional[Backoff] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(bucket=bucket, name=name, backoff=backoff, sleep=sleep)
        self.objects = _OBJECTS if objects is None else objects

    @property
    def key(self) -> Key:
        return (self.bucket, self.name)

    async def _try_acquire(self) -> bool:
        if self.key in self.objects:
            return False
        self.objects.add(self.key)
        return True

    async def _try_release(self) -> bool:
        self.objects.discard(self.key)
        return True

    async def acquired(self) -> bool:
        return self.key in self.objects
