import random
from typing import Callable, Iterator


class Backoff:
    """Exponential backoff between attempts to create or delete the lock.

    Args:
        initial:    The first delay, in seconds.
        maximum:    Delays never exceed this value.
        factor:     The base delay is multiplied by it after every attempt.
        jitter:     Up to this fraction of the base delay is added at random,
                    so contenders that started together drift apart.
        random:     Source of randomness in range [0, 1).
    """
    __slots__ = [
        'initial',
        'maximum',
        'factor',
        'jitter',
        'random',
    ]

    initial: float
    maximum: float
    factor: float
    jitter: float
    random: Callable[[], float]

    def __init__(
        self,
        initial: float = .01,
        maximum: float = 5.0,
        factor: float = 2.0,
        jitter: float = .5,
        random: Callable[[], float] = random.random,
    ) -> None:
        if initial <= 0:
            raise ValueError('initial delay must be positive')
        if maximum < initial:
            raise ValueError('maximum delay must not be less than the initial one')
        if factor < 1:
            raise ValueError('factor must be at least 1')
        if not 0 <= jitter <= 1:
            raise ValueError('jitter must be in range [0, 1]')
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.jitter = jitter
        self.random = random

    def delays(self) -> Iterator[float]:
        """Infinite sequence of delays for one acquire or release call.

        The cap is applied after the jitter, so the sequence is non-decreasing
        as long as `factor >= 1 + jitter`.
        """
        base = self.initial
        while True:
            yield min(self.maximum, base * (1 + self.jitter * self.random()))
            base = min(base * self.factor, self.maximum)

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(initial={self.initial}, maximum={self.maximum}, '
            f'factor={self.factor}, jitter={self.jitter})'
        )
