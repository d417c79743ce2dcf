

class MutexError(Exception):
    pass


class MalformedRequestError(MutexError):
    """The request was rejected before reaching the store. Retrying cannot fix it.
    """


class DeadlineExceededError(MutexError, TimeoutError):
    pass


class LockTimeoutError(DeadlineExceededError):
    pass


class UnlockTimeoutError(DeadlineExceededError):
    pass
