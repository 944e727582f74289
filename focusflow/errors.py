"""Exception taxonomy shared by the store, the aggregator and the turn handler."""


class FocusflowError(Exception):
    """Base class for focusflow errors."""


class StoreUnavailable(FocusflowError):
    """The thread backend could not be reached or written.

    Transient by assumption: the store adapter retries it and, once the retry
    budget is spent, switches to the volatile fallback backend.
    """


class ThreadCorrupted(FocusflowError):
    """A single thread's stored data could not be decoded."""

    def __init__(self, thread_id: str, reason: str = "") -> None:
        self.thread_id = thread_id
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Thread {thread_id!r} is unreadable{detail}")


class MessageNotFound(FocusflowError):
    """An edit targeted a message id that is not in the thread."""

    def __init__(self, thread_id: str, message_id: str) -> None:
        self.thread_id = thread_id
        self.message_id = message_id
        super().__init__(f"Message {message_id!r} not found in thread {thread_id!r}")


class ModelError(FocusflowError):
    """The language model returned something the turn handler cannot use."""


class ModelUnavailable(ModelError):
    """The language model call failed (network, provider error, circuit open)."""
