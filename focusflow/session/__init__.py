"""Thread naming, storage backends and the store adapter."""

from focusflow.session.backends import InMemoryThreadBackend, JsonlThreadBackend, ThreadBackend
from focusflow.session.naming import ThreadPurpose, ThreadRef, label_for, parse, thread_for
from focusflow.session.store import StoreState, ThreadStore, ThreadSummary

__all__ = [
    "InMemoryThreadBackend",
    "JsonlThreadBackend",
    "StoreState",
    "ThreadBackend",
    "ThreadPurpose",
    "ThreadRef",
    "ThreadStore",
    "ThreadSummary",
    "label_for",
    "parse",
    "thread_for",
]
