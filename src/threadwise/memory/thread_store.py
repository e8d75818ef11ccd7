"""
Thread storage for the transports.

You can replace :class:`InMemoryThreadStore` with any simple state management (redis, sqlite,
postgres, ...) by implementing :class:`ThreadStore`.
"""

import logging
import threading
import uuid
from abc import (
    ABC,
    abstractmethod,
)
from typing import Dict

from threadwise.core.thread import Thread

logger = logging.getLogger(__name__)


class ThreadStore(ABC):
    """Conversation id -> thread."""

    @abstractmethod
    def create(self, thread: Thread) -> str:
        """Store *thread* under a new id and return the id."""

    @abstractmethod
    def get(self, thread_id: str) -> Thread | None:
        """Return the stored thread, or *None* for an unknown id."""

    @abstractmethod
    def update(self, thread_id: str, thread: Thread) -> None:
        """Replace the thread stored under *thread_id*."""


class InMemoryThreadStore(ThreadStore):
    """
    Process-local store.

    Threads are copied on the way in and out, so a caller's working copy only becomes visible to
    others through :meth:`update`.
    """

    def __init__(self) -> None:
        self._threads: Dict[str, Thread] = {}
        self._lock = threading.Lock()

    def create(self, thread: Thread) -> str:
        thread_id = str(uuid.uuid4())
        with self._lock:
            self._threads[thread_id] = thread.model_copy(deep=True)
        logger.debug("Created thread %s", thread_id)
        return thread_id

    def get(self, thread_id: str) -> Thread | None:
        with self._lock:
            thread = self._threads.get(thread_id)
        return thread.model_copy(deep=True) if thread is not None else None

    def update(self, thread_id: str, thread: Thread) -> None:
        snapshot = thread.model_copy(deep=True)
        with self._lock:
            self._threads[thread_id] = snapshot
        logger.debug("Updated thread %s (%d events)", thread_id, len(snapshot.events))

    def __len__(self) -> int:
        with self._lock:
            return len(self._threads)
