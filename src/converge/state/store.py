"""Abstract state store interface and an in-memory implementation."""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional
from .models import StateSnapshot
from ..utils.errors import StateLockError
from ..utils.logging import get_logger

logger = get_logger("state.store")


class StateStore(ABC):
    """
    Persistent home of the StateSnapshot.

    Implementations must make ``save`` atomic: a reader either sees the
    previous snapshot or the new one, never a partial write. ``lock`` guards
    a whole Plan+Apply cycle against concurrent runs.
    """

    @abstractmethod
    def load(self) -> StateSnapshot:
        """Return the current snapshot (an empty one if nothing is stored)."""
        pass

    @abstractmethod
    def save(self, snapshot: StateSnapshot) -> None:
        """Persist the snapshot, replacing the previous one."""
        pass

    @abstractmethod
    def lock(self, ttl: float) -> str:
        """
        Acquire the state lock for ``ttl`` seconds.

        Returns:
            Lock identifier to pass to ``unlock``

        Raises:
            StateLockError: If another holder owns a live lock
        """
        pass

    @abstractmethod
    def renew(self, lock_id: str, ttl: float) -> None:
        """
        Extend a held lock to expire ``ttl`` seconds from now.

        Raises:
            StateLockError: If ``lock_id`` no longer holds the lock
        """
        pass

    @abstractmethod
    def unlock(self, lock_id: str) -> None:
        """Release a lock previously returned by ``lock``."""
        pass


class MemoryStateStore(StateStore):
    """Process-local state store, used for tests and dry runs."""

    def __init__(self, snapshot: Optional[StateSnapshot] = None):
        self._snapshot = (snapshot or StateSnapshot()).model_copy(deep=True)
        self._mutex = threading.Lock()
        self._lock_id: Optional[str] = None
        self._lock_expires: float = 0.0
        self.save_count = 0

    def load(self) -> StateSnapshot:
        with self._mutex:
            return self._snapshot.model_copy(deep=True)

    def save(self, snapshot: StateSnapshot) -> None:
        with self._mutex:
            self._snapshot = snapshot.model_copy(deep=True)
            self.save_count += 1

    def lock(self, ttl: float) -> str:
        with self._mutex:
            now = time.monotonic()
            if self._lock_id is not None and now < self._lock_expires:
                raise StateLockError(f"State is locked by {self._lock_id}")
            if self._lock_id is not None:
                logger.warning(f"Breaking expired state lock {self._lock_id}")
            self._lock_id = str(uuid.uuid4())
            self._lock_expires = now + ttl
            return self._lock_id

    def renew(self, lock_id: str, ttl: float) -> None:
        with self._mutex:
            if self._lock_id != lock_id:
                raise StateLockError(f"Lock {lock_id} is no longer held (current holder: {self._lock_id})")
            self._lock_expires = time.monotonic() + ttl

    def unlock(self, lock_id: str) -> None:
        with self._mutex:
            if self._lock_id != lock_id:
                raise StateLockError(f"Lock {lock_id} is not held (current holder: {self._lock_id})")
            self._lock_id = None
            self._lock_expires = 0.0

    @property
    def is_locked(self) -> bool:
        with self._mutex:
            return self._lock_id is not None and time.monotonic() < self._lock_expires
