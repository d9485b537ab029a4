"""Serialized, per-node state updates shared by concurrent apply workers."""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from .models import ResourceState, StateSnapshot
from .store import StateStore
from ..utils.logging import get_logger

logger = get_logger("state.recorder")


class StateRecorder:
    """
    Single writer for the StateSnapshot during an apply.

    Each update is applied to a copy of the snapshot under one mutex and only
    becomes current once the store has saved it, so a failed save leaves both
    the store and the recorder at the previous snapshot.

    ``guard`` runs before every save; it raises (StateConflictError) when the
    run no longer owns the state, which fails the update instead of writing.
    """

    def __init__(
        self,
        store: StateStore,
        snapshot: StateSnapshot,
        guard: Optional[Callable[[], None]] = None,
    ):
        self._store = store
        self._snapshot = snapshot.model_copy(deep=True)
        self._guard = guard
        self._mutex = threading.Lock()

    def snapshot(self) -> StateSnapshot:
        """Consistent copy of the current snapshot."""
        with self._mutex:
            return self._snapshot.model_copy(deep=True)

    def get(self, address: str) -> Optional[ResourceState]:
        with self._mutex:
            entry = self._snapshot.resources.get(address)
            return entry.model_copy(deep=True) if entry else None

    def record_applied(
        self,
        address: str,
        resource_type: str,
        resource_id: str,
        inputs: Dict[str, Any],
        attributes: Dict[str, Any],
        dependencies: List[str],
        depose_previous: bool = False,
    ) -> ResourceState:
        """
        Record a successful create or update.

        With ``depose_previous`` the existing identifier is kept in ``deposed``
        until its delete succeeds (create-before-destroy replacement).
        """
        with self._mutex:
            now = datetime.now(timezone.utc)
            previous = self._snapshot.resources.get(address)
            deposed = list(previous.deposed) if previous else []
            if depose_previous and previous and previous.id != resource_id and previous.id not in deposed:
                deposed.append(previous.id)

            entry = ResourceState(
                address=address,
                type=resource_type,
                id=resource_id,
                inputs=inputs,
                attributes=attributes,
                dependencies=sorted(dependencies),
                deposed=deposed,
                created_at=previous.created_at if previous and previous.id == resource_id else now,
                updated_at=now,
            )
            updated = self._snapshot.model_copy(deep=True)
            updated.resources[address] = entry
            self._commit(updated, f"recorded {address} ({resource_id})")
            return entry.model_copy(deep=True)

    def record_deleted(self, address: str, resource_id: str) -> None:
        """Record a successful delete of either the current or a deposed instance."""
        with self._mutex:
            entry = self._snapshot.resources.get(address)
            if entry is None:
                return
            updated = self._snapshot.model_copy(deep=True)
            if entry.id == resource_id:
                del updated.resources[address]
            elif resource_id in entry.deposed:
                updated.resources[address].deposed = [d for d in entry.deposed if d != resource_id]
            else:
                return
            self._commit(updated, f"removed {address} ({resource_id})")

    def _commit(self, updated: StateSnapshot, description: str) -> None:
        if self._guard is not None:
            self._guard()
        updated.serial = self._snapshot.serial + 1
        self._store.save(updated)
        self._snapshot = updated
        logger.debug(f"State serial {updated.serial}: {description}")
