"""Engine: Plan and Apply entry points under the state lock."""

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple
from .config.models import EngineConfig
from .contracts.apply_report import ApplyReport, ApplyResult
from .contracts.plan import Plan
from .executor.retry import RetryPolicy
from .executor.scheduler import ApplyScheduler
from .ingest.models import ResourceDeclaration
from .planner.planner import plan as build_plan
from .planner.refresh import refresh_state
from .providers.registry import ProviderRegistry
from .state.models import StateSnapshot
from .state.recorder import StateRecorder
from .state.store import StateStore
from .utils.errors import StateConflictError, StateLockError
from .utils.logging import get_logger

logger = get_logger("engine")


class LockHeartbeat:
    """
    Keeps a state lock alive while a cycle runs.

    A background thread renews the lock every third of its TTL. If a renewal
    fails the lock is considered lost: ``check`` raises from then on and
    ``on_lost`` is called once.
    """

    def __init__(self, store: StateStore, lock_id: str, ttl: float):
        self.store = store
        self.lock_id = lock_id
        self.ttl = ttl
        self.interval = max(ttl / 3, 0.01)
        self.on_lost: Optional[Callable[[], None]] = None
        self.lost_reason: Optional[str] = None
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="converge-lock", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._thread.join()

    def check(self) -> None:
        """
        Raises:
            StateConflictError: If the lock was lost
        """
        if self.lost_reason is not None:
            raise StateConflictError(f"State lock {self.lock_id} was lost: {self.lost_reason}")

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.store.renew(self.lock_id, self.ttl)
            except StateLockError as e:
                self.lost_reason = str(e)
                logger.error(f"State lock {self.lock_id} lost; no further state writes: {e}")
                if self.on_lost is not None:
                    self.on_lost()
                return


class Engine:
    """
    Converges remote infrastructure to a set of declarations.

    ``plan`` and ``apply`` each take the state lock for their own duration;
    ``run`` holds it across the whole Plan+Apply cycle so no other run can
    move the state in between. The lock is renewed for as long as it is held.
    """

    def __init__(
        self,
        store: StateStore,
        registry: ProviderRegistry,
        config: Optional[EngineConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or EngineConfig()
        self.cancel_event = cancel_event or threading.Event()

    @contextmanager
    def locked(self) -> Iterator[LockHeartbeat]:
        """
        Hold the state lock, renewing it until the block exits.

        A failure to release the lock is logged, never raised over the
        block's own result or exception.

        Raises:
            StateLockError: If another run holds the lock
        """
        ttl = self.config.state.lock_ttl_seconds
        lock_id = self.store.lock(ttl)
        logger.debug(f"Acquired state lock {lock_id}")
        heartbeat = LockHeartbeat(self.store, lock_id, ttl)
        heartbeat.start()
        try:
            yield heartbeat
        finally:
            heartbeat.stop()
            try:
                self.store.unlock(lock_id)
            except StateLockError as e:
                logger.error(f"Could not release state lock {lock_id}: {e}")
            else:
                logger.debug(f"Released state lock {lock_id}")

    def cancel(self) -> None:
        """Ask a running apply to stop dispatching new actions."""
        self.cancel_event.set()

    def plan(self, declarations: List[ResourceDeclaration], refresh: bool = False) -> Plan:
        """
        Plan against the stored state.

        Args:
            declarations: Parsed resource declarations
            refresh: Read every recorded resource from its provider first

        Returns:
            Plan (check ``plan.valid`` for validation diagnostics)
        """
        with self.locked() as heartbeat:
            return self._plan(declarations, refresh, heartbeat)

    def apply(
        self,
        plan: Plan,
        parallelism: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> ApplyReport:
        """
        Apply a previously computed plan.

        Raises:
            StateConflictError: If the state changed since the plan was made,
                or another run holds the lock
        """
        with self.locked() as heartbeat:
            return self._apply(plan, parallelism, timeout, heartbeat)

    def run(
        self,
        declarations: List[ResourceDeclaration],
        refresh: bool = False,
        parallelism: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[Plan, ApplyReport]:
        """Plan and apply in one locked cycle."""
        with self.locked() as heartbeat:
            result = self._plan(declarations, refresh, heartbeat)
            return result, self._apply(result, parallelism, timeout, heartbeat)

    def _plan(self, declarations: List[ResourceDeclaration], refresh: bool, heartbeat: LockHeartbeat) -> Plan:
        snapshot = self.store.load()
        if refresh:
            snapshot = self._refresh(snapshot, heartbeat)
        return build_plan(declarations, snapshot, self.registry)

    def _refresh(self, snapshot: StateSnapshot, heartbeat: LockHeartbeat) -> StateSnapshot:
        refreshed, changed = refresh_state(snapshot, self.registry)
        if changed:
            heartbeat.check()
            refreshed.serial += 1
            self.store.save(refreshed)
        return refreshed

    def _apply(
        self,
        plan: Plan,
        parallelism: Optional[int],
        timeout: Optional[float],
        heartbeat: LockHeartbeat,
    ) -> ApplyReport:
        if not plan.valid:
            logger.error(f"Plan has {len(plan.diagnostics)} validation errors; nothing applied")
            return ApplyReport(result=ApplyResult.FAILED_VALIDATION, diagnostics=plan.diagnostics)

        heartbeat.check()
        snapshot = self.store.load()
        if snapshot.serial != plan.state_serial or (
            snapshot.serial > 0 and snapshot.lineage != plan.state_lineage
        ):
            raise StateConflictError(
                f"Plan is stale: made against state {plan.state_lineage} serial {plan.state_serial}, "
                f"but state is now {snapshot.lineage} serial {snapshot.serial}. Run plan again."
            )
        if snapshot.serial == 0 and plan.state_lineage:
            # never saved; keep the lineage the plan was made against
            snapshot.lineage = plan.state_lineage

        scheduler = ApplyScheduler(
            self.registry,
            StateRecorder(self.store, snapshot, guard=heartbeat.check),
            parallelism=parallelism or self.config.apply.parallelism,
            retry_policy=RetryPolicy.from_settings(self.config.retry),
            cancel_event=self.cancel_event,
            timeout=timeout or self.config.apply.timeout_seconds,
        )
        heartbeat.on_lost = scheduler.cancel
        return scheduler.run(plan)
