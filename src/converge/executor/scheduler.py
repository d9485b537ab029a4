"""Concurrent apply: run plan actions on a bounded worker pool in dependency order."""

import re
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set
from ..contracts.apply_report import ActionResult, ApplyReport, ApplyResult, summarize_node_status
from ..contracts.plan import Action, Operation, Plan, ReplaceOrder
from ..ingest.models import NodeStatus
from ..ingest.values import LiteralValue, UnknownValue, Value, is_known, to_python
from ..planner.evaluation import dig, evaluate_attributes
from ..providers.registry import ProviderRegistry
from ..state.recorder import StateRecorder
from ..utils.errors import (
    ApplyCancelled,
    ConvergeError,
    EvaluationError,
    ResourceNotFoundError,
)
from ..utils.logging import get_logger
from .retry import RetryPolicy, call_with_retry

logger = get_logger("executor.scheduler")

_INDEXED_ADDRESS = re.compile(r"^(?P<base>.+)\[(?P<index>\d+)\]$")

# how often the coordinator wakes up to check the deadline and cancellation
POLL_INTERVAL = 0.1


class ApplyScheduler:
    """
    Executes a plan's actions with at most ``parallelism`` provider calls in flight.

    An action is dispatched once every action it requires has succeeded. A
    failed action skips everything downstream of it while independent branches
    keep going. After cancellation (explicit, Ctrl-C, or the timeout) nothing
    new is dispatched, in-flight calls run to completion, and every action
    that never started ends CANCELLED.

    All status transitions happen on the coordinating thread; workers only
    talk to providers and the StateRecorder.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        recorder: StateRecorder,
        parallelism: int = 10,
        retry_policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.registry = registry
        self.recorder = recorder
        self.parallelism = parallelism
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.timeout = timeout
        self._instances: Dict[str, List[str]] = {}

    def cancel(self) -> None:
        """Stop dispatching new actions. Safe to call from any thread."""
        if not self.cancel_event.is_set():
            logger.warning("Cancellation requested; waiting for in-flight actions to finish")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, plan: Plan) -> ApplyReport:
        """
        Apply every action of a validated plan.

        Args:
            plan: Plan produced by the planner

        Returns:
            ApplyReport with one ActionResult per action and a status per node
        """
        started_at = datetime.now(timezone.utc)
        if not plan.valid:
            logger.error("Refusing to apply a plan with validation errors")
            return ApplyReport(
                result=ApplyResult.FAILED_VALIDATION,
                diagnostics=plan.diagnostics,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )

        actions: Dict[str, Action] = {a.key: a for a in plan.actions}
        self._instances = self._index_instances(plan)

        dependents: Dict[str, List[str]] = {key: [] for key in actions}
        waiting: Dict[str, int] = {}
        for action in plan.actions:
            waiting[action.key] = len(action.requires)
            for required in action.requires:
                dependents[required].append(action.key)

        status: Dict[str, NodeStatus] = {key: NodeStatus.PENDING for key in actions}
        results: Dict[str, ActionResult] = {}
        ready: Deque[str] = deque()
        for action in plan.actions:
            if waiting[action.key] == 0:
                status[action.key] = NodeStatus.READY
                ready.append(action.key)

        deadline = time.monotonic() + self.timeout if self.timeout else None
        logger.info(f"Applying {len(actions)} actions with parallelism {self.parallelism}")

        def release(key: str) -> None:
            for dependent in dependents[key]:
                waiting[dependent] -= 1
                if waiting[dependent] == 0 and status[dependent] == NodeStatus.PENDING:
                    status[dependent] = NodeStatus.READY
                    ready.append(dependent)

        def skip_downstream(key: str) -> None:
            queue = deque(dependents[key])
            while queue:
                current = queue.popleft()
                if status[current] in (NodeStatus.PENDING, NodeStatus.READY):
                    status[current] = NodeStatus.SKIPPED
                    results[current] = self._result(actions[current], NodeStatus.SKIPPED, error=f"upstream {key} failed")
                    logger.info(f"Skipping {current}: upstream {key} failed")
                    queue.extend(dependents[current])

        in_flight: Dict[Future, str] = {}
        with ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="converge-apply") as pool:
            while True:
                if deadline is not None and not self.cancelled and time.monotonic() >= deadline:
                    logger.error(f"Apply timed out after {self.timeout}s")
                    self.cancel()

                # submit only to idle workers; anything still queued here is cancellable
                while ready and not self.cancelled:
                    key = ready[0]
                    if status[key] != NodeStatus.READY:
                        ready.popleft()
                        continue
                    action = actions[key]
                    if action.operation == Operation.NO_OP:
                        ready.popleft()
                        status[key] = NodeStatus.NO_OP
                        results[key] = self._result(action, NodeStatus.NO_OP)
                        release(key)
                        continue
                    if len(in_flight) >= self.parallelism:
                        break
                    ready.popleft()
                    status[key] = NodeStatus.RUNNING
                    in_flight[pool.submit(self._execute, action)] = key

                if not in_flight:
                    break

                try:
                    done, _ = wait(list(in_flight), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.cancel()
                    continue

                for future in done:
                    key = in_flight.pop(future)
                    result = future.result()
                    results[key] = result
                    status[key] = result.status
                    if result.status == NodeStatus.APPLIED:
                        release(key)
                    elif result.status == NodeStatus.FAILED:
                        skip_downstream(key)

        for key, current in status.items():
            if current in (NodeStatus.PENDING, NodeStatus.READY):
                final = NodeStatus.CANCELLED if self.cancelled else NodeStatus.SKIPPED
                status[key] = final
                results[key] = self._result(actions[key], final)

        return self._report(plan, results, started_at)

    # workers

    def _execute(self, action: Action) -> ActionResult:
        started_at = datetime.now(timezone.utc)
        attempts = 0
        resource_id = action.resource_id
        description = f"{action.operation.value} {action.address}"

        if self.cancelled:
            logger.info(f"{action.key}: not started, apply was cancelled")
            return self._result(action, NodeStatus.CANCELLED, error="cancelled before start", started_at=started_at)

        def call(fn):
            def counted():
                nonlocal attempts
                attempts += 1
                return fn()
            return call_with_retry(counted, self.retry_policy, self.cancel_event, description)

        try:
            provider = self.registry.provider_for(action.resource_type)

            if action.operation == Operation.DELETE:
                try:
                    call(lambda: provider.delete(action.resource_type, action.resource_id))
                except ResourceNotFoundError:
                    logger.warning(f"{action.address} ({action.resource_id}) was already gone")
                self.recorder.record_deleted(action.address, action.resource_id)

            elif action.operation == Operation.CREATE:
                inputs = self._resolve(action)
                created = call(lambda: provider.create(action.resource_type, inputs))
                resource_id = created.id
                self.recorder.record_applied(
                    action.address,
                    action.resource_type,
                    created.id,
                    inputs=inputs,
                    attributes=created.attributes,
                    dependencies=action.dependencies,
                    depose_previous=action.replace_order == ReplaceOrder.CREATE_BEFORE_DESTROY,
                )

            else:
                inputs = self._resolve(action)
                current = self.recorder.get(action.address)
                resource_id = current.id if current else action.resource_id
                if resource_id is None:
                    raise EvaluationError(f"{action.address} has no recorded identifier to update")
                attributes = call(lambda: provider.update(action.resource_type, resource_id, inputs))
                self.recorder.record_applied(
                    action.address,
                    action.resource_type,
                    resource_id,
                    inputs=inputs,
                    attributes=attributes,
                    dependencies=action.dependencies,
                )

        except ApplyCancelled as e:
            logger.warning(f"{action.key}: {e}")
            return self._result(action, NodeStatus.CANCELLED, attempts, str(e), resource_id, started_at)
        except ConvergeError as e:
            logger.error(f"{action.key} failed: {e}")
            return self._result(action, NodeStatus.FAILED, attempts, str(e), resource_id, started_at)
        except Exception as e:
            logger.error(f"{action.key} failed unexpectedly: {e}", exc_info=True)
            return self._result(action, NodeStatus.FAILED, attempts, f"{type(e).__name__}: {e}", resource_id, started_at)

        logger.info(f"{action.key} applied ({resource_id})")
        return self._result(action, NodeStatus.APPLIED, attempts, None, resource_id, started_at)

    def _resolve(self, action: Action) -> Dict[str, Any]:
        """Evaluate desired attributes against the state recorded so far."""
        evaluated = evaluate_attributes(action.desired, self._lookup, lambda base: self._instances.get(base, []))
        for name, value in evaluated.items():
            if not is_known(value):
                raise EvaluationError(f"{action.address}.{name} is still unknown at apply time")
        return {name: to_python(value) for name, value in evaluated.items()}

    def _lookup(self, address: str, path: List[str], expression: str) -> Value:
        entry = self.recorder.get(address)
        if entry is None:
            raise EvaluationError(f"{expression}: {address} has no recorded state")
        if not path or path == ["id"]:
            return LiteralValue(value=entry.id)
        try:
            return LiteralValue(value=dig(entry.attributes, path))
        except KeyError:
            try:
                return LiteralValue(value=dig(entry.inputs, path))
            except KeyError:
                return UnknownValue(source=expression)

    # reporting

    @staticmethod
    def _index_instances(plan: Plan) -> Dict[str, List[str]]:
        indexed: Dict[str, List[tuple]] = {}
        for action in plan.actions:
            if action.operation == Operation.DELETE:
                continue
            match = _INDEXED_ADDRESS.match(action.address)
            if match:
                indexed.setdefault(match.group("base"), []).append((int(match.group("index")), action.address))
            else:
                indexed.setdefault(action.address, []).append((-1, action.address))
        return {base: [address for _, address in sorted(items)] for base, items in indexed.items()}

    @staticmethod
    def _result(
        action: Action,
        status: NodeStatus,
        attempts: int = 0,
        error: Optional[str] = None,
        resource_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> ActionResult:
        return ActionResult(
            key=action.key,
            address=action.address,
            operation=action.operation,
            status=status,
            attempts=attempts,
            error=error,
            resource_id=resource_id or action.resource_id,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc) if started_at else None,
        )

    def _report(self, plan: Plan, results: Dict[str, ActionResult], started_at: datetime) -> ApplyReport:
        ordered = [results[action.key] for action in plan.actions]

        per_node: Dict[str, List[NodeStatus]] = {}
        for result in ordered:
            per_node.setdefault(result.address, []).append(result.status)
        nodes = {address: summarize_node_status(statuses) for address, statuses in per_node.items()}

        statuses: Set[NodeStatus] = set(nodes.values())
        if NodeStatus.CANCELLED in statuses:
            outcome = ApplyResult.CANCELLED
        elif statuses & {NodeStatus.FAILED, NodeStatus.SKIPPED}:
            outcome = ApplyResult.PARTIAL_FAILURE
        else:
            outcome = ApplyResult.SUCCESS

        report = ApplyReport(
            result=outcome,
            actions=ordered,
            nodes=nodes,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        counts = ", ".join(f"{count} {name.lower()}" for name, count in report.summary().items() if count)
        logger.info(f"Apply finished: {outcome.value} ({counts or 'nothing to do'})")
        return report
