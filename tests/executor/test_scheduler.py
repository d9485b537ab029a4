"""Tests for the concurrent apply scheduler."""

import threading
import pytest
from converge.contracts.apply_report import ApplyResult
from converge.contracts.plan import Plan
from converge.executor.retry import RetryPolicy
from converge.executor.scheduler import ApplyScheduler
from converge.ingest.declaration_loader import parse_declarations
from converge.ingest.models import NodeStatus
from converge.planner.planner import plan
from converge.state.models import ResourceState, StateSnapshot
from converge.state.recorder import StateRecorder
from converge.state.store import MemoryStateStore
from converge.utils.errors import StateStoreError


@pytest.fixture
def store():
    return MemoryStateStore()


def _scheduler(registry, store, retry, **kwargs):
    recorder = StateRecorder(store, store.load())
    return ApplyScheduler(registry, recorder, retry_policy=retry, **kwargs)


def _buckets(count):
    return parse_declarations({"resources": [
        {"type": "aws_s3_bucket", "name": f"b{i}", "attributes": {"name": f"b{i}", "bucket": f"bucket-{i}"}}
        for i in range(count)
    ]})


class TestApplySuccess:
    """Test applying a plan end to end."""

    def test_web_stack_applies_in_order(self, web_stack, registry, provider, store, fast_retry):
        scheduler = _scheduler(registry, store, fast_retry)

        report = scheduler.run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.SUCCESS
        assert set(report.nodes.values()) == {NodeStatus.APPLIED}
        assert provider.operations("create")[0] == "main"
        state = store.load()
        instance = state.resources["aws_instance.web"]
        assert instance.inputs["subnet_id"] == state.resources["aws_subnet.public"].id
        assert instance.inputs["vpc_security_group_ids"] == [state.resources["aws_security_group.web"].id]
        assert instance.dependencies == ["aws_security_group.web", "aws_subnet.public"]
        assert store.save_count == 4
        assert state.serial == 4

    def test_provider_sees_dependencies_first(self, web_stack, registry, provider, store, fast_retry):
        _scheduler(registry, store, fast_retry, parallelism=4).run(plan(web_stack, store.load(), registry))

        order = provider.operations("create")
        assert order.index("main") < order.index("public") < order.index("web-instance")
        assert order.index("web") < order.index("web-instance")

    def test_invalid_plan_is_not_applied(self, registry, provider, store, fast_retry):
        declarations = parse_declarations({"resources": [
            {"type": "aws_subnet", "name": "a", "attributes": {"vpc_id": {"ref": "aws_vpc.missing.id"}}},
        ]})

        report = _scheduler(registry, store, fast_retry).run(plan(declarations, store.load(), registry))

        assert report.result == ApplyResult.FAILED_VALIDATION
        assert report.diagnostics[0].kind == "unresolved_reference"
        assert provider.calls == []

    def test_delete_of_missing_resource_counts_as_applied(self, registry, fast_retry):
        store = MemoryStateStore(StateSnapshot(resources={
            "aws_s3_bucket.old": ResourceState(address="aws_s3_bucket.old", type="aws_s3_bucket", id="bucket-gone"),
        }))

        report = _scheduler(registry, store, fast_retry).run(plan([], store.load(), registry))

        assert report.result == ApplyResult.SUCCESS
        assert report.nodes == {"aws_s3_bucket.old": NodeStatus.APPLIED}
        assert "aws_s3_bucket.old" not in store.load()

    def test_empty_plan_succeeds_without_provider_calls(self, registry, provider, store, fast_retry):
        report = _scheduler(registry, store, fast_retry).run(Plan())

        assert report.result == ApplyResult.SUCCESS
        assert report.actions == []
        assert provider.calls == []


class TestConcurrency:
    """Test the worker pool bound."""

    @pytest.mark.parametrize("parallelism", [1, 2])
    def test_in_flight_calls_never_exceed_parallelism(self, slow_registry, fast_retry, store, parallelism):
        provider, registry = slow_registry(0.05)

        report = _scheduler(registry, store, fast_retry, parallelism=parallelism).run(
            plan(_buckets(6), store.load(), registry)
        )

        assert report.result == ApplyResult.SUCCESS
        assert provider.max_in_flight == parallelism

    def test_parallelism_must_be_positive(self, registry, store):
        with pytest.raises(ValueError):
            ApplyScheduler(registry, StateRecorder(store, store.load()), parallelism=0)


class TestFailures:
    """Test failure containment and retries."""

    def test_failure_skips_descendants_only(self, web_stack, registry, provider, store, fast_retry):
        provider.permanent.add("web")

        report = _scheduler(registry, store, fast_retry).run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.PARTIAL_FAILURE
        assert report.nodes == {
            "aws_vpc.main": NodeStatus.APPLIED,
            "aws_subnet.public": NodeStatus.APPLIED,
            "aws_security_group.web": NodeStatus.FAILED,
            "aws_instance.web": NodeStatus.SKIPPED,
        }
        assert "web-instance" not in provider.operations("create")
        assert sorted(store.load().resources) == ["aws_subnet.public", "aws_vpc.main"]
        failed = report.get("create:aws_security_group.web")
        assert "permanent failure" in failed.error
        assert failed.attempts == 1
        assert failed.duration >= 0
        assert report.get("create:aws_instance.web").duration is None

    def test_transient_failures_are_retried(self, web_stack, registry, provider, store, fast_retry):
        provider.transient["main"] = 2

        report = _scheduler(registry, store, fast_retry).run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.SUCCESS
        assert report.get("create:aws_vpc.main").attempts == 3

    def test_exhausted_retries_fail_the_node(self, web_stack, registry, provider, store, fast_retry):
        provider.transient["main"] = 10

        report = _scheduler(registry, store, fast_retry).run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.PARTIAL_FAILURE
        vpc = report.get("create:aws_vpc.main")
        assert vpc.status == NodeStatus.FAILED
        assert vpc.attempts == 3
        assert "after 3 attempts" in vpc.error
        assert report.nodes_with(NodeStatus.SKIPPED) == [
            "aws_instance.web", "aws_security_group.web", "aws_subnet.public",
        ]
        assert store.load().resources == {}

    def test_failed_state_write_fails_only_that_node(self, registry, fast_retry):
        store = MemoryStateStore()
        failed_once = []
        original_save = store.save

        def save(snapshot):
            if not failed_once:
                failed_once.append(True)
                raise StateStoreError("disk full")
            original_save(snapshot)

        store.save = save
        report = _scheduler(registry, store, fast_retry, parallelism=1).run(plan(_buckets(2), store.load(), registry))

        assert report.result == ApplyResult.PARTIAL_FAILURE
        assert report.nodes == {"aws_s3_bucket.b0": NodeStatus.FAILED, "aws_s3_bucket.b1": NodeStatus.APPLIED}
        state = store.load()
        assert list(state.resources) == ["aws_s3_bucket.b1"]
        assert state.serial == 1


class TestCancellation:
    """Test cancellation and timeouts."""

    def test_cancel_before_start(self, web_stack, registry, provider, store, fast_retry):
        scheduler = _scheduler(registry, store, fast_retry)
        scheduler.cancel()

        report = scheduler.run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.CANCELLED
        assert set(report.nodes.values()) == {NodeStatus.CANCELLED}
        assert provider.calls == []

    def test_in_flight_actions_finish_after_cancel(self, web_stack, registry, provider, store, fast_retry):
        provider.gate = threading.Event()
        scheduler = _scheduler(registry, store, fast_retry)
        planned = plan(web_stack, store.load(), registry)
        reports = []
        worker = threading.Thread(target=lambda: reports.append(scheduler.run(planned)))
        worker.start()

        assert provider.started.wait(5)
        scheduler.cancel()
        provider.gate.set()
        worker.join(10)

        report = reports[0]
        assert report.result == ApplyResult.CANCELLED
        assert report.nodes["aws_vpc.main"] == NodeStatus.APPLIED
        assert report.nodes_with(NodeStatus.CANCELLED) == [
            "aws_instance.web", "aws_security_group.web", "aws_subnet.public",
        ]
        assert list(store.load().resources) == ["aws_vpc.main"]

    def test_cancel_leaves_queued_actions_unstarted(self, registry, provider, store, fast_retry):
        provider.gate = threading.Event()
        scheduler = _scheduler(registry, store, fast_retry, parallelism=1)
        planned = plan(_buckets(3), store.load(), registry)
        reports = []
        worker = threading.Thread(target=lambda: reports.append(scheduler.run(planned)))
        worker.start()

        assert provider.started.wait(5)
        scheduler.cancel()
        provider.gate.set()
        worker.join(10)

        report = reports[0]
        assert len(provider.operations("create")) == 1
        assert report.result == ApplyResult.CANCELLED
        assert len(report.nodes_with(NodeStatus.APPLIED)) == 1
        assert len(report.nodes_with(NodeStatus.CANCELLED)) == 2
        assert len(store.load().resources) == 1

    def test_cancel_interrupts_backoff(self, web_stack, registry, provider, store):
        provider.transient["main"] = 10
        scheduler = _scheduler(registry, store, RetryPolicy(max_attempts=5, base_delay=30.0, max_delay=30.0))
        planned = plan(web_stack, store.load(), registry)
        reports = []
        worker = threading.Thread(target=lambda: reports.append(scheduler.run(planned)))
        worker.start()

        assert provider.started.wait(5)
        scheduler.cancel()
        worker.join(10)

        assert not worker.is_alive()
        vpc = reports[0].get("create:aws_vpc.main")
        assert vpc.status == NodeStatus.CANCELLED
        assert vpc.attempts == 1
        assert store.load().resources == {}

    def test_timeout_cancels_remaining_actions(self, web_stack, slow_registry, store, fast_retry):
        _, registry = slow_registry(0.3)

        report = _scheduler(registry, store, fast_retry, timeout=0.1).run(plan(web_stack, store.load(), registry))

        assert report.result == ApplyResult.CANCELLED
        assert report.nodes["aws_vpc.main"] == NodeStatus.APPLIED
        assert report.nodes["aws_instance.web"] == NodeStatus.CANCELLED
