"""Tests for the Engine plan/apply cycle."""

import threading
import time
import pytest
from converge.config.models import RetrySettings
from converge.contracts.apply_report import ApplyResult
from converge.engine import Engine
from converge.ingest.declaration_loader import parse_declarations
from converge.ingest.models import NodeStatus
from converge.state.store import MemoryStateStore
from converge.utils.errors import StateConflictError, StateLockError


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def engine(store, registry, engine_config):
    engine_config.retry = RetrySettings(max_attempts=2, base_delay_seconds=0, max_delay_seconds=0)
    return Engine(store, registry, engine_config)


def _rename(declarations, address, **attributes):
    for declaration in declarations:
        if declaration.address == address:
            override = parse_declarations({"resources": [
                {"type": declaration.type, "name": declaration.name, "attributes": attributes}
            ]})[0]
            declaration.attributes.update(override.attributes)
    return declarations


class TestConvergence:
    """Test that runs converge and re-plans are empty."""

    def test_run_then_replan_is_empty(self, engine, web_stack, store):
        planned, report = engine.run(web_stack)

        assert planned.summary()["CREATE"] == 4
        assert report.result == ApplyResult.SUCCESS

        again = engine.plan(web_stack)
        assert again.valid
        assert again.is_empty()
        assert again.state_serial == store.load().serial

    def test_resume_after_partial_failure(self, engine, web_stack, provider):
        provider.permanent.add("web")
        _, first = engine.run(web_stack)
        assert first.result == ApplyResult.PARTIAL_FAILURE

        provider.permanent.clear()
        planned, second = engine.run(web_stack)

        assert second.result == ApplyResult.SUCCESS
        assert planned.change_for("aws_vpc.main").action.value == "NO_OP"
        assert planned.change_for("aws_security_group.web").action.value == "CREATE"
        assert provider.operations("create").count("main") == 1
        assert engine.plan(web_stack).is_empty()

    def test_create_before_destroy_end_to_end(self, engine, web_stack, store, provider):
        engine.run(web_stack)
        old_sg = store.load().resources["aws_security_group.web"].id

        _, report = engine.run(_rename(web_stack, "aws_security_group.web", name="web-v2"))

        assert report.result == ApplyResult.SUCCESS
        state = store.load()
        new_sg = state.resources["aws_security_group.web"]
        assert new_sg.id != old_sg
        assert new_sg.deposed == []
        assert state.resources["aws_instance.web"].inputs["vpc_security_group_ids"] == [new_sg.id]
        assert not provider.exists(old_sg)
        assert provider.count("aws_security_group") == 1
        assert engine.plan(web_stack).is_empty()

    def test_failed_rewire_keeps_deposed_instance(self, engine, web_stack, store, provider):
        engine.run(web_stack)
        old_sg = store.load().resources["aws_security_group.web"].id
        web_stack = _rename(web_stack, "aws_security_group.web", name="web-v2")
        provider.permanent.add("web-instance")

        _, report = engine.run(web_stack)

        assert report.result == ApplyResult.PARTIAL_FAILURE
        assert report.nodes["aws_instance.web"] == NodeStatus.FAILED
        assert report.get(f"delete:aws_security_group.web:deposed:{old_sg}").status == NodeStatus.SKIPPED
        assert store.load().resources["aws_security_group.web"].deposed == [old_sg]
        assert provider.exists(old_sg)

        provider.permanent.clear()
        planned, retried = engine.run(web_stack)

        assert planned.get_action(f"delete:aws_security_group.web:deposed:{old_sg}") is not None
        assert retried.result == ApplyResult.SUCCESS
        assert store.load().resources["aws_security_group.web"].deposed == []
        assert not provider.exists(old_sg)

    def test_destroy_before_create_end_to_end(self, engine, store, provider):
        def declarations(bucket):
            return parse_declarations({"resources": [
                {"type": "aws_s3_bucket", "name": "assets", "attributes": {"bucket": bucket}},
                {"type": "aws_s3_bucket_ownership_controls", "name": "assets",
                 "attributes": {"bucket": {"ref": "aws_s3_bucket.assets.id"}, "rule": "BucketOwnerEnforced"}},
            ]})

        engine.run(declarations("assets-v1"))
        _, report = engine.run(declarations("assets-v2"))

        assert report.result == ApplyResult.SUCCESS
        state = store.load()
        bucket = state.resources["aws_s3_bucket.assets"]
        assert bucket.inputs == {"bucket": "assets-v2"}
        assert state.resources["aws_s3_bucket_ownership_controls.assets"].inputs["bucket"] == bucket.id
        assert provider.count("aws_s3_bucket") == 1
        assert provider.count("aws_s3_bucket_ownership_controls") == 1

    def test_removed_declarations_are_destroyed(self, engine, web_stack, store, provider):
        engine.run(web_stack)

        _, report = engine.run([])

        assert report.result == ApplyResult.SUCCESS
        assert store.load().resources == {}
        assert provider.count() == 0


class TestStateSafety:
    """Test locking and stale plan detection."""

    def test_locked_state_is_refused(self, engine, web_stack, store):
        lock_id = store.lock(60)

        with pytest.raises(StateLockError):
            engine.plan(web_stack)
        with pytest.raises(StateConflictError):
            engine.run(web_stack)

        store.unlock(lock_id)
        assert engine.plan(web_stack).valid

    def test_lock_is_released_after_run(self, engine, web_stack, store, provider):
        provider.permanent.add("main")
        engine.run(web_stack)

        assert not store.is_locked

    def test_stale_plan_is_rejected(self, engine, web_stack, provider):
        stale = engine.plan(web_stack)
        engine.run(web_stack)
        calls = len(provider.calls)

        with pytest.raises(StateConflictError, match="stale"):
            engine.apply(stale)
        assert len(provider.calls) == calls

    def test_fresh_plan_applies(self, engine, web_stack):
        planned = engine.plan(web_stack)

        report = engine.apply(planned)

        assert report.result == ApplyResult.SUCCESS

    def test_invalid_declarations_fail_validation(self, engine, provider):
        declarations = parse_declarations({"resources": [
            {"type": "aws_subnet", "name": "a", "attributes": {"vpc_id": {"ref": "aws_vpc.missing.id"}}},
        ]})

        planned, report = engine.run(declarations)

        assert not planned.valid
        assert report.result == ApplyResult.FAILED_VALIDATION
        assert provider.calls == []

    def test_refresh_recreates_deleted_resources(self, engine, store, provider):
        declarations = parse_declarations({"resources": [
            {"type": "aws_s3_bucket", "name": "logs", "attributes": {"bucket": "logs"}},
        ]})
        engine.run(declarations)
        provider.delete("aws_s3_bucket", store.load().resources["aws_s3_bucket.logs"].id)

        assert engine.plan(declarations).is_empty()
        refreshed = engine.plan(declarations, refresh=True)

        assert refreshed.change_for("aws_s3_bucket.logs").action.value == "CREATE"
        assert engine.apply(refreshed).result == ApplyResult.SUCCESS
        assert provider.count("aws_s3_bucket") == 1


class UnreleasableStore(MemoryStateStore):
    def unlock(self, lock_id):
        raise StateLockError("lock record vanished")


class StolenLockStore(MemoryStateStore):
    """Memory store whose lock is taken over once ``taken`` is set."""

    def __init__(self, taken):
        super().__init__()
        self.taken = taken

    def renew(self, lock_id, ttl):
        if self.taken.is_set():
            raise StateLockError("lock taken over by another run")
        super().renew(lock_id, ttl)


def _bucket():
    return parse_declarations({"resources": [
        {"type": "aws_s3_bucket", "name": "logs", "attributes": {"name": "logs", "bucket": "logs"}},
    ]})


class TestLockLifetime:
    """Test that the lock outlives its TTL and never hides a result."""

    @pytest.fixture
    def short_lock(self, engine_config):
        engine_config.retry = RetrySettings(max_attempts=1, base_delay_seconds=0, max_delay_seconds=0)
        engine_config.state.lock_ttl_seconds = 0.2
        return engine_config

    def test_lock_is_renewed_during_long_apply(self, short_lock, slow_registry):
        provider, registry = slow_registry(0.5)
        store = MemoryStateStore()
        first = Engine(store, registry, short_lock)
        second = Engine(store, registry, short_lock)
        results = []
        worker = threading.Thread(target=lambda: results.append(first.run(_bucket())))
        worker.start()

        assert provider.started.wait(5)
        time.sleep(0.3)
        with pytest.raises(StateLockError):
            second.plan(_bucket())
        worker.join(10)

        _, report = results[0]
        assert report.result == ApplyResult.SUCCESS
        assert not store.is_locked
        assert list(store.load().resources) == ["aws_s3_bucket.logs"]

    def test_unlock_failure_keeps_the_report(self, short_lock, registry, provider):
        engine = Engine(UnreleasableStore(), registry, short_lock)

        _, report = engine.run(_bucket())

        assert report.result == ApplyResult.SUCCESS
        assert provider.count("aws_s3_bucket") == 1

    def test_lost_lock_blocks_state_writes(self, short_lock, slow_registry):
        provider, registry = slow_registry(0.3)
        store = StolenLockStore(provider.started)
        engine = Engine(store, registry, short_lock)

        _, report = engine.run(_bucket())

        result = report.get("create:aws_s3_bucket.logs")
        assert result.status == NodeStatus.FAILED
        assert "was lost" in result.error
        assert report.result != ApplyResult.SUCCESS
        assert store.load().resources == {}
        assert store.save_count == 0
