"""Tests for the executor."""

import threading
import pytest
from converge.config.settings import ExecutionSettings, RetrySettings
from converge.execution.cancellation import CancellationToken
from converge.execution.executor import Executor
from converge.execution.models import OutcomeStatus
from converge.graph.resource_graph import ResourceGraph, build_graph
from converge.ingest.models import ResourceAddress
from converge.planning.differ import diff
from converge.planning.models import ChangeKind
from converge.planning.planner import build_plan
from converge.providers.memory import InMemoryProvider
from converge.providers.registry import ProviderRegistry
from converge.state.store import InMemoryStateStore

L = ResourceAddress("log_group", "build")
R = ResourceAddress("iam_role", "build")
P = ResourceAddress("project", "runner")


def _plan(declarations, store, registry, destroy=False):
    graph = ResourceGraph() if destroy else build_graph(declarations)
    return build_plan(diff(graph, store.load(), registry), destroy=destroy)


def _run(declarations, store, registry, settings, cancel_token=None, destroy=False):
    plan = _plan(declarations, store, registry, destroy=destroy)
    return plan, Executor(registry, store, settings).execute(plan, cancel_token)


class TestApply:
    """Test applying plans."""

    def test_first_apply(self, runner_declarations, store, registry, provider, execution_settings):
        _, report = _run(runner_declarations, store, registry, execution_settings)

        assert report.success
        assert report.counts()["APPLIED"] == 3
        records = store.load()
        assert set(records) == {L, R, P}
        assert records[P].inputs["service_role"] == records[R].attributes["arn"]
        assert records[P].inputs["log_group"] == "codebuild-runner"
        assert records[P].dependencies == ["iam_role.build", "log_group.build"]
        assert len(provider.objects) == 3

    def test_idempotent_second_apply(self, runner_declarations, store, registry, provider, execution_settings):
        _run(runner_declarations, store, registry, execution_settings)
        plan, report = _run(runner_declarations, store, registry, execution_settings)

        assert plan.is_empty()
        assert [report.status_of(a) for a in (L, R, P)] == [OutcomeStatus.NO_OP] * 3
        assert len(provider.calls) == 3

    def test_dependency_committed_before_dependent_dispatched(self, runner_declarations, store, registry,
                                                              execution_settings):
        _, report = _run(runner_declarations, store, registry, execution_settings)

        project = report.get(P)
        for dependency in (L, R):
            assert report.get(dependency).committed_at <= project.dispatched_at

    def test_failure_skips_dependents_only(self, declare, runner_resources, store, registry, provider,
                                           execution_settings):
        runner_resources.append({"type": "bucket", "name": "artifacts", "attributes": {"name": "artifacts"}})
        provider.fail("create", "iam_role", times=-1, message="access denied")

        _, report = _run(declare(runner_resources), store, registry, execution_settings)

        assert not report.success
        assert report.status_of(R) == OutcomeStatus.FAILED
        assert "access denied" in report.get(R).reason
        assert report.status_of(P) == OutcomeStatus.SKIPPED
        assert report.get(P).blocked_by == [R]
        assert report.status_of(L) == OutcomeStatus.APPLIED
        assert report.status_of(ResourceAddress("bucket", "artifacts")) == OutcomeStatus.APPLIED
        assert set(store.load()) == {L, ResourceAddress("bucket", "artifacts")}
        assert provider.calls_for("create", "project") == []

    def test_skips_propagate_transitively(self, declare, runner_resources, store, registry, provider,
                                          execution_settings):
        runner_resources.append({"type": "webhook", "name": "runner", "attributes": {"project": "${project.runner.id}"}})
        provider.fail("create", "log_group", times=-1)

        _, report = _run(declare(runner_resources), store, registry, execution_settings)

        assert report.status_of(P) == OutcomeStatus.SKIPPED
        webhook = report.get(ResourceAddress("webhook", "runner"))
        assert webhook.status == OutcomeStatus.SKIPPED
        assert webhook.blocked_by == [P]
        assert report.status_of(R) == OutcomeStatus.APPLIED

    def test_retryable_error_is_retried(self, runner_declarations, store, registry, provider, execution_settings):
        provider.fail("create", "log_group", times=2, retryable=True, message="throttled")

        _, report = _run(runner_declarations, store, registry, execution_settings)

        assert report.success
        assert report.get(L).attempts == 3
        assert len(provider.calls_for("create", "log_group")) == 3

    def test_retries_are_bounded(self, runner_declarations, store, registry, provider, execution_settings):
        provider.fail("create", "log_group", times=-1, retryable=True, message="throttled")

        _, report = _run(runner_declarations, store, registry, execution_settings)

        assert report.status_of(L) == OutcomeStatus.FAILED
        assert report.get(L).attempts == execution_settings.retry.max_attempts
        assert len(provider.calls_for("create", "log_group")) == execution_settings.retry.max_attempts

    def test_non_retryable_error_is_not_retried(self, runner_declarations, store, registry, provider,
                                                execution_settings):
        provider.fail("create", "log_group", times=1, retryable=False)

        _, report = _run(runner_declarations, store, registry, execution_settings)

        assert report.status_of(L) == OutcomeStatus.FAILED
        assert len(provider.calls_for("create", "log_group")) == 1

    def test_timeout_is_permanent_failure(self, declare, store, execution_settings):
        provider = InMemoryProvider(timeout_seconds={"database": 0.1}, delay_seconds={"database": 0.5})
        registry = ProviderRegistry()
        registry.register("*", provider)

        _, report = _run(declare([{"type": "database", "name": "main"}]), store, registry, execution_settings)

        outcome = report.get(ResourceAddress("database", "main"))
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.reason.startswith("Timeout")
        assert store.load() == {}

    def test_parallelism_bound(self, declare, store, execution_settings):
        provider = InMemoryProvider(delay_seconds={"widget": 0.05})
        registry = ProviderRegistry()
        registry.register("*", provider)
        settings = execution_settings.model_copy(update={"max_parallelism": 2})
        declarations = declare([{"type": "widget", "name": f"w{i}"} for i in range(6)])

        _, report = _run(declarations, store, registry, settings)

        assert report.counts()["APPLIED"] == 6
        calls = provider.calls_for("create")
        for call in calls:
            running = [c for c in calls if c.started_at <= call.started_at < c.finished_at]
            assert len(running) <= 2

    def test_state_io_runs_off_event_loop(self, runner_declarations, registry, execution_settings):
        class RecordingStore(InMemoryStateStore):
            def __init__(self):
                super().__init__()
                self.loads = 0
                self.commit_threads = set()

            def load(self):
                self.loads += 1
                return super().load()

            def commit(self, address, record):
                self.commit_threads.add(threading.current_thread().name)
                super().commit(address, record)

        store = RecordingStore()
        plan = _plan(runner_declarations, store, registry)
        store.loads = 0

        report = Executor(registry, store, execution_settings).execute(plan)

        assert report.success
        assert store.loads == 1
        assert store.commit_threads
        assert all(name.startswith("converge") for name in store.commit_threads)


class TestCancellation:
    """Test run-level cancellation."""

    def test_cancelled_before_start(self, runner_declarations, store, registry, provider, execution_settings):
        token = CancellationToken()
        token.cancel()

        _, report = _run(runner_declarations, store, registry, execution_settings, cancel_token=token)

        assert report.cancelled
        assert report.status_of(L) == OutcomeStatus.SKIPPED
        assert report.get(L).reason == "cancelled"
        assert provider.calls == []
        assert store.load() == {}

    def test_in_flight_change_completes(self, declare, runner_resources, store, execution_settings):
        token = CancellationToken()

        class CancellingProvider(InMemoryProvider):
            def create(self, resource_type, attrs):
                result = super().create(resource_type, attrs)
                if resource_type == "log_group":
                    token.cancel("interrupted")
                return result

        registry = ProviderRegistry()
        registry.register("*", CancellingProvider())
        settings = execution_settings.model_copy(update={"max_parallelism": 1})
        declarations = declare([
            runner_resources[0],
            {"type": "project", "name": "runner", "attributes": {"log_group": "${log_group.build.name}"}},
        ])

        _, report = _run(declarations, store, registry, settings, cancel_token=token)

        assert report.status_of(L) == OutcomeStatus.APPLIED
        assert report.status_of(P) == OutcomeStatus.SKIPPED
        assert report.get(P).reason == "interrupted"
        assert set(store.load()) == {L}


class TestReplaceAndDelete:
    """Test replacements and deletions after a first apply."""

    @pytest.fixture
    def applied(self, runner_declarations, store, registry, provider, execution_settings):
        _run(runner_declarations, store, registry, execution_settings)
        provider.calls.clear()
        return store

    def test_replace_deletes_then_creates(self, declare, runner_resources, applied, registry, provider,
                                          execution_settings):
        old_id = applied.get(P).provider_id
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"

        plan, report = _run(declare(runner_resources), applied, registry, execution_settings)

        assert plan.get(P).kind == ChangeKind.REPLACE
        assert report.status_of(P) == OutcomeStatus.APPLIED
        assert report.status_of(L) == OutcomeStatus.NO_OP
        assert report.status_of(R) == OutcomeStatus.NO_OP
        assert [(c.operation, c.resource_type) for c in provider.calls] == [("delete", "project"), ("create", "project")]
        new_record = applied.get(P)
        assert new_record.provider_id != old_id
        assert new_record.inputs["compute_type"] == "BUILD_GENERAL1_LARGE"
        assert old_id not in provider.objects

    def test_replace_create_before_destroy(self, declare, runner_resources, applied, registry, provider,
                                           execution_settings):
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"
        runner_resources[2]["lifecycle"] = {"create_before_destroy": True}

        _, report = _run(declare(runner_resources), applied, registry, execution_settings)

        assert report.success
        assert [c.operation for c in provider.calls] == ["create", "delete"]
        assert applied.get(P).deposed_provider_ids == []

    def test_failed_old_delete_keeps_old_object_tracked(self, declare, runner_resources, applied, registry, provider,
                                                        execution_settings):
        old_id = applied.get(P).provider_id
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"
        runner_resources[2]["lifecycle"] = {"create_before_destroy": True}
        provider.fail("delete", "project", times=-1)

        _, report = _run(declare(runner_resources), applied, registry, execution_settings)

        assert report.status_of(P) == OutcomeStatus.FAILED
        record = applied.get(P)
        assert record.provider_id != old_id
        assert record.provider_id in provider.objects
        assert record.deposed_provider_ids == [old_id]
        assert old_id in provider.objects

    def test_deposed_object_deleted_on_next_run(self, declare, runner_resources, applied, registry, provider,
                                                execution_settings):
        old_id = applied.get(P).provider_id
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"
        runner_resources[2]["lifecycle"] = {"create_before_destroy": True}
        provider.fail("delete", "project", times=-1)
        _run(declare(runner_resources), applied, registry, execution_settings)
        provider.fail("delete", "project", times=0)
        provider.calls.clear()

        plan, report = _run(declare(runner_resources), applied, registry, execution_settings)

        assert plan.get(P).kind == ChangeKind.UPDATE
        assert report.success
        assert report.status_of(P) == OutcomeStatus.APPLIED
        assert [(c.operation, c.provider_id) for c in provider.calls] == [("delete", old_id)]
        assert old_id not in provider.objects
        assert applied.get(P).deposed_provider_ids == []
        assert _plan(declare(runner_resources), applied, registry).is_empty()

    def test_destroy_deletes_deposed_objects(self, declare, runner_resources, applied, registry, provider,
                                             execution_settings):
        old_id = applied.get(P).provider_id
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"
        runner_resources[2]["lifecycle"] = {"create_before_destroy": True}
        provider.fail("delete", "project", times=1)
        _run(declare(runner_resources), applied, registry, execution_settings)

        _, report = _run(declare(runner_resources), applied, registry, execution_settings, destroy=True)

        assert report.success
        assert applied.load() == {}
        assert provider.objects == {}

    def test_replace_retry_does_not_repeat_delete(self, declare, runner_resources, applied, registry, provider,
                                                  execution_settings):
        runner_resources[2]["attributes"]["compute_type"] = "BUILD_GENERAL1_LARGE"
        provider.fail("create", "project", times=1, retryable=True)

        _, report = _run(declare(runner_resources), applied, registry, execution_settings)

        assert report.status_of(P) == OutcomeStatus.APPLIED
        assert report.get(P).attempts == 2
        assert len(provider.calls_for("delete", "project")) == 1

    def test_replaced_dependency_updates_dependent(self, declare, runner_resources, store, execution_settings):
        provider = InMemoryProvider(immutable={"iam_role": ["name"]})
        registry = ProviderRegistry()
        registry.register("*", provider)
        _run(declare(runner_resources), store, registry, execution_settings)

        runner_resources[1]["attributes"]["name"] = "renamed-role"
        plan, report = _run(declare(runner_resources), store, registry, execution_settings)

        assert plan.get(R).kind == ChangeKind.REPLACE
        assert plan.get(P).kind == ChangeKind.UPDATE
        assert report.success
        assert store.get(P).inputs["service_role"] == store.get(R).attributes["arn"]

    def test_removed_dependent_is_deleted(self, declare, runner_resources, applied, registry, provider,
                                          execution_settings):
        plan, report = _run(declare(runner_resources[:2]), applied, registry, execution_settings)

        assert plan.summary()["DELETE"] == 1
        assert report.status_of(P) == OutcomeStatus.APPLIED
        assert report.status_of(L) == OutcomeStatus.NO_OP
        assert set(applied.load()) == {L, R}
        assert [(c.operation, c.resource_type) for c in provider.calls] == [("delete", "project")]

    def test_destroy_order(self, runner_declarations, applied, registry, provider, execution_settings):
        _, report = _run(runner_declarations, applied, registry, execution_settings, destroy=True)

        assert report.success
        assert applied.load() == {}
        project_delete = provider.calls_for("delete", "project")[0]
        for resource_type in ("log_group", "iam_role"):
            assert provider.calls_for("delete", resource_type)[0].started_at >= project_delete.finished_at

    def test_failed_delete_keeps_record(self, runner_declarations, applied, registry, provider, execution_settings):
        provider.fail("delete", "project", times=-1)

        _, report = _run(runner_declarations, applied, registry, execution_settings, destroy=True)

        assert report.status_of(P) == OutcomeStatus.FAILED
        assert report.status_of(L) == OutcomeStatus.SKIPPED
        assert set(applied.load()) == {L, R, P}


class TestRetrySettings:
    """Test backoff delays."""

    def test_exponential_with_cap(self):
        retry = RetrySettings(base_delay_seconds=1, max_delay_seconds=30)
        assert [retry.delay_for(n) for n in range(1, 7)] == [1, 2, 4, 8, 16, 30]

    def test_executor_defaults(self):
        settings = ExecutionSettings()
        assert settings.max_parallelism == 10
        assert settings.retry.max_attempts == 5
