"""Shared fixtures: in-memory provider, registry, store and the CodeBuild runner declarations."""

import pytest
from converge.config.settings import ExecutionSettings, RetrySettings
from converge.ingest.models import DeclarationSet
from converge.providers.memory import InMemoryProvider
from converge.providers.registry import ProviderRegistry
from converge.state.store import InMemoryStateStore


def _runner_resources():
    return [
        {
            "type": "log_group",
            "name": "build",
            "attributes": {"name": "codebuild-runner", "retention_days": 14},
        },
        {
            "type": "iam_role",
            "name": "build",
            "attributes": {"name": "codebuild-runner-role", "description": "CodeBuild service role"},
        },
        {
            "type": "project",
            "name": "runner",
            "attributes": {
                "name": "runner",
                "compute_type": "BUILD_GENERAL1_SMALL",
                "log_group": "${log_group.build.name}",
                "service_role": "${iam_role.build.arn}",
            },
        },
    ]


@pytest.fixture
def declare():
    """Build a DeclarationSet from plain resource dictionaries."""
    def _declare(resources, variables=None):
        return DeclarationSet.model_validate({"variables": variables or {}, "resources": resources})
    return _declare


@pytest.fixture
def runner_resources():
    """Log group L, role R and project P referencing both."""
    return _runner_resources()


@pytest.fixture
def runner_declarations(declare, runner_resources):
    return declare(runner_resources)


@pytest.fixture
def provider():
    """In-memory provider where changing a project's compute_type forces replacement."""
    return InMemoryProvider(immutable={"project": ["compute_type"]})


@pytest.fixture
def registry(provider):
    registry = ProviderRegistry()
    registry.register("*", provider)
    return registry


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def execution_settings():
    """Executor settings without backoff delays."""
    return ExecutionSettings(
        max_parallelism=4,
        retry=RetrySettings(base_delay_seconds=0, max_delay_seconds=0, max_attempts=3, jitter=0),
    )
