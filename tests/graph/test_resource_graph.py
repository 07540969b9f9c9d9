"""Tests for resource graph construction."""

import pytest
from converge.graph.resource_graph import DEPENDS_ON_EDGE, REFERENCE_EDGE, build_graph
from converge.ingest.models import ResourceAddress
from converge.utils.errors import CycleError, ValidationError

L = ResourceAddress("log_group", "build")
R = ResourceAddress("iam_role", "build")
P = ResourceAddress("project", "runner")


class TestBuildGraph:
    """Test graph building from declarations."""

    def test_nodes_and_reference_edges(self, runner_declarations):
        """Test that each reference produces one dependency edge."""
        graph = build_graph(runner_declarations)

        assert len(graph) == 3
        assert graph.graph.number_of_edges() == 2
        assert graph.dependencies(P) == {L, R}
        assert graph.dependents(L) == {P}
        assert graph.edge_kinds(P, L) == {REFERENCE_EDGE}

    def test_topological_order(self, runner_declarations):
        """Test dependencies first, ties broken by address."""
        graph = build_graph(runner_declarations)
        assert graph.topological_order() == [R, L, P]

    def test_explicit_dependency(self, declare):
        graph = build_graph(declare([
            {"type": "bucket", "name": "artifacts"},
            {"type": "project", "name": "runner", "depends_on": ["bucket.artifacts"]},
        ]))

        edge = (ResourceAddress("project", "runner"), ResourceAddress("bucket", "artifacts"))
        assert graph.edge_kinds(*edge) == {DEPENDS_ON_EDGE}

    def test_reference_and_explicit_dependency_share_edge(self, declare):
        graph = build_graph(declare([
            {"type": "bucket", "name": "artifacts"},
            {
                "type": "project",
                "name": "runner",
                "attributes": {"bucket": "${bucket.artifacts.id}"},
                "depends_on": ["bucket.artifacts"],
            },
        ]))

        assert graph.graph.number_of_edges() == 1
        edge = (ResourceAddress("project", "runner"), ResourceAddress("bucket", "artifacts"))
        assert graph.edge_kinds(*edge) == {REFERENCE_EDGE, DEPENDS_ON_EDGE}

    def test_variables_in_attributes(self, declare):
        graph = build_graph(declare(
            [{"type": "log_group", "name": "build", "attributes": {"name": "logs-${var.env}"}}],
            variables={"env": "prod"},
        ))
        attribute = graph.get_resource(L).attributes["name"]
        assert attribute.value == "logs-prod"

    def test_duplicate_declaration(self, declare):
        with pytest.raises(ValidationError, match="Duplicate"):
            build_graph(declare([
                {"type": "bucket", "name": "logs"},
                {"type": "bucket", "name": "logs"},
            ]))

    def test_undeclared_reference(self, declare):
        with pytest.raises(ValidationError, match="undeclared resource iam_role.missing"):
            build_graph(declare([
                {"type": "project", "name": "runner", "attributes": {"role": "${iam_role.missing.arn}"}},
            ]))

    def test_undeclared_explicit_dependency(self, declare):
        with pytest.raises(ValidationError):
            build_graph(declare([
                {"type": "project", "name": "runner", "depends_on": ["bucket.missing"]},
            ]))

    def test_malformed_explicit_dependency(self, declare):
        with pytest.raises(ValidationError):
            build_graph(declare([
                {"type": "project", "name": "runner", "depends_on": ["nodot"]},
            ]))

    def test_cycle_names_members(self, declare):
        """Test that A -> B -> A fails naming both."""
        with pytest.raises(CycleError) as exc_info:
            build_graph(declare([
                {"type": "queue", "name": "a", "attributes": {"topic": "${topic.b.arn}"}},
                {"type": "topic", "name": "b", "attributes": {"queue": "${queue.a.arn}"}},
            ]))

        assert exc_info.value.members == ["queue.a", "topic.b"]

    def test_self_reference_is_cycle(self, declare):
        with pytest.raises(CycleError) as exc_info:
            build_graph(declare([
                {"type": "queue", "name": "a", "attributes": {"self": "${queue.a.arn}"}},
            ]))
        assert exc_info.value.members == ["queue.a"]


class TestPresenceGates:
    """Test count/enabled gates."""

    def test_count_zero_removes_resource(self, declare):
        graph = build_graph(declare([
            {"type": "bucket", "name": "logs", "count": 0},
            {"type": "bucket", "name": "data", "count": 1},
        ]))
        assert graph.addresses() == [ResourceAddress("bucket", "data")]

    def test_enabled_false_removes_resource(self, declare):
        graph = build_graph(declare([{"type": "bucket", "name": "logs", "enabled": False}]))
        assert len(graph) == 0

    def test_gate_from_variable(self, declare):
        resources = [{"type": "bucket", "name": "logs", "enabled": "${var.enable_logs}"}]
        assert len(build_graph(declare(resources, variables={"enable_logs": True}))) == 1
        assert len(build_graph(declare(resources, variables={"enable_logs": False}))) == 0

    def test_count_must_be_zero_or_one(self, declare):
        with pytest.raises(ValidationError, match="count"):
            build_graph(declare([{"type": "bucket", "name": "logs", "count": 2}]))

    def test_enabled_must_be_boolean(self, declare):
        with pytest.raises(ValidationError, match="enabled"):
            build_graph(declare([{"type": "bucket", "name": "logs", "enabled": "yes"}]))

    def test_reference_to_gated_off_resource(self, declare):
        with pytest.raises(ValidationError, match="disabled"):
            build_graph(declare([
                {"type": "bucket", "name": "logs", "count": 0},
                {"type": "project", "name": "runner", "attributes": {"logs": "${bucket.logs.id}"}},
            ]))
