"""Tests for expression evaluation against state and data lookups."""

import pytest
from converge.evaluation.evaluator import Evaluator, LookupCache
from converge.evaluation.values import Resolved, Unresolved
from converge.providers.memory import MemoryProvider
from converge.state.models import ResourceState, hash_attributes
from converge.utils.errors import DataLookupError, EvaluationError


def _entry(kind, attributes, provider_id, outputs=None):
    return ResourceState(
        kind=kind,
        provider_id=provider_id,
        attributes=attributes,
        outputs=outputs or {"id": provider_id},
        input_hash=hash_attributes(attributes),
    )


@pytest.fixture
def web_config():
    return {
        "variables": {"env": "prod", "zones": ["a", "b"]},
        "resources": [
            {"kind": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
            {"kind": "server", "name": "web", "attributes": {
                "name": "web-${var.env}",
                "network_id": "${network.main.id}",
                "zone": "${var.zones[1]}",
                "tags": {"env": "${var.env}", "gateway": "${network.main.gateway}"},
            }},
        ],
    }


@pytest.fixture
def images():
    return MemoryProvider(data={"image": [
        {"id": "img-1", "family": "base-2023", "created_at": "2023-06-01"},
        {"id": "img-2", "family": "base-2024", "created_at": "2024-06-01"},
        {"id": "img-9", "family": "gpu-2024", "created_at": "2024-09-01"},
    ]})


class TestEvaluator:
    """Test evaluation of resource attributes."""

    def test_unapplied_reference_is_unresolved(self, make_graph, web_config):
        graph = make_graph(web_config)
        values = Evaluator(graph).evaluate_attributes(graph.node("server.web"))

        assert values["name"] == Resolved("web-prod")
        assert values["zone"] == Resolved("b")
        assert values["network_id"] == Unresolved("network.main")
        assert isinstance(values["tags"], Unresolved)

    def test_references_resolve_from_state(self, make_graph, web_config):
        graph = make_graph(web_config)
        state = {"network.main": _entry("network", {"cidr": "10.0.0.0/16"}, "net-1",
                                        outputs={"gateway": "10.0.0.1"})}
        values = Evaluator.from_state(graph, state).evaluate_attributes(graph.node("server.web"))

        assert values["network_id"] == Resolved("net-1")
        assert values["tags"] == Resolved({"env": "prod", "gateway": "10.0.0.1"})

    def test_pending_outputs_are_unresolved(self, make_graph, web_config):
        """A resource being created exposes its inputs but not its outputs yet."""
        graph = make_graph(web_config)
        evaluator = Evaluator(graph)
        evaluator.set_object("network.main", {"cidr": "10.0.0.0/16"}, complete=False)

        values = evaluator.evaluate_attributes(graph.node("server.web"))
        assert values["network_id"] == Unresolved("network.main.id")

    def test_missing_attribute_on_complete_object_raises(self, make_graph, web_config):
        graph = make_graph(web_config)
        evaluator = Evaluator(graph)
        evaluator.set_object("network.main", {"cidr": "10.0.0.0/16", "id": "net-1"})

        with pytest.raises(EvaluationError) as exc_info:
            evaluator.evaluate_attributes(graph.node("server.web"))
        assert "gateway" in str(exc_info.value)

    def test_unknown_function_raises(self, make_graph):
        graph = make_graph({"resources": [
            {"kind": "server", "name": "web", "attributes": {"x": "${nope(1)}"}},
        ]})
        with pytest.raises(EvaluationError):
            Evaluator(graph).evaluate_attributes(graph.node("server.web"))

    def test_outputs(self, make_graph):
        graph = make_graph({
            "resources": [{"kind": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}}],
            "outputs": {"network_id": "${network.main.id}", "label": "static"},
        })
        evaluator = Evaluator.from_state(graph, {"network.main": _entry("network", {}, "net-7")})
        assert evaluator.evaluate_outputs() == {"network_id": Resolved("net-7"), "label": Resolved("static")}


class TestModules:
    """Test evaluation across module boundaries."""

    @pytest.fixture
    def module_config(self):
        return {
            "resources": [{"kind": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}}],
            "modules": [{
                "name": "app",
                "inputs": {"network_id": "${network.main.id}", "size": "large"},
                "variables": {"network_id": {"required": True}, "size": "small"},
                "resources": [{"kind": "server", "name": "web", "attributes": {
                    "network_id": "${var.network_id}",
                    "size": "${var.size}",
                }}],
                "outputs": {"server_id": "${server.web.id}"},
            }],
            "outputs": {"app_server": "${module.app.server_id}"},
        }

    def test_module_input_evaluates_in_parent_scope(self, make_graph, module_config):
        graph = make_graph(module_config)
        evaluator = Evaluator.from_state(graph, {"network.main": _entry("network", {}, "net-1")})

        values = evaluator.evaluate_attributes(graph.node("module.app.server.web"))
        assert values == {"network_id": Resolved("net-1"), "size": Resolved("large")}

    def test_module_output(self, make_graph, module_config):
        graph = make_graph(module_config)
        evaluator = Evaluator.from_state(graph, {
            "network.main": _entry("network", {}, "net-1"),
            "module.app.server.web": _entry("server", {}, "srv-1"),
        })
        assert evaluator.evaluate_outputs() == {"app_server": Resolved("srv-1")}


class TestDataLookups:
    """Test data lookups through the provider."""

    def test_most_recent_picks_newest(self, make_graph, images):
        graph = make_graph({
            "data": [{"kind": "image", "name": "base", "filters": {"family": "base-*"}, "most_recent": True}],
            "resources": [{"kind": "server", "name": "web", "attributes": {"image": "${data.image.base.id}"}}],
        })
        values = Evaluator(graph, LookupCache(images)).evaluate_attributes(graph.node("server.web"))
        assert values["image"] == Resolved("img-2")

    def test_custom_sort_key(self, make_graph, images):
        graph = make_graph({
            "data": [{"kind": "image", "name": "any", "filters": {"family": "*"},
                      "most_recent": True, "sort_key": "id"}],
        })
        evaluator = Evaluator(graph, LookupCache(images))
        assert evaluator.resolve_data(graph.node("data.image.any")) == Resolved(
            {"id": "img-9", "family": "gpu-2024", "created_at": "2024-09-01"}
        )

    def test_ambiguous_result_raises(self, make_graph, images):
        graph = make_graph({"data": [{"kind": "image", "name": "base", "filters": {"family": "base-*"}}]})
        with pytest.raises(DataLookupError) as exc_info:
            Evaluator(graph, LookupCache(images)).resolve_data(graph.node("data.image.base"))
        assert "2 results" in str(exc_info.value)

    def test_no_result_raises(self, make_graph, images):
        graph = make_graph({"data": [{"kind": "image", "name": "win", "filters": {"family": "windows-*"}}]})
        with pytest.raises(DataLookupError):
            Evaluator(graph, LookupCache(images)).resolve_data(graph.node("data.image.win"))

    def test_lookups_are_cached_per_run(self, make_graph, images):
        graph = make_graph({
            "data": [
                {"kind": "image", "name": "a", "filters": {"family": "gpu-*"}},
                {"kind": "image", "name": "b", "filters": {"family": "gpu-*"}},
            ],
        })
        evaluator = Evaluator(graph, LookupCache(images))
        evaluator.resolve_data(graph.node("data.image.a"))
        evaluator.resolve_data(graph.node("data.image.b"))

        queries = [call for call in images.calls if call[0] == "query"]
        assert len(queries) == 1

    def test_filter_depending_on_unapplied_resource(self, make_graph, images):
        graph = make_graph({
            "resources": [{"kind": "network", "name": "main", "attributes": {}}],
            "data": [{"kind": "image", "name": "x", "filters": {"network": "${network.main.id}"}}],
        })
        evaluator = Evaluator(graph, LookupCache(images))
        assert evaluator.resolve_data(graph.node("data.image.x")) == Unresolved("network.main")
        assert images.calls == []
