"""Tests for resource graph construction."""

import pytest
from converge.utils.errors import (
    CyclicDependencyError,
    DuplicateResourceError,
    GraphConstructionError,
    ParseError,
    UnresolvedReferenceError,
)


def _resource(kind, name, **attributes):
    return {"kind": kind, "name": name, "attributes": attributes}


class TestGraphBuilder:
    """Test building graphs from declarations."""

    def test_reference_creates_edge(self, make_graph):
        graph = make_graph({"resources": [
            _resource("network", "main", cidr="10.0.0.0/16"),
            _resource("server", "web", network_id="${network.main.id}"),
        ]})

        assert graph.addresses() == ["network.main", "server.web"]
        assert graph.edges == [(0, 1)]
        assert graph.node("server.web").dependencies == frozenset({"network.main"})

    def test_topological_order_keeps_declaration_order_for_ties(self, make_graph):
        graph = make_graph({"resources": [
            _resource("server", "web", network_id="${network.main.id}"),
            _resource("bucket", "logs"),
            _resource("network", "main"),
            _resource("bucket", "assets"),
        ]})

        order = [node.address for node in graph.topological_order()]
        assert order == ["bucket.logs", "network.main", "server.web", "bucket.assets"]

    def test_explicit_depends_on(self, make_graph):
        graph = make_graph({"resources": [
            _resource("bucket", "logs"),
            {"kind": "server", "name": "web", "depends_on": ["bucket.logs"]},
        ]})
        assert graph.dependencies("server.web")[0].address == "bucket.logs"

    def test_duplicate_resource(self, make_graph):
        with pytest.raises(DuplicateResourceError) as exc_info:
            make_graph({"resources": [_resource("server", "web"), _resource("server", "web")]})
        assert exc_info.value.address == "server.web"

    def test_same_name_in_different_modules_is_allowed(self, make_graph):
        graph = make_graph({
            "resources": [_resource("server", "web")],
            "modules": [{"name": "blue", "resources": [_resource("server", "web")]}],
        })
        assert graph.addresses() == ["server.web", "module.blue.server.web"]

    def test_unresolved_reference_names_both_ends(self, make_graph):
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            make_graph({"resources": [_resource("server", "web", network_id="${network.missing.id}")]})

        assert exc_info.value.source == "server.web"
        assert exc_info.value.target == "network.missing"
        assert "server.web" in str(exc_info.value)
        assert "network.missing" in str(exc_info.value)

    def test_undeclared_variable_reference(self, make_graph):
        with pytest.raises(UnresolvedReferenceError):
            make_graph({"resources": [_resource("server", "web", env="${var.env}")]})

    def test_unknown_module_reference(self, make_graph):
        with pytest.raises(UnresolvedReferenceError):
            make_graph({"resources": [_resource("server", "web", subnet="${module.net.subnet.a.id}")]})

    def test_cycle_names_every_member(self, make_graph):
        with pytest.raises(CyclicDependencyError) as exc_info:
            make_graph({"resources": [
                _resource("x", "a", ref="${x.c.id}"),
                _resource("x", "b", ref="${x.a.id}"),
                _resource("x", "c", ref="${x.b.id}"),
                _resource("x", "free"),
            ]})

        assert sorted(exc_info.value.members) == ["x.a", "x.b", "x.c"]
        assert "x.free" not in str(exc_info.value)

    def test_self_reference_is_a_cycle(self, make_graph):
        with pytest.raises(CyclicDependencyError) as exc_info:
            make_graph({"resources": [_resource("x", "a", ref="${x.a.id}")]})
        assert exc_info.value.members == ["x.a"]

    def test_missing_required_attribute(self, make_graph):
        with pytest.raises(ParseError) as exc_info:
            make_graph({
                "kinds": {"server": {"required": ["image"]}},
                "resources": [_resource("server", "web", size="small")],
            })
        assert "image" in str(exc_info.value)

    def test_kind_declared_in_module_applies_everywhere(self, make_graph):
        with pytest.raises(ParseError):
            make_graph({
                "resources": [_resource("server", "web")],
                "modules": [{"name": "kinds", "kinds": {"server": {"required": ["image"]}}}],
            })


class TestVariables:
    """Test root variables and module inputs."""

    def test_required_variable_missing(self, make_graph):
        with pytest.raises(ParseError):
            make_graph({"variables": {"env": {"required": True}}})

    def test_undeclared_variable_value(self, make_graph):
        with pytest.raises(ParseError):
            make_graph({"variables": {"env": "dev"}}, variables={"region": "eu"})

    def test_given_value_overrides_default(self, make_graph):
        graph = make_graph({"variables": {"env": "dev"}}, variables={"env": "prod"})
        assert graph.scopes[()].variable_values == {"env": "prod"}

    def test_module_input_references_become_dependencies(self, make_graph):
        graph = make_graph({
            "resources": [_resource("network", "main")],
            "modules": [{
                "name": "app",
                "inputs": {"network_id": "${network.main.id}"},
                "variables": {"network_id": {"required": True}},
                "resources": [_resource("server", "web", network_id="${var.network_id}")],
            }],
        })
        assert graph.node("module.app.server.web").dependencies == frozenset({"network.main"})

    def test_module_missing_required_input(self, make_graph):
        with pytest.raises(ParseError):
            make_graph({"modules": [{"name": "app", "variables": {"network_id": {"required": True}}}]})

    def test_module_output_reference(self, make_graph):
        graph = make_graph({
            "modules": [{
                "name": "net",
                "resources": [_resource("subnet", "public")],
                "outputs": {"subnet_id": "${subnet.public.id}"},
            }],
            "resources": [
                _resource("server", "a", subnet="${module.net.subnet_id}"),
                _resource("server", "b", subnet="${module.net.subnet.public.id}"),
            ],
        })
        assert graph.node("server.a").dependencies == frozenset({"module.net.subnet.public"})
        assert graph.node("server.b").dependencies == frozenset({"module.net.subnet.public"})

    def test_nested_modules(self, make_graph):
        graph = make_graph({"modules": [{
            "name": "outer",
            "modules": [{"name": "inner", "resources": [_resource("bucket", "b")]}],
        }]})
        assert graph.addresses() == ["module.outer.module.inner.bucket.b"]


class TestTargeting:
    """Test restricting the graph to targets."""

    @pytest.fixture
    def graph(self, make_graph):
        return make_graph({
            "data": [{"kind": "image", "name": "base", "filters": {"net": "${network.main.id}"}}],
            "resources": [
                _resource("network", "main"),
                _resource("server", "web", image="${data.image.base.id}"),
                _resource("bucket", "logs"),
            ],
        })

    def test_target_keeps_transitive_dependencies(self, graph):
        targeted = graph.target(["server.web"])
        assert targeted.addresses() == ["data.image.base", "network.main", "server.web"]
        assert [n.index for n in targeted.nodes] == [0, 1, 2]

    def test_unknown_target_raises(self, graph):
        with pytest.raises(GraphConstructionError):
            graph.target(["server.nope"])

    def test_managed_dependencies_look_through_data(self, graph):
        assert graph.managed_dependencies("server.web") == {"network.main"}

    def test_downstream(self, graph):
        assert graph.get_downstream_resources("network.main") == {"data.image.base", "server.web"}
