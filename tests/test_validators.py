"""Tests for schema and business rule validation."""

from conftest import make_node, make_trigger, make_edge
from workflow_guard.core.business_rules import BusinessRuleValidator, find_sensitive_fields
from workflow_guard.core.schema_validator import SchemaValidator
from workflow_guard.models.graph import WorkflowGraph
from workflow_guard.models.validation import ErrorCode, WarningCode, ValidationKind


def codes(errors):
    return [error.code for error in errors]


class TestSchemaValidator:
    """Test cases for SchemaValidator."""

    def test_valid_graph_has_no_findings(self, valid_graph):
        """Test a well-formed provider mapping passes."""
        assert SchemaValidator().validate(valid_graph) == []

    def test_accepts_normalized_graph(self, valid_graph):
        """Test a WorkflowGraph is validated through its exchange shape."""
        assert SchemaValidator().validate(WorkflowGraph.from_untrusted(valid_graph)) == []

    def test_editor_shape_is_flattened(self):
        """Test nodes nesting their fields under data are accepted."""
        graph = {
            "nodes": [{
                "id": "t",
                "type": "custom",
                "position": {"x": 1, "y": 2},
                "data": {
                    "blockType": "WEBHOOK",
                    "nodeType": "TRIGGER",
                    "label": "Hook",
                    "config": {"url": "https://example.org/hook"},
                },
            }],
        }
        assert SchemaValidator().validate(graph) == []

    def test_missing_id(self):
        """Test an absent node id maps to MISSING_ID."""
        errors = SchemaValidator().validate({"nodes": [make_node(None)]})
        assert codes(errors) == [ErrorCode.MISSING_ID]
        assert errors[0].path == "nodes.0.id"
        assert errors[0].kind == ValidationKind.SCHEMA

    def test_empty_id_counts_as_missing(self):
        """Test an empty string id maps to MISSING_ID."""
        errors = SchemaValidator().validate({"nodes": [make_node("")]})
        assert codes(errors) == [ErrorCode.MISSING_ID]

    def test_missing_position(self):
        """Test absent and null positions map to MISSING_POSITION."""
        absent = make_node("a")
        del absent["position"]
        null = make_node("b")
        null["position"] = None

        errors = SchemaValidator().validate({"nodes": [absent, null]})
        assert codes(errors) == [ErrorCode.MISSING_POSITION, ErrorCode.MISSING_POSITION]
        assert [error.node_id for error in errors] == ["a", "b"]

    def test_wrong_coordinate_type(self):
        """Test a string coordinate is a generic schema error, not a missing position."""
        errors = SchemaValidator().validate({"nodes": [make_node("a", position={"x": "10", "y": 0})]})
        assert errors
        assert set(codes(errors)) == {ErrorCode.SCHEMA_VALIDATION_ERROR}
        assert all(error.path.startswith("nodes.0.position.x") for error in errors)
        assert all(error.node_id == "a" for error in errors)

    def test_unknown_block_type(self):
        """Test block types outside the catalogue are rejected."""
        errors = SchemaValidator().validate({"nodes": [make_node("a", block_type="TELEPORT")]})
        assert codes(errors) == [ErrorCode.SCHEMA_VALIDATION_ERROR]
        assert errors[0].message.startswith("nodes.0.")

    def test_edge_requires_endpoints(self):
        """Test edges without a source are reported."""
        graph = {"nodes": [make_trigger("t")], "edges": [{"id": "e1", "target": "t"}]}
        errors = SchemaValidator().validate(graph)
        assert codes(errors) == [ErrorCode.SCHEMA_VALIDATION_ERROR]
        assert errors[0].path == "edges.0.source"

    def test_duplicate_ids(self):
        """Test repeated node and edge ids are reported once per repeat."""
        graph = {
            "nodes": [make_trigger("t"), make_node("a"), make_node("a")],
            "edges": [make_edge("e", "t", "a"), make_edge("e", "t", "a")],
        }
        errors = SchemaValidator().validate(graph)
        assert codes(errors) == [ErrorCode.DUPLICATE_NODE_ID, ErrorCode.DUPLICATE_EDGE_ID]
        assert errors[0].node_id == "a"
        assert errors[1].edge_id == "e"

    def test_missing_nodes_collection(self):
        """Test a mapping without nodes fails at the nodes path."""
        errors = SchemaValidator().validate({"edges": []})
        assert codes(errors) == [ErrorCode.SCHEMA_VALIDATION_ERROR]
        assert errors[0].path == "nodes"

    def test_non_mapping_input(self):
        """Test arbitrary provider output is reported instead of raising."""
        errors = SchemaValidator().validate("definitely not a graph")
        assert codes(errors) == [ErrorCode.SCHEMA_VALIDATION_ERROR]
        assert errors[0].path == "graph"


class TestBusinessRuleValidator:
    """Test cases for BusinessRuleValidator."""

    def validate(self, nodes, edges=()):
        return BusinessRuleValidator().validate(
            WorkflowGraph.from_untrusted({"nodes": nodes, "edges": list(edges)})
        )

    def test_valid_graph(self, valid_graph):
        """Test a trigger plus configured action passes."""
        errors, warnings = BusinessRuleValidator().validate(WorkflowGraph.from_untrusted(valid_graph))
        assert errors == []
        assert warnings == []

    def test_requires_trigger(self):
        """Test a graph of actions only is rejected."""
        errors, _ = self.validate([make_node("a")])
        assert codes(errors) == [ErrorCode.NO_TRIGGER_NODE]

    def test_many_triggers_warn(self):
        """Test more than three triggers is advisory only."""
        nodes = [make_trigger(f"t{i}") for i in range(4)]
        errors, warnings = self.validate(nodes)
        assert errors == []
        assert codes(warnings) == [WarningCode.MULTIPLE_TRIGGERS]

    def test_three_triggers_are_fine(self):
        """Test the trigger limit is inclusive."""
        _, warnings = self.validate([make_trigger(f"t{i}") for i in range(3)])
        assert warnings == []

    def test_missing_required_config(self):
        """Test each known block type lists its missing fields."""
        nodes = [
            make_trigger("t"),
            make_node("http", block_type="HTTP_REQUEST", config={}),
            make_node("code", block_type="CUSTOM", config={"code": ""}),
        ]
        errors, _ = self.validate(nodes)
        assert codes(errors) == [ErrorCode.MISSING_REQUIRED_CONFIG] * 2
        assert errors[0].node_id == "http"
        assert errors[0].message.endswith("url, method")
        assert errors[1].node_id == "code"

    def test_unknown_block_config_is_open(self):
        """Test blocks without a typed schema have no required fields."""
        errors, _ = self.validate([make_trigger("t"), make_node("d", block_type="DELAY", config={})])
        assert errors == []

    def test_action_to_trigger_warns(self):
        """Test feeding an action back into a trigger is a warning, never an error."""
        nodes = [make_trigger("t"), make_node("a")]
        edges = [make_edge("e1", "t", "a"), make_edge("e2", "a", "t")]
        errors, warnings = self.validate(nodes, edges)
        assert errors == []
        assert codes(warnings) == [WarningCode.INCOMPATIBLE_CONNECTION]
        assert warnings[0].node_id == "t"

    def test_sensitive_config_warns(self):
        """Test secret-looking configuration is flagged as a security warning."""
        nodes = [
            make_trigger("t"),
            make_node("a", block_type="DATABASE", config={"apiKey": "abc", "table": "users"}),
        ]
        _, warnings = self.validate(nodes)
        assert codes(warnings) == [WarningCode.SENSITIVE_CONFIG]
        assert warnings[0].kind == ValidationKind.SECURITY
        assert "apiKey" in warnings[0].message


class TestSensitiveFields:
    """Test cases for find_sensitive_fields."""

    def test_key_names(self):
        """Test sensitive key names are matched case-insensitively."""
        config = {"Password": "x", "authHeader": "Bearer", "name": "bob"}
        assert find_sensitive_fields(config) == ["Password", "authHeader"]

    def test_encoded_values(self):
        """Test long base64-looking values are flagged whatever their key."""
        config = {"payload": "QUJDREVGR0hJSktMTU5PUFFSU1RVVldY", "short": "QUJD"}
        assert find_sensitive_fields(config) == ["payload"]

    def test_non_string_values_ignored(self):
        """Test only string values are inspected."""
        assert find_sensitive_fields({"token": 5, "secret": {"nested": "x"}}) == []
