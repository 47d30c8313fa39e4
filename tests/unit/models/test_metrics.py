"""
Unit tests for metric definition and binding models.

Tests input shape normalization, column type mapping, reference checks on
sublanguage aggregates, and binding identifiers.
"""

import pytest
from pydantic import ValidationError

from qualitykit.expressions import col, count_where, orphan_count, row_count
from qualitykit.models import ColumnSpec, ColumnType, MetricBinding, MetricDefinition, RelationShape
from qualitykit.models.metrics import normalize_input_shape
from tests.fixtures import CLAIMS_ENTITY, POLICIES_ENTITY, make_binding


class TestColumnSpec:
    """Tests for ColumnSpec normalization."""

    def test_name_is_lower_cased(self) -> None:
        """Column names are case-insensitive and stored lower case."""
        assert ColumnSpec(name="Claim_Amount").name == "claim_amount"

    @pytest.mark.parametrize("warehouse_type,expected", [
        ("DECIMAL(10,2)", ColumnType.NUMBER),
        ("bigint", ColumnType.NUMBER),
        ("STRING", ColumnType.VARCHAR),
        ("VARCHAR(255)", ColumnType.VARCHAR),
        ("TIMESTAMP_NTZ", ColumnType.TIMESTAMP),
        ("BOOL", ColumnType.BOOLEAN),
    ])
    def test_warehouse_type_names(self, warehouse_type: str, expected: ColumnType) -> None:
        """Warehouse type spellings map to logical column types."""
        assert ColumnSpec(name="c", column_type=warehouse_type).column_type == expected

    def test_unknown_type_raises(self) -> None:
        """Unrecognised type names are rejected."""
        with pytest.raises(ValidationError):
            ColumnSpec(name="c", column_type="GEOGRAPHY")

    def test_default_type_is_any(self) -> None:
        """A bare column name declares an ANY column."""
        assert ColumnSpec.of("claim_id").column_type == ColumnType.ANY

    def test_any_accepts_every_type(self) -> None:
        """ANY declarations accept every actual type; others need an exact match."""
        assert ColumnType.ANY.accepts(ColumnType.DATE)
        assert ColumnType.NUMBER.accepts(ColumnType.NUMBER)
        assert not ColumnType.NUMBER.accepts(ColumnType.VARCHAR)


class TestRelationShape:
    """Tests for relation shapes and shape normalization."""

    def test_duplicate_column_names_raise(self) -> None:
        """A relation cannot declare the same column twice."""
        with pytest.raises(ValidationError) as exc_info:
            RelationShape(columns=[("a", "NUMBER"), ("A", "VARCHAR")])
        assert "Duplicate" in str(exc_info.value)

    def test_tuple_list_is_one_relation(self) -> None:
        """A flat list of (name, type) tuples describes one relation."""
        shapes = normalize_input_shape([("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")])
        assert len(shapes) == 1
        assert shapes[0].column_names == ["claim_amount", "policy_coverage_limit"]

    def test_nested_lists_are_two_relations(self) -> None:
        """A list of column lists describes one relation per list."""
        shapes = normalize_input_shape([[("policy_id", "VARCHAR")], [("policy_id", "VARCHAR")]])
        assert len(shapes) == 2

    def test_empty_list_is_one_empty_relation(self) -> None:
        """An empty shape is a single relation with no columns."""
        shapes = normalize_input_shape([])
        assert len(shapes) == 1
        assert shapes[0].arity == 0


class TestMetricDefinition:
    """Tests for MetricDefinition validation."""

    def test_signature(self) -> None:
        """The signature lists every relation with its typed columns."""
        definition = MetricDefinition(
            name="CLAIMS_EXCEEDING_COVERAGE",
            inputs=normalize_input_shape([("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")]),
            compute=count_where(col("claim_amount") > col("policy_coverage_limit")),
        )
        assert definition.signature() == (
            "CLAIMS_EXCEEDING_COVERAGE(TABLE(claim_amount NUMBER, policy_coverage_limit NUMBER))"
        )

    def test_undeclared_column_raises(self) -> None:
        """Aggregates may only read columns declared in the shape."""
        with pytest.raises(ValidationError) as exc_info:
            MetricDefinition(
                name="BAD",
                inputs=normalize_input_shape([("claim_amount", "NUMBER")]),
                compute=count_where(col("fraud_flag").eq(True)),
            )
        assert "fraud_flag" in str(exc_info.value)

    def test_arity_mismatch_raises(self) -> None:
        """A two-relation aggregate needs two declared relations."""
        with pytest.raises(ValidationError):
            MetricDefinition(
                name="ORPHANS",
                inputs=normalize_input_shape([("policy_id", "VARCHAR")]),
                compute=orphan_count("policy_id"),
            )

    def test_non_callable_compute_raises(self) -> None:
        """The computation must be callable."""
        with pytest.raises(ValidationError):
            MetricDefinition(name="BAD", inputs=normalize_input_shape([]), compute="SELECT 1")

    def test_two_relation_properties(self) -> None:
        """Two-relation metrics expose their reference shape."""
        definition = MetricDefinition(
            name="ORPHAN_CLAIMS",
            inputs=normalize_input_shape([[("policy_id", "VARCHAR")], [("policy_id", "VARCHAR")]]),
            compute=orphan_count("policy_id"),
        )
        assert definition.is_two_relation
        assert definition.secondary_shape.column_names == ["policy_id"]

    def test_compute_is_excluded_from_dump(self) -> None:
        """Serialized definitions do not carry the computation."""
        definition = MetricDefinition(name="ROWS", inputs=normalize_input_shape([]), compute=row_count())
        assert "compute" not in definition.model_dump()


class TestMetricBinding:
    """Tests for binding identifiers."""

    def test_binding_id_single_relation(self) -> None:
        """The identifier encodes metric, entity and columns."""
        binding = make_binding(columns=["CLAIM_ID"])
        assert binding.binding_id == f"DUPLICATE_COUNT@{CLAIMS_ENTITY}(claim_id)"

    def test_binding_id_two_relations(self) -> None:
        """Two-relation bindings include the reference entity."""
        binding = make_binding(
            columns=["policy_id"],
            metric_name="ORPHAN_CLAIMS",
            second_entity=POLICIES_ENTITY,
            second_columns=["policy_id"],
        )
        assert binding.binding_id == (
            f"ORPHAN_CLAIMS@{CLAIMS_ENTITY}(policy_id)->{POLICIES_ENTITY}(policy_id)"
        )
        assert binding.entities == [CLAIMS_ENTITY, POLICIES_ENTITY]

    def test_same_association_same_id(self) -> None:
        """Binding identity is the association itself."""
        assert make_binding().binding_id == make_binding().binding_id

    def test_second_columns_without_entity_raises(self) -> None:
        """Reference columns require a reference entity."""
        with pytest.raises(ValidationError):
            MetricBinding(entity=CLAIMS_ENTITY, columns=["policy_id"], metric_name="X",
                          second_columns=["policy_id"])
