"""
Unit tests for MetricRegistry and the system metrics.
"""

import pytest

from qualitykit.errors import NotFoundError
from qualitykit.expressions import col, count_where
from qualitykit.models import ColumnType
from qualitykit.registry import SYSTEM_METRICS, MetricRegistry, register_system_metrics


class TestDefine:
    """Tests for defining and replacing metrics."""

    def test_define_returns_name(self) -> None:
        """define() returns the metric name."""
        registry = MetricRegistry()
        name = registry.define("ROWS", [], lambda rows: len(rows), "Row count")
        assert name == "ROWS"
        assert registry.get("ROWS").description == "Row count"

    def test_define_is_upsert(self) -> None:
        """Defining an existing name replaces shape, computation and description."""
        registry = MetricRegistry()
        registry.define("AMOUNTS", [("claim_amount", "NUMBER")], count_where(col("claim_amount") > 0), "v1")
        registry.define(
            "AMOUNTS",
            [("claim_amount", "NUMBER"), ("policy_coverage_limit", "NUMBER")],
            count_where(col("claim_amount") > col("policy_coverage_limit")),
            "v2",
        )
        definition = registry.get("AMOUNTS")
        assert len(registry) == 1
        assert definition.description == "v2"
        assert definition.primary_shape.arity == 2

    def test_invalid_shape_raises(self) -> None:
        """Malformed shapes are rejected before registration."""
        registry = MetricRegistry()
        with pytest.raises(ValueError):
            registry.define("BAD", [("a", "GEOGRAPHY")], lambda rows: 0)
        assert "BAD" not in registry

    def test_list_definitions_sorted(self) -> None:
        """Definitions are listed by name."""
        registry = MetricRegistry()
        registry.define("ZETA", [], lambda rows: 0)
        registry.define("ALPHA", [], lambda rows: 0)
        assert [d.name for d in registry.list_definitions()] == ["ALPHA", "ZETA"]


class TestLookup:
    """Tests for looking up definitions."""

    def test_get_unknown_raises_not_found(self) -> None:
        """Unknown names raise NotFoundError."""
        with pytest.raises(NotFoundError) as exc_info:
            MetricRegistry().get("MISSING")
        assert exc_info.value.name == "MISSING"

    def test_exists(self) -> None:
        """exists() and ``in`` agree."""
        registry = MetricRegistry()
        registry.define("ROWS", [], lambda rows: len(rows))
        assert registry.exists("ROWS")
        assert "ROWS" in registry
        assert "OTHER" not in registry


class TestSystemMetrics:
    """Tests for the built-in metrics."""

    def test_all_system_metrics_registered(self) -> None:
        """Every system metric is available after registration."""
        registry = MetricRegistry()
        names = register_system_metrics(registry)
        assert names == list(SYSTEM_METRICS)
        assert all(name in registry for name in SYSTEM_METRICS)

    def test_row_count_reads_no_columns(self) -> None:
        """ROW_COUNT has an empty input shape."""
        registry = MetricRegistry()
        register_system_metrics(registry)
        assert registry.get("ROW_COUNT").primary_shape.arity == 0

    def test_column_metrics_accept_any_type(self) -> None:
        """Per-column metrics declare a single ANY column."""
        registry = MetricRegistry()
        register_system_metrics(registry)
        shape = registry.get("DUPLICATE_COUNT").primary_shape
        assert shape.arity == 1
        assert shape.columns[0].column_type == ColumnType.ANY
