"""
Metric definition registry.

Stores named, deterministic quality computations. Definitions are upserted by
name: redefining a metric replaces its shape, computation and description
while keeping the name, so bindings and stored results stay valid.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from qualitykit import expressions as ex
from qualitykit.determinism import ensure_deterministic
from qualitykit.errors import NotFoundError
from qualitykit.models import ColumnType, MetricDefinition, normalize_input_shape

logger = logging.getLogger(__name__)


class MetricRegistry:
    """
    Thread-safe registry of metric definitions.

    Example:
        registry = MetricRegistry()
        registry.define(
            "CLAIMS_EXCEEDING_COVERAGE",
            [("claim_amount", "NUMBER"), ("coverage_limit", "NUMBER")],
            count_where(col("claim_amount") > col("coverage_limit")),
            description="Claims where the amount exceeds the policy coverage limit",
        )
    """

    def __init__(self):
        self._definitions: Dict[str, MetricDefinition] = {}
        self._lock = threading.RLock()

    def define(
        self,
        name: str,
        input_shape: Any,
        compute_fn: Callable[..., Optional[float]],
        description: str = ""
    ) -> str:
        """
        Create or replace a metric definition.

        Args:
            name: Unique metric name
            input_shape: Columns of one relation, or a list of one or two RelationShapes
            compute_fn: Sublanguage aggregate or pure callable over row lists
            description: Free-text description

        Returns:
            The metric name

        Raises:
            NonDeterministicMetricError: If the computation reads wall-clock time or external state
            ValueError: If the shape is malformed or does not match the computation
        """
        ensure_deterministic(name, compute_fn)
        definition = MetricDefinition(
            name=name,
            inputs=normalize_input_shape(input_shape),
            compute=compute_fn,
            description=description,
        )

        with self._lock:
            replaced = definition.name in self._definitions
            self._definitions[definition.name] = definition

        action = "Replaced" if replaced else "Defined"
        logger.info(f"{action} metric {definition.signature()}")
        return definition.name

    def get(self, name: str) -> MetricDefinition:
        """
        Look up a metric definition.

        Raises:
            NotFoundError: If no metric with this name exists
        """
        with self._lock:
            definition = self._definitions.get(name)
        if definition is None:
            raise NotFoundError("Metric definition", name)
        return definition

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._definitions

    def list_definitions(self) -> List[MetricDefinition]:
        """All definitions, sorted by name."""
        with self._lock:
            return [self._definitions[n] for n in sorted(self._definitions)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.exists(name)


# =============================================================================
# SYSTEM METRICS
# =============================================================================

SYSTEM_METRICS = ("ROW_COUNT", "NULL_COUNT", "DUPLICATE_COUNT", "UNIQUE_COUNT")


def register_system_metrics(registry: MetricRegistry) -> List[str]:
    """
    Register the built-in metrics available on every entity.

    ROW_COUNT reads no columns; the per-column metrics accept a single column
    of any type, bound positionally to the shape column ``value``.
    Freshness-style metrics need the wall clock and are not offered.

    Returns:
        Names of the registered metrics
    """
    single_column = [("value", ColumnType.ANY)]
    registry.define("ROW_COUNT", [], ex.row_count(), "Number of rows")
    registry.define("NULL_COUNT", single_column, ex.null_count("value"), "Number of NULL values in the column")
    registry.define(
        "DUPLICATE_COUNT",
        single_column,
        ex.duplicate_count("value"),
        "Number of non-NULL values that repeat an earlier value",
    )
    registry.define(
        "UNIQUE_COUNT", single_column, ex.unique_count("value"), "Number of distinct non-NULL values"
    )
    return list(SYSTEM_METRICS)
