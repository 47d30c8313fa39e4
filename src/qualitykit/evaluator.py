"""
Metric evaluator.

Runs one binding: loads the bound columns (and the reference relation for
two-relation metrics), renames them to the definition's declared column
names, executes the computation and appends exactly one result stamped with
the evaluation start time. A failed or cancelled evaluation writes nothing.
"""

import logging
import math
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from qualitykit.errors import ComputeError, DataUnavailableError, EvaluationCancelled
from qualitykit.models import Clock, MetricBinding, MetricDefinition, MetricResult, RelationShape, utc_now
from qualitykit.registry import MetricRegistry
from qualitykit.result_store import ResultStore
from qualitykit.sources import EntitySource

logger = logging.getLogger(__name__)


class Evaluator:
    """Evaluates bindings against an entity source and records results."""

    def __init__(
        self,
        registry: MetricRegistry,
        source: EntitySource,
        store: ResultStore,
        clock: Optional[Clock] = None
    ):
        self.registry = registry
        self.source = source
        self.store = store
        self.clock = clock or utc_now

    def evaluate(
        self,
        binding: MetricBinding,
        cancel_event: Optional[threading.Event] = None
    ) -> MetricResult:
        """
        Evaluate a binding and append its result.

        Args:
            binding: The binding to evaluate
            cancel_event: Set by the scheduler to abandon the evaluation

        Returns:
            The stored MetricResult

        Raises:
            ComputeError: If the computation fails or returns a non-numeric value
            DataUnavailableError: If an entity cannot be read
            EvaluationCancelled: If cancelled before the result was written
            NotFoundError: If the metric definition no longer exists
        """
        started_at = self.clock()
        definition = self.registry.get(binding.metric_name)

        relations = [self._load(definition, binding.entity, binding.columns, definition.primary_shape)]
        self._check_cancelled(binding, cancel_event)
        if definition.secondary_shape is not None:
            if not binding.second_entity:
                raise ComputeError(definition.name, binding.entity, "binding has no second entity")
            relations.append(
                self._load(definition, binding.second_entity, binding.second_columns,
                           definition.secondary_shape)
            )
            self._check_cancelled(binding, cancel_event)

        value = self._compute(definition, binding, relations)
        self._check_cancelled(binding, cancel_event)

        result = MetricResult(
            binding_id=binding.binding_id,
            metric_name=definition.name,
            entity=binding.entity,
            columns=list(binding.columns),
            value=value,
            measured_at=started_at,
        )
        stored = self.store.append(result)
        logger.info(f"Evaluated {binding.binding_id}: {value}")
        return stored

    def _load(
        self,
        definition: MetricDefinition,
        entity: str,
        columns: Sequence[str],
        shape: RelationShape
    ) -> List[Dict[str, Any]]:
        if len(columns) != shape.arity:
            # The metric was redefined with a different shape after binding
            raise ComputeError(
                definition.name, entity,
                f"binding has {len(columns)} column(s) but the definition expects {shape.arity}",
            )
        rows = self.source.read(entity, columns)
        names = shape.column_names
        return [
            {declared: row.get(bound) for bound, declared in zip(columns, names)}
            for row in rows
        ]

    def _compute(
        self,
        definition: MetricDefinition,
        binding: MetricBinding,
        relations: List[List[Dict[str, Any]]]
    ) -> Optional[float]:
        try:
            raw = definition.compute(*relations)
        except (DataUnavailableError, EvaluationCancelled):
            raise
        except ZeroDivisionError as e:
            raise ComputeError(definition.name, binding.entity, "division by zero") from e
        except Exception as e:
            raise ComputeError(definition.name, binding.entity, f"{type(e).__name__}: {e}") from e

        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, float, Decimal)):
            raise ComputeError(
                definition.name, binding.entity,
                f"computation returned {type(raw).__name__}, expected a number or None",
            )
        value = float(raw)
        if math.isnan(value) or math.isinf(value):
            raise ComputeError(definition.name, binding.entity, f"computation returned {value}")
        return value

    @staticmethod
    def _check_cancelled(binding: MetricBinding, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise EvaluationCancelled(binding.binding_id)
