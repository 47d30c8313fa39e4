"""
Metric binding store.

Associates metric definitions with concrete entity columns. Binding is
checked against the entity's actual schema: the bound columns must match the
definition's declared input shape by count and type, position by position.
Binding the same association twice is an upsert and returns the same id.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence

from qualitykit.errors import NotFoundError, ShapeMismatchError
from qualitykit.models import MetricBinding, RelationShape
from qualitykit.registry import MetricRegistry
from qualitykit.sources import EntitySource

logger = logging.getLogger(__name__)

BindingListener = Callable[[MetricBinding], None]


class BindingStore:
    """
    Thread-safe store of metric bindings.

    Example:
        store = BindingStore(registry, source)
        binding_id = store.bind("insurance.claims.claims", ["claim_amount", "policy_coverage_limit"],
                                "CLAIMS_EXCEEDING_COVERAGE")
    """

    def __init__(self, registry: MetricRegistry, source: EntitySource):
        self.registry = registry
        self.source = source
        self._bindings: Dict[str, MetricBinding] = {}  # insertion order is creation order
        self._unbind_listeners: List[BindingListener] = []
        self._lock = threading.RLock()

    def bind(
        self,
        entity: str,
        columns: Sequence[str],
        metric_name: str,
        second_entity: Optional[str] = None,
        second_columns: Optional[Sequence[str]] = None
    ) -> str:
        """
        Bind a metric to an entity's columns.

        For two-relation metrics, ``second_entity`` names the reference entity.
        When ``second_columns`` is omitted the reference relation is read by the
        column names declared in the metric's second input shape.

        Returns:
            The binding id

        Raises:
            NotFoundError: If the metric is not defined
            ShapeMismatchError: If the columns do not satisfy the declared input shape
            DataUnavailableError: If an entity cannot be described
        """
        binding = self.validate(entity, columns, metric_name, second_entity, second_columns)

        with self._lock:
            if binding.binding_id in self._bindings:
                logger.debug(f"Binding {binding.binding_id} already exists")
                return binding.binding_id
            self._bindings[binding.binding_id] = binding

        logger.info(f"Bound {binding.binding_id}")
        return binding.binding_id

    def validate(
        self,
        entity: str,
        columns: Sequence[str],
        metric_name: str,
        second_entity: Optional[str] = None,
        second_columns: Optional[Sequence[str]] = None
    ) -> MetricBinding:
        """
        Build a binding and check it against the metric's input shape without storing it.

        Raises the same errors as bind().
        """
        definition = self.registry.get(metric_name)

        if definition.is_two_relation and not second_entity:
            raise ShapeMismatchError(
                f"Metric '{metric_name}' reads two relations; a second entity is required"
            )
        if not definition.is_two_relation and second_entity:
            raise ShapeMismatchError(
                f"Metric '{metric_name}' reads one relation; got second entity '{second_entity}'"
            )

        if definition.secondary_shape is not None and second_columns is None:
            second_columns = definition.secondary_shape.column_names

        binding = MetricBinding(
            entity=entity,
            columns=list(columns),
            metric_name=definition.name,
            second_entity=second_entity,
            second_columns=list(second_columns or []),
        )

        self._check_shape(metric_name, binding.entity, binding.columns, definition.primary_shape)
        if definition.secondary_shape is not None:
            self._check_shape(metric_name, binding.second_entity, binding.second_columns,
                              definition.secondary_shape)
        return binding

    def unbind(self, binding_id: str) -> MetricBinding:
        """
        Remove a binding and notify listeners (in-flight evaluations are cancelled).

        Raises:
            NotFoundError: If the binding does not exist
        """
        with self._lock:
            binding = self._bindings.pop(binding_id, None)
        if binding is None:
            raise NotFoundError("Binding", binding_id)

        logger.info(f"Unbound {binding_id}")
        for listener in list(self._unbind_listeners):
            listener(binding)
        return binding

    def get(self, binding_id: str) -> MetricBinding:
        with self._lock:
            binding = self._bindings.get(binding_id)
        if binding is None:
            raise NotFoundError("Binding", binding_id)
        return binding

    def exists(self, binding_id: str) -> bool:
        with self._lock:
            return binding_id in self._bindings

    def list_bindings(self, entity: str) -> List[MetricBinding]:
        """Bindings whose target entity is ``entity``, in creation order."""
        with self._lock:
            return [b for b in self._bindings.values() if b.entity == entity]

    def list_all(self) -> List[MetricBinding]:
        with self._lock:
            return list(self._bindings.values())

    def add_unbind_listener(self, listener: BindingListener) -> None:
        self._unbind_listeners.append(listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)

    def _check_shape(
        self,
        metric_name: str,
        entity: str,
        columns: List[str],
        shape: RelationShape
    ) -> None:
        if len(columns) != shape.arity:
            raise ShapeMismatchError(
                f"Metric '{metric_name}' expects {shape.arity} column(s) {shape.column_names} "
                f"on {entity}, got {len(columns)}: {columns}"
            )

        actual = {spec.name: spec.column_type for spec in self.source.describe(entity)}
        for bound, declared in zip(columns, shape.columns):
            if bound not in actual:
                raise ShapeMismatchError(f"Column '{bound}' does not exist on {entity}")
            if not declared.column_type.accepts(actual[bound]):
                raise ShapeMismatchError(
                    f"Column '{bound}' on {entity} is {actual[bound].value}; "
                    f"metric '{metric_name}' expects {declared.column_type.value} for '{declared.name}'"
                )
