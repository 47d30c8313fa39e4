"""
Entity source contract and the in-memory implementation.

Sources are external collaborators: the engine only asks them to describe an
entity's columns and to read the current rows of some of its columns. Sources
that can observe writes notify registered change listeners, which is what
drives trigger-on-write schedules.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from qualitykit.errors import DataUnavailableError
from qualitykit.models import ColumnSpec

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class EntitySource(ABC):
    """Read-only access to the entities the engine measures."""

    def __init__(self):
        self._listeners: List[ChangeListener] = []

    @abstractmethod
    def describe(self, entity: str) -> List[ColumnSpec]:
        """
        Describe an entity's columns.

        Raises:
            DataUnavailableError: If the entity is missing or inaccessible
        """
        pass

    @abstractmethod
    def read(self, entity: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Read the current rows of the given columns.

        Rows are returned as dicts keyed by lower-case column name.

        Raises:
            DataUnavailableError: If the entity or a column is missing or inaccessible
        """
        pass

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked with the entity name after each write."""
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_changed(self, entity: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(entity)
            except Exception as e:
                logger.error(f"Change listener failed for {entity}: {e}", exc_info=True)


class InMemoryEntitySource(EntitySource):
    """
    Entity source backed by Python lists of row dicts.

    Used for tests, demos and for monitoring data already loaded into memory.
    Every write notifies change listeners.
    """

    def __init__(self):
        super().__init__()
        self._schemas: Dict[str, List[ColumnSpec]] = {}
        self._rows: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def create_entity(
        self,
        entity: str,
        columns: Iterable[Any],
        rows: Optional[Iterable[Mapping[str, Any]]] = None
    ) -> None:
        """
        Create (or replace) an entity.

        Args:
            entity: Entity identifier
            columns: ColumnSpecs, (name, type) tuples or names
            rows: Initial rows
        """
        specs = [ColumnSpec.of(c) for c in columns]
        with self._lock:
            self._schemas[entity] = specs
            self._rows[entity] = [self._normalize_row(entity, row) for row in rows or []]
        logger.debug(f"Created entity {entity} with {len(specs)} columns")
        self._notify_changed(entity)

    def write(self, entity: str, rows: Iterable[Mapping[str, Any]], replace: bool = False) -> int:
        """
        Append rows to an entity, or replace its contents.

        Returns:
            Number of rows written
        """
        with self._lock:
            self._require(entity)
            normalized = [self._normalize_row(entity, row) for row in rows]
            if replace:
                self._rows[entity] = normalized
            else:
                self._rows[entity].extend(normalized)
        self._notify_changed(entity)
        return len(normalized)

    def drop_entity(self, entity: str) -> None:
        with self._lock:
            self._require(entity)
            del self._schemas[entity]
            del self._rows[entity]
        logger.debug(f"Dropped entity {entity}")

    def entities(self) -> List[str]:
        with self._lock:
            return sorted(self._schemas)

    def describe(self, entity: str) -> List[ColumnSpec]:
        with self._lock:
            self._require(entity)
            return list(self._schemas[entity])

    def read(self, entity: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        wanted = [c.lower() for c in columns]
        with self._lock:
            self._require(entity)
            known = {spec.name for spec in self._schemas[entity]}
            missing = [c for c in wanted if c not in known]
            if missing:
                raise DataUnavailableError(entity, f"unknown columns {missing}")
            return [{c: row.get(c) for c in wanted} for row in self._rows[entity]]

    def _require(self, entity: str) -> None:
        if entity not in self._schemas:
            raise DataUnavailableError(entity, "entity does not exist")

    def _normalize_row(self, entity: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        known = {spec.name for spec in self._schemas[entity]}
        normalized = {str(k).lower(): v for k, v in row.items()}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise ValueError(f"Row for {entity} has unknown columns {unknown}")
        return normalized
