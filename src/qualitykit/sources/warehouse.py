"""
Warehouse-backed entity source.

Describes entities through the Unity Catalog tables API and reads rows
through the SQL statement execution API of a Databricks SQL warehouse.
Transient SDK errors are retried with exponential backoff; missing or
forbidden entities surface as DataUnavailableError so the scheduler retries
them on the next tick.
"""

import logging
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from databricks.sdk import WorkspaceClient
from databricks.sdk.errors import (
    BadRequest,
    InternalError,
    InvalidParameterValue,
    NotFound,
    PermissionDenied,
    ResourceDoesNotExist,
    ResourceExhausted,
    TemporarilyUnavailable,
    Unauthenticated,
)
from databricks.sdk.service.sql import StatementState

from qualitykit.errors import DataUnavailableError
from qualitykit.models import ColumnSpec, ColumnType, normalize_column_type, split_name

from .base import EntitySource

logger = logging.getLogger(__name__)

_TERMINAL_STATES = (StatementState.SUCCEEDED, StatementState.FAILED,
                    StatementState.CANCELED, StatementState.CLOSED)


def quote_identifier(entity: str) -> str:
    """Backtick-quote each part of a dotted identifier."""
    return ".".join(f"`{part.replace('`', '``')}`" for part in split_name(entity))


def _to_column_type(type_name: Any, type_text: Optional[str] = None) -> ColumnType:
    for candidate in (type_name, type_text):
        if candidate is None:
            continue
        try:
            return normalize_column_type(candidate)
        except ValueError:
            continue
    # Complex types (ARRAY, MAP, STRUCT, ...) only satisfy ANY declarations
    return ColumnType.ANY


def _convert_value(raw: Optional[str], column_type: ColumnType) -> Any:
    """Convert a JSON_ARRAY string cell to a Python value."""
    if raw is None:
        return None
    if column_type == ColumnType.NUMBER:
        text = raw.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        return float(text)
    if column_type == ColumnType.BOOLEAN:
        return raw.strip().lower() == "true"
    if column_type == ColumnType.DATE:
        return date.fromisoformat(raw.strip())
    if column_type == ColumnType.TIMESTAMP:
        text = raw.strip().replace("Z", "+00:00")
        return datetime.fromisoformat(text)
    return raw


class WarehouseEntitySource(EntitySource):
    """
    Entity source reading Unity Catalog tables through a SQL warehouse.

    Entities are three-level names (catalog.schema.table).

    Example:
        source = WarehouseEntitySource(WorkspaceClient(), warehouse_id="abc123")
        source.describe("insurance.claims.claims")
    """

    def __init__(
        self,
        client: WorkspaceClient,
        warehouse_id: str,
        max_retries: int = 3,
        wait_timeout: str = "30s",
        poll_interval_seconds: float = 1.0,
        max_polls: int = 300
    ):
        """
        Initialize the source.

        Args:
            client: Databricks SDK client
            warehouse_id: SQL warehouse used to read rows
            max_retries: Maximum retry attempts for transient failures
            wait_timeout: Synchronous wait passed to the statement execution API
            poll_interval_seconds: Delay between status polls for long-running statements
            max_polls: Polls before a running statement is treated as unavailable
        """
        super().__init__()
        self.client = client
        self.warehouse_id = warehouse_id
        self.max_retries = max_retries
        self.wait_timeout = wait_timeout
        self.poll_interval_seconds = poll_interval_seconds
        self.max_polls = max_polls

    def describe(self, entity: str) -> List[ColumnSpec]:
        table = self._call(entity, self.client.tables.get, entity)
        columns = table.columns or []
        if not columns:
            raise DataUnavailableError(entity, "no column metadata")
        return [
            ColumnSpec(name=c.name, column_type=_to_column_type(c.type_name, c.type_text))
            for c in columns
        ]

    def read(self, entity: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        wanted = [c.lower() for c in columns]
        types = {spec.name: spec.column_type for spec in self.describe(entity)}
        missing = [c for c in wanted if c not in types]
        if missing:
            raise DataUnavailableError(entity, f"unknown columns {missing}")

        # Zero-column reads (row counts) still need one row per table row
        select_list = ", ".join(f"`{c}`" for c in wanted) if wanted else "1"
        statement = f"SELECT {select_list} FROM {quote_identifier(entity)}"
        logger.debug(f"Reading {entity}: {statement}")

        response = self._call(
            entity,
            self.client.statement_execution.execute_statement,
            statement=statement,
            warehouse_id=self.warehouse_id,
            wait_timeout=self.wait_timeout,
        )
        response = self._wait_for_completion(entity, response)

        rows: List[Dict[str, Any]] = []
        for raw in self._iter_data(entity, response):
            if wanted:
                rows.append({c: _convert_value(v, types[c]) for c, v in zip(wanted, raw)})
            else:
                rows.append({})
        return rows

    # =========================================================================
    # STATEMENT EXECUTION
    # =========================================================================

    def _wait_for_completion(self, entity: str, response: Any) -> Any:
        polls = 0
        while response.status is not None and response.status.state not in _TERMINAL_STATES:
            if polls >= self.max_polls:
                raise DataUnavailableError(entity, f"statement {response.statement_id} did not finish")
            time.sleep(self.poll_interval_seconds)
            polls += 1
            response = self._call(entity, self.client.statement_execution.get_statement, response.statement_id)

        state = response.status.state if response.status else None
        if state != StatementState.SUCCEEDED:
            error = response.status.error if response.status else None
            reason = error.message if error and error.message else f"statement {state}"
            raise DataUnavailableError(entity, reason)
        return response

    def _iter_data(self, entity: str, response: Any):
        result = response.result
        while result is not None:
            for raw in result.data_array or []:
                yield raw
            if result.next_chunk_index is None:
                break
            result = self._call(
                entity,
                self.client.statement_execution.get_statement_result_chunk_n,
                response.statement_id,
                result.next_chunk_index,
            )

    def _call(self, entity: str, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run an SDK call with retries, mapping failures to DataUnavailableError."""
        try:
            return self._execute_with_retry(operation, *args, **kwargs)
        except (NotFound, ResourceDoesNotExist) as e:
            raise DataUnavailableError(entity, f"not found: {e}") from e
        except (PermissionDenied, Unauthenticated) as e:
            raise DataUnavailableError(entity, f"access denied: {e}") from e
        except (InvalidParameterValue, BadRequest) as e:
            raise DataUnavailableError(entity, f"invalid request: {e}") from e
        except (TemporarilyUnavailable, InternalError, ResourceExhausted) as e:
            raise DataUnavailableError(entity, f"warehouse unavailable: {e}") from e

    def _execute_with_retry(self, operation: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        last_error = None

        for attempt in range(self.max_retries):
            try:
                return operation(*args, **kwargs)
            except (TemporarilyUnavailable, InternalError, ResourceExhausted) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.warning(
                        f"Attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {wait_time} seconds..."
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(f"All {self.max_retries} attempts failed")

        if last_error:
            raise last_error
