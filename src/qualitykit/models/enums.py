"""
Enum definitions for data quality monitoring models.

This module contains all enumeration types used throughout the monitoring engine.
"""

import operator
from enum import Enum
from typing import Any, Callable, Dict, Optional


class ColumnType(str, Enum):
    """Logical column types used to declare a metric's input shape."""
    NUMBER = "NUMBER"
    VARCHAR = "VARCHAR"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    ANY = "ANY"  # Accepts any column type

    def accepts(self, actual: "ColumnType") -> bool:
        """Whether a column of type ``actual`` satisfies a declaration of this type."""
        return self == ColumnType.ANY or self == actual


# Warehouse type names (Snowflake/Databricks spellings) to logical column types
_TYPE_ALIASES: Dict[str, ColumnType] = {
    "NUMBER": ColumnType.NUMBER,
    "NUMERIC": ColumnType.NUMBER,
    "DECIMAL": ColumnType.NUMBER,
    "INT": ColumnType.NUMBER,
    "INTEGER": ColumnType.NUMBER,
    "BIGINT": ColumnType.NUMBER,
    "LONG": ColumnType.NUMBER,
    "SHORT": ColumnType.NUMBER,
    "SMALLINT": ColumnType.NUMBER,
    "TINYINT": ColumnType.NUMBER,
    "BYTE": ColumnType.NUMBER,
    "FLOAT": ColumnType.NUMBER,
    "DOUBLE": ColumnType.NUMBER,
    "REAL": ColumnType.NUMBER,
    "VARCHAR": ColumnType.VARCHAR,
    "STRING": ColumnType.VARCHAR,
    "TEXT": ColumnType.VARCHAR,
    "CHAR": ColumnType.VARCHAR,
    "BOOLEAN": ColumnType.BOOLEAN,
    "BOOL": ColumnType.BOOLEAN,
    "DATE": ColumnType.DATE,
    "TIMESTAMP": ColumnType.TIMESTAMP,
    "TIMESTAMP_NTZ": ColumnType.TIMESTAMP,
    "TIMESTAMP_LTZ": ColumnType.TIMESTAMP,
    "TIMESTAMP_TZ": ColumnType.TIMESTAMP,
    "DATETIME": ColumnType.TIMESTAMP,
}


def normalize_column_type(value: Any) -> ColumnType:
    """
    Convert a warehouse type name or ColumnType into a ColumnType.

    Parameterised names such as ``DECIMAL(10,2)`` or ``VARCHAR(255)`` are
    reduced to their base name first.

    Raises:
        ValueError: If the type name is not recognised
    """
    if isinstance(value, ColumnType):
        return value
    name = str(getattr(value, "value", value)).strip().upper()
    base = name.split("(", 1)[0].strip()
    if base in _TYPE_ALIASES:
        return _TYPE_ALIASES[base]
    raise ValueError(f"Unknown column type '{value}'")


class Severity(str, Enum):
    """Severity of a metric result, ordered OK < WARNING < CRITICAL."""
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.OK: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class ComparisonOperator(str, Enum):
    """Comparison used by severity rules and alert thresholds."""
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "="
    NE = "!="

    def compare(self, value: Optional[float], threshold: float) -> bool:
        """
        Compare a value to a threshold.

        NULL values never satisfy a comparison.
        """
        if value is None:
            return False
        return _OPERATORS[self](value, threshold)

    @classmethod
    def parse(cls, value: Any) -> "ComparisonOperator":
        """Parse an operator symbol or name (e.g. '>', 'GT', '==')."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        if text == "==":
            return cls.EQ
        if text == "<>":
            return cls.NE
        for member in cls:
            if text in (member.value, member.name):
                return member
        raise ValueError(f"Unknown comparison operator '{value}'")


_OPERATORS: Dict[ComparisonOperator, Callable[[Any, Any], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.LE: operator.le,
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
}


class MatchType(str, Enum):
    """How a severity rule's pattern is matched against a metric name."""
    EXACT = "EXACT"
    PREFIX = "PREFIX"
    SUFFIX = "SUFFIX"
    CONTAINS = "CONTAINS"


class ScheduleState(str, Enum):
    """Lifecycle of an entity's metric schedule."""
    UNSCHEDULED = "UNSCHEDULED"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class AlertState(str, Enum):
    """Lifecycle of an alert rule. Suspended rules are evaluated but never notify."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class TriggerMode(str, Enum):
    """
    Repeat behaviour of an alert rule while its condition persists.

    LEVEL notifies on every tick while the condition holds.
    EDGE notifies once and re-arms only after the condition clears.
    """
    LEVEL = "LEVEL"
    EDGE = "EDGE"


class ChannelType(str, Enum):
    """Outbound notification channels."""
    EMAIL = "EMAIL"
    TICKET = "TICKET"


class IssueType(str, Enum):
    """Ticket issue types accepted by the ticket channel."""
    BUG = "Bug"
    TASK = "Task"
    STORY = "Story"
    INCIDENT = "Incident"


class Priority(str, Enum):
    """Ticket priorities accepted by the ticket channel."""
    LOWEST = "Lowest"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    HIGHEST = "Highest"
    CRITICAL = "Critical"


class EvaluationStatus(str, Enum):
    """Outcome of one scheduled evaluation of a binding."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # A prior evaluation of the binding was still in flight
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"
