"""
Deterministic computation sublanguage for metric definitions.

Metric computations are built from row expressions and a single aggregate:

    from qualitykit.expressions import col, count_where, percent_where

    exceeding = count_where(col("claim_amount") > col("policy_coverage_limit"))
    fraud_rate = percent_where(col("fraud_flag").eq(True))

Row expressions follow SQL three-valued logic: comparisons involving NULL are
unknown, and unknown rows are filtered out exactly like false ones. Every node
reports the non-deterministic references it contains, which is how the
registry rejects definitions that read the wall clock (``current_timestamp()``).

Column names are case-insensitive and normalized to lower case.
"""

import re
from typing import Any, Callable, List, Mapping, Optional, Sequence, Set, Tuple

from qualitykit.models.base import utc_now

Row = Mapping[str, Any]
Relation = Sequence[Row]


# =============================================================================
# ROW EXPRESSIONS
# =============================================================================

class Expr:
    """Base class for row-level expressions."""

    def evaluate(self, row: Row) -> Any:
        raise NotImplementedError(f"{self.__class__.__name__} must implement evaluate")

    def children(self) -> Tuple["Expr", ...]:
        return ()

    def nondeterministic_references(self) -> Set[str]:
        refs: Set[str] = set()
        for child in self.children():
            refs |= child.nondeterministic_references()
        return refs

    def columns(self) -> Set[str]:
        """Column names referenced by this expression."""
        names: Set[str] = set()
        for child in self.children():
            names |= child.columns()
        return names

    # Comparisons
    def __gt__(self, other: Any) -> "Compare":
        return Compare(">", self, _wrap(other))

    def __ge__(self, other: Any) -> "Compare":
        return Compare(">=", self, _wrap(other))

    def __lt__(self, other: Any) -> "Compare":
        return Compare("<", self, _wrap(other))

    def __le__(self, other: Any) -> "Compare":
        return Compare("<=", self, _wrap(other))

    def eq(self, other: Any) -> "Compare":
        return Compare("=", self, _wrap(other))

    def ne(self, other: Any) -> "Compare":
        return Compare("!=", self, _wrap(other))

    # == and != build comparisons like eq() and ne(); hashing stays by identity
    def __eq__(self, other: Any) -> "Compare":  # type: ignore[override]
        return self.eq(other)

    def __ne__(self, other: Any) -> "Compare":  # type: ignore[override]
        return self.ne(other)

    __hash__ = object.__hash__

    # Arithmetic
    def __add__(self, other: Any) -> "Arithmetic":
        return Arithmetic("+", self, _wrap(other))

    def __radd__(self, other: Any) -> "Arithmetic":
        return Arithmetic("+", _wrap(other), self)

    def __sub__(self, other: Any) -> "Arithmetic":
        return Arithmetic("-", self, _wrap(other))

    def __rsub__(self, other: Any) -> "Arithmetic":
        return Arithmetic("-", _wrap(other), self)

    def __mul__(self, other: Any) -> "Arithmetic":
        return Arithmetic("*", self, _wrap(other))

    def __rmul__(self, other: Any) -> "Arithmetic":
        return Arithmetic("*", _wrap(other), self)

    def __truediv__(self, other: Any) -> "Arithmetic":
        return Arithmetic("/", self, _wrap(other))

    def __rtruediv__(self, other: Any) -> "Arithmetic":
        return Arithmetic("/", _wrap(other), self)

    # Boolean logic
    def __and__(self, other: Any) -> "And":
        return And(self, _wrap(other))

    def __or__(self, other: Any) -> "Or":
        return Or(self, _wrap(other))

    def __invert__(self) -> "Not":
        return Not(self)

    # Predicates
    def is_null(self) -> "IsNull":
        return IsNull(self)

    def is_not_null(self) -> "Not":
        return Not(IsNull(self))

    def matches(self, pattern: str) -> "Matches":
        return Matches(self, pattern)


class Col(Expr):
    """Reference to a column of the current row."""

    def __init__(self, name: str):
        if not name or not name.strip():
            raise ValueError("Column name must not be empty")
        self.name = name.strip().lower()

    def evaluate(self, row: Row) -> Any:
        return row[self.name]

    def columns(self) -> Set[str]:
        return {self.name}

    def __repr__(self) -> str:
        return f"col({self.name!r})"


class Lit(Expr):
    """Literal value."""

    def __init__(self, value: Any):
        self.value = value

    def evaluate(self, row: Row) -> Any:
        return self.value

    def __repr__(self) -> str:
        return f"lit({self.value!r})"


class CurrentTimestamp(Expr):
    """Wall-clock time. Never accepted in a metric definition."""

    def evaluate(self, row: Row) -> Any:
        return utc_now()

    def nondeterministic_references(self) -> Set[str]:
        return {"current_timestamp()"}

    def __repr__(self) -> str:
        return "current_timestamp()"


_COMPARATORS: Mapping[str, Callable[[Any, Any], bool]] = {
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    "=": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}


class Compare(Expr):
    """Binary comparison; unknown when either side is NULL."""

    def __init__(self, op: str, left: Expr, right: Expr):
        self.op = op
        self.left = left
        self.right = right

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, row: Row) -> Optional[bool]:
        a = self.left.evaluate(row)
        b = self.right.evaluate(row)
        if a is None or b is None:
            return None
        return _COMPARATORS[self.op](a, b)

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op} {self.right!r})"


class Arithmetic(Expr):
    """Binary arithmetic; NULL when either side is NULL. Division by zero raises."""

    def __init__(self, op: str, left: Expr, right: Expr):
        self.op = op
        self.left = left
        self.right = right

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, row: Row) -> Any:
        a = self.left.evaluate(row)
        b = self.right.evaluate(row)
        if a is None or b is None:
            return None
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        if b == 0:
            raise ZeroDivisionError(f"Division by zero in {self!r}")
        return a / b

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op} {self.right!r})"


class And(Expr):
    def __init__(self, left: Expr, right: Expr):
        self.left = left
        self.right = right

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, row: Row) -> Optional[bool]:
        a = self.left.evaluate(row)
        b = self.right.evaluate(row)
        if a is False or b is False:
            return False
        if a is None or b is None:
            return None
        return bool(a and b)

    def __repr__(self) -> str:
        return f"({self.left!r} AND {self.right!r})"


class Or(Expr):
    def __init__(self, left: Expr, right: Expr):
        self.left = left
        self.right = right

    def children(self) -> Tuple[Expr, ...]:
        return (self.left, self.right)

    def evaluate(self, row: Row) -> Optional[bool]:
        a = self.left.evaluate(row)
        b = self.right.evaluate(row)
        if a is True or b is True:
            return True
        if a is None or b is None:
            return None
        return False

    def __repr__(self) -> str:
        return f"({self.left!r} OR {self.right!r})"


class Not(Expr):
    def __init__(self, operand: Expr):
        self.operand = operand

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, row: Row) -> Optional[bool]:
        value = self.operand.evaluate(row)
        if value is None:
            return None
        return not value

    def __repr__(self) -> str:
        return f"NOT {self.operand!r}"


class IsNull(Expr):
    def __init__(self, operand: Expr):
        self.operand = operand

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, row: Row) -> bool:
        return self.operand.evaluate(row) is None

    def __repr__(self) -> str:
        return f"{self.operand!r} IS NULL"


class Matches(Expr):
    """Full-string regular expression match (REGEXP_LIKE semantics)."""

    def __init__(self, operand: Expr, pattern: str):
        self.operand = operand
        self.pattern = pattern
        self._regex = re.compile(pattern)

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand,)

    def evaluate(self, row: Row) -> Optional[bool]:
        value = self.operand.evaluate(row)
        if value is None:
            return None
        return self._regex.fullmatch(str(value)) is not None

    def __repr__(self) -> str:
        return f"REGEXP_LIKE({self.operand!r}, {self.pattern!r})"


class Coalesce(Expr):
    def __init__(self, operand: Expr, default: Expr):
        self.operand = operand
        self.default = default

    def children(self) -> Tuple[Expr, ...]:
        return (self.operand, self.default)

    def evaluate(self, row: Row) -> Any:
        value = self.operand.evaluate(row)
        return self.default.evaluate(row) if value is None else value

    def __repr__(self) -> str:
        return f"COALESCE({self.operand!r}, {self.default!r})"


def _wrap(value: Any) -> Expr:
    return value if isinstance(value, Expr) else Lit(value)


def _require_predicate(function: str, predicate: Any) -> Expr:
    if not isinstance(predicate, Expr):
        raise TypeError(
            f"{function}() needs a row expression such as col('fraud_flag').eq(True), "
            f"got {type(predicate).__name__}: {predicate!r}"
        )
    return predicate


def col(name: str) -> Col:
    """Reference a column by name."""
    return Col(name)


def lit(value: Any) -> Lit:
    """Literal value."""
    return Lit(value)


def coalesce(expr: Any, default: Any) -> Coalesce:
    """First non-NULL of ``expr`` and ``default``."""
    return Coalesce(_wrap(expr), _wrap(default))


def current_timestamp() -> CurrentTimestamp:
    """Wall-clock time; definitions using it are rejected as non-deterministic."""
    return CurrentTimestamp()


# =============================================================================
# AGGREGATES
# =============================================================================

class Aggregate:
    """
    Reduces one or two input relations to a single number or None.

    Aggregates are callables: ``aggregate(rows)`` for single-relation metrics
    and ``aggregate(rows, reference_rows)`` for two-relation metrics.
    """

    arity = 1

    def __call__(self, *relations: Relation) -> Optional[float]:
        if len(relations) != self.arity:
            raise ValueError(
                f"{self.__class__.__name__} expects {self.arity} relation(s), got {len(relations)}"
            )
        return self.compute(*relations)

    def compute(self, *relations: Relation) -> Optional[float]:
        raise NotImplementedError(f"{self.__class__.__name__} must implement compute")

    def expressions(self) -> List[Expr]:
        return []

    def nondeterministic_references(self) -> Set[str]:
        refs: Set[str] = set()
        for expr in self.expressions():
            refs |= expr.nondeterministic_references()
        return refs

    def referenced_columns(self) -> List[Tuple[int, str]]:
        """(relation index, column name) pairs this aggregate reads."""
        names: Set[str] = set()
        for expr in self.expressions():
            names |= expr.columns()
        return [(0, name) for name in sorted(names)]


class RowCount(Aggregate):
    def compute(self, rows: Relation) -> float:
        return len(rows)

    def __repr__(self) -> str:
        return "row_count()"


class CountWhere(Aggregate):
    def __init__(self, predicate: Expr):
        self.predicate = _require_predicate("count_where", predicate)

    def expressions(self) -> List[Expr]:
        return [self.predicate]

    def compute(self, rows: Relation) -> float:
        return sum(1 for row in rows if self.predicate.evaluate(row) is True)

    def __repr__(self) -> str:
        return f"count_where({self.predicate!r})"


class PercentWhere(Aggregate):
    """Percentage of rows matching a predicate, rounded; None for empty input."""

    def __init__(self, predicate: Expr, digits: int = 2):
        self.predicate = _require_predicate("percent_where", predicate)
        self.digits = digits

    def expressions(self) -> List[Expr]:
        return [self.predicate]

    def compute(self, rows: Relation) -> Optional[float]:
        if not rows:
            return None
        matched = sum(1 for row in rows if self.predicate.evaluate(row) is True)
        return round(matched * 100.0 / len(rows), self.digits)

    def __repr__(self) -> str:
        return f"percent_where({self.predicate!r}, digits={self.digits})"


class NullCount(Aggregate):
    def __init__(self, column: str):
        self.column = Col(column)

    def expressions(self) -> List[Expr]:
        return [self.column]

    def compute(self, rows: Relation) -> float:
        return sum(1 for row in rows if self.column.evaluate(row) is None)

    def __repr__(self) -> str:
        return f"null_count({self.column.name!r})"


class DuplicateCount(Aggregate):
    """Number of non-NULL values that repeat an earlier value."""

    def __init__(self, column: str):
        self.column = Col(column)

    def expressions(self) -> List[Expr]:
        return [self.column]

    def compute(self, rows: Relation) -> float:
        values = [self.column.evaluate(row) for row in rows]
        non_null = [v for v in values if v is not None]
        return len(non_null) - len(set(non_null))

    def __repr__(self) -> str:
        return f"duplicate_count({self.column.name!r})"


class UniqueCount(Aggregate):
    """Number of distinct non-NULL values."""

    def __init__(self, column: str):
        self.column = Col(column)

    def expressions(self) -> List[Expr]:
        return [self.column]

    def compute(self, rows: Relation) -> float:
        return len({self.column.evaluate(row) for row in rows} - {None})

    def __repr__(self) -> str:
        return f"unique_count({self.column.name!r})"


class OrphanCount(Aggregate):
    """
    Referential integrity check across two relations.

    Counts rows of the first relation whose non-NULL key is absent from the
    non-NULL keys of the second relation (``NOT IN`` semantics).
    """

    arity = 2

    def __init__(self, column: str, reference_column: Optional[str] = None):
        self.column = Col(column)
        self.reference_column = Col(reference_column or column)

    def expressions(self) -> List[Expr]:
        return [self.column, self.reference_column]

    def referenced_columns(self) -> List[Tuple[int, str]]:
        return [(0, self.column.name), (1, self.reference_column.name)]

    def compute(self, rows: Relation, reference_rows: Relation) -> float:
        known = {self.reference_column.evaluate(row) for row in reference_rows} - {None}
        return sum(
            1 for row in rows
            if self.column.evaluate(row) is not None and self.column.evaluate(row) not in known
        )

    def __repr__(self) -> str:
        return f"orphan_count({self.column.name!r}, {self.reference_column.name!r})"


def row_count() -> RowCount:
    return RowCount()


def count_where(predicate: Expr) -> CountWhere:
    return CountWhere(predicate)


def percent_where(predicate: Expr, digits: int = 2) -> PercentWhere:
    return PercentWhere(predicate, digits)


def null_count(column: str) -> NullCount:
    return NullCount(column)


def duplicate_count(column: str) -> DuplicateCount:
    return DuplicateCount(column)


def unique_count(column: str) -> UniqueCount:
    return UniqueCount(column)


def orphan_count(column: str, reference_column: Optional[str] = None) -> OrphanCount:
    return OrphanCount(column, reference_column)
