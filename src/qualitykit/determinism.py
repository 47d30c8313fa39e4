"""
Static determinism checks for metric computations.

A metric must be a pure function of its input rows. Sublanguage aggregates
report their own non-deterministic references; plain Python callables are
inspected at the bytecode level (including nested lambdas and
comprehensions) for names that read the clock, randomness, the process
environment or external I/O. Helper functions the computation reaches
through globals, default arguments, closures or functools.partial are
inspected the same way.
"""

import dis
import functools
import inspect
import logging
from types import CodeType, ModuleType
from typing import Any, Callable, Iterator, Optional, Set

from qualitykit.errors import NonDeterministicMetricError

logger = logging.getLogger(__name__)

# Global or attribute names that make a computation depend on external state
NONDETERMINISTIC_NAMES = frozenset({
    # Wall-clock time
    "now", "utcnow", "today", "time", "time_ns", "monotonic", "perf_counter",
    "localtime", "gmtime", "current_timestamp", "current_date", "utc_now",
    # Randomness
    "random", "randint", "uniform", "choice", "shuffle", "sample",
    "uuid1", "uuid4", "urandom", "token_hex", "token_bytes",
    # Process environment and I/O
    "getenv", "environ", "open", "input", "urlopen", "request",
})

_NAME_OPNAMES = frozenset({
    "LOAD_GLOBAL", "LOAD_NAME", "LOAD_ATTR", "LOAD_METHOD", "LOAD_DEREF",
    "IMPORT_NAME", "IMPORT_FROM",
})


def _iter_code(code: CodeType) -> Iterator[CodeType]:
    yield code
    for const in code.co_consts:
        if isinstance(const, CodeType):
            yield from _iter_code(const)


def _label(reference: str, via: Optional[str]) -> str:
    return reference if via is None else f"{reference} (via {via})"


def _collect(obj: Any, via: Optional[str], visited: Set[int], found: Set[str]) -> None:
    """
    Record non-deterministic references reachable from ``obj``.

    Follows functions reached through globals, default arguments, closure
    cells and functools.partial. Classes and modules are not followed; their
    use shows up as attribute names in the caller's bytecode.
    """
    if id(obj) in visited or isinstance(obj, (type, ModuleType)):
        return
    visited.add(id(obj))

    if isinstance(obj, functools.partial):
        for target in (obj.func, *obj.args, *obj.keywords.values()):
            _collect(target, via, visited, found)
        return

    method = getattr(obj, "nondeterministic_references", None)
    if callable(method):
        found.update(_label(ref, via) for ref in method())
        return

    if not callable(obj):
        return

    if inspect.isbuiltin(obj) or inspect.ismethoddescriptor(obj):
        name = getattr(obj, "__name__", "")
        if name in NONDETERMINISTIC_NAMES:
            found.add(_label(getattr(obj, "__qualname__", name), via))
        return

    fn = obj
    if inspect.ismethod(fn):
        fn = fn.__func__
    elif not inspect.isfunction(fn):
        # Callable objects are inspected through their __call__
        call = getattr(fn, "__call__", None)
        fn = getattr(call, "__func__", call)
    if not inspect.isfunction(fn):
        # C extensions cannot be inspected
        logger.debug(f"Cannot inspect {obj!r}; treating it as opaque")
        return
    visited.add(id(fn))

    scope = via or fn.__qualname__
    namespace = fn.__globals__
    for block in _iter_code(fn.__code__):
        for instruction in dis.get_instructions(block):
            name = instruction.argval
            if instruction.opname not in _NAME_OPNAMES or not isinstance(name, str):
                continue
            if any(part in NONDETERMINISTIC_NAMES for part in name.split(".")):
                found.add(_label(name, via))
            if instruction.opname in ("LOAD_GLOBAL", "LOAD_NAME") and name in namespace:
                _collect(namespace[name], name, visited, found)

    reachable = list(fn.__defaults__ or ()) + list((fn.__kwdefaults__ or {}).values())
    for cell in fn.__closure__ or ():
        try:
            reachable.append(cell.cell_contents)
        except ValueError:
            # Empty cell
            continue
    for value in reachable:
        _collect(value, scope, visited, found)


def _inspect_callable(fn: Callable[..., Any]) -> Set[str]:
    found: Set[str] = set()
    _collect(fn, None, set(), found)
    return found


def find_nondeterministic_references(compute: Any) -> Set[str]:
    """
    Find references to external state in a metric computation.

    Args:
        compute: A sublanguage aggregate or a plain Python callable

    Returns:
        Set of offending references (empty if the computation is deterministic)
    """
    method = getattr(compute, "nondeterministic_references", None)
    if callable(method):
        return set(method())
    if callable(compute):
        return _inspect_callable(compute)
    raise TypeError(f"Metric computation must be callable, got {type(compute).__name__}")


def ensure_deterministic(metric_name: str, compute: Any) -> None:
    """
    Reject a computation that depends on wall-clock time or external state.

    Raises:
        NonDeterministicMetricError: If any non-deterministic reference is found
    """
    references = find_nondeterministic_references(compute)
    if references:
        raise NonDeterministicMetricError(metric_name, references)
