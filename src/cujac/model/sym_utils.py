"""Utility helpers for ordering, reducing and hashing symbolic assignments."""

import heapq
from hashlib import sha256
from typing import Dict, Iterable, List, Optional, Tuple, Union

import sympy as sp

Assignment = Tuple[sp.Symbol, sp.Expr]


def topological_sort(
    assignments: Union[List[Assignment], Dict[sp.Symbol, sp.Expr]],
) -> List[Assignment]:
    """Return assignments sorted by their dependency order.

    Parameters
    ----------
    assignments
        Either an iterable of ``(symbol, expression)`` pairs or a mapping from
        each symbol to its defining expression.

    Returns
    -------
    list[tuple[sympy.Symbol, sympy.Expr]]
        Assignments ordered such that dependencies are defined before use.
        Among assignments whose dependencies are satisfied, the one that
        appeared first in the input is emitted first, so the result does not
        depend on symbol hashing.

    Raises
    ------
    ValueError
        Raised when a circular dependency prevents topological sorting.

    Notes
    -----
    Kahn's algorithm with a priority queue keyed on input position.
    """
    if isinstance(assignments, dict):
        pairs = list(assignments.items())
    else:
        pairs = list(assignments)

    sym_map = {sym: expr for sym, expr in pairs}
    position = {sym: idx for idx, (sym, _) in enumerate(pairs)}

    incoming_edges = {}
    dependents = {sym: [] for sym in sym_map}
    for sym, expr in sym_map.items():
        deps = expr.free_symbols & sym_map.keys()
        incoming_edges[sym] = len(deps)
        for dep in deps:
            dependents[dep].append(sym)

    ready = [(position[sym], sym) for sym, count in incoming_edges.items()
             if count == 0]
    heapq.heapify(ready)
    result = []

    while ready:
        _, defined_symbol = heapq.heappop(ready)
        result.append((defined_symbol, sym_map[defined_symbol]))
        for dependent in dependents[defined_symbol]:
            incoming_edges[dependent] -= 1
            if incoming_edges[dependent] == 0:
                heapq.heappush(ready, (position[dependent], dependent))

    if len(result) != len(sym_map):
        remaining = sorted(
            str(sym) for sym in sym_map.keys() - {sym for sym, _ in result}
        )
        raise ValueError(
            f"Circular dependency detected. Remaining symbols: {remaining}"
        )

    return result


def cse_and_stack(
    equations: Iterable[Assignment],
    symbol: Optional[str] = None,
) -> List[Assignment]:
    """Perform common subexpression elimination and stack the results.

    Parameters
    ----------
    equations
        ``(symbol, expression)`` pairs.
    symbol
        Prefix for the generated common-subexpression symbols. Defaults to
        ``"_cse"``.

    Returns
    -------
    list[tuple[sympy.Symbol, sympy.Expr]]
        Original assignments rewritten in terms of CSE symbols together with
        the CSE definitions, topologically sorted.
    """
    if symbol is None:
        symbol = "_cse"
    equations = list(equations)
    expr_labels = [lhs for lhs, _ in equations]
    all_rhs = [rhs for _, rhs in equations]

    cse_exprs, reduced_exprs = sp.cse(
        all_rhs,
        symbols=sp.numbered_symbols(symbol, real=True),
    )
    expressions = list(cse_exprs) + list(zip(expr_labels, reduced_exprs))
    return topological_sort(expressions)


def prune_unused_assignments(
    expressions: Iterable[Assignment],
    output_symbols: Iterable[sp.Symbol],
) -> List[Assignment]:
    """Remove assignments that do not contribute to ``output_symbols``.

    The list must be topologically sorted; relative order of the kept
    assignments is preserved.
    """
    exprs = list(expressions)
    all_lhs = {lhs for lhs, _ in exprs}
    used = set(output_symbols) & all_lhs
    kept = []

    for lhs, rhs in reversed(exprs):
        if lhs in used:
            kept.append((lhs, rhs))
            used.update(rhs.free_symbols & all_lhs)
    kept.reverse()
    return kept


def hash_model_definition(
    equations: Iterable[Assignment],
    inputs: Iterable[sp.Symbol],
    outputs: Iterable[sp.Symbol],
) -> str:
    """Generate a deterministic hash for a model definition.

    Equations are sorted by left-hand side name so that the same model
    produces the same hash regardless of the order it was written in. The
    input and output orderings are part of the hash since they determine
    the generated memory layout.
    """
    sorted_eqs = sorted(equations, key=lambda eq: str(eq[0]))
    eq_str = "|".join(f"{lhs}={rhs}" for lhs, rhs in sorted_eqs)
    normalized = "".join(eq_str.split())
    combined = (
        f"eqs:{normalized}"
        f"|in:{','.join(str(s) for s in inputs)}"
        f"|out:{','.join(str(s) for s in outputs)}"
    )
    return sha256(combined.encode("utf-8")).hexdigest()
