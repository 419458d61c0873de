"""Symbolic Jacobians of ordered assignment lists.

Derivatives are propagated through intermediate assignments with the chain
rule, so expressions stay in terms of the intermediate symbols rather than
being fully expanded.
"""

from typing import Dict, Iterable, List, Sequence, Tuple

import sympy as sp

from cujac.model.sym_utils import topological_sort


def propagate_gradients(
    equations: Iterable[Tuple[sp.Symbol, sp.Expr]],
    inputs: Sequence[sp.Symbol],
    partials_cache: Dict[Tuple[sp.Symbol, sp.Symbol], sp.Expr] = None,
) -> Dict[sp.Symbol, List[sp.Expr]]:
    """Return the gradient of every assigned symbol wrt ``inputs``.

    Parameters
    ----------
    equations
        ``(lhs, rhs)`` assignments. They are sorted topologically first.
    inputs
        Symbols to differentiate with respect to, in order.
    partials_cache
        Optional mapping reused across calls to avoid recomputing
        ``d rhs(lhs) / d other`` partial derivatives.

    Returns
    -------
    dict
        Mapping from each left-hand side to its list of partial derivatives
        with respect to ``inputs``.
    """
    if partials_cache is None:
        partials_cache = {}
    ordered = topological_sort(list(equations))
    assigned = {lhs for lhs, _ in ordered}
    num_in = len(inputs)
    gradients: Dict[sp.Symbol, List[sp.Expr]] = {}

    for sym, expr in ordered:
        grad = [sp.diff(expr, in_sym) for in_sym in inputs]
        for other_sym in sorted(expr.free_symbols & assigned, key=str):
            other_grad = gradients[other_sym]
            if all(g == 0 for g in other_grad):
                continue
            key = (sym, other_sym)
            if key not in partials_cache:
                partials_cache[key] = sp.diff(expr, other_sym)
            partial = partials_cache[key]
            if partial == 0:
                continue
            for k in range(num_in):
                if other_grad[k] != 0:
                    grad[k] = grad[k] + partial * other_grad[k]
        gradients[sym] = grad

    return gradients


def generate_jacobian(
    equations: Iterable[Tuple[sp.Symbol, sp.Expr]],
    inputs: Sequence[sp.Symbol],
    outputs: Sequence[sp.Symbol],
    partials_cache: Dict[Tuple[sp.Symbol, sp.Symbol], sp.Expr] = None,
) -> sp.Matrix:
    """Return the symbolic Jacobian ``d outputs / d inputs``.

    Parameters
    ----------
    equations
        Full set of intermediate and output assignments.
    inputs
        Input symbols in column order.
    outputs
        Output symbols in row order.
    partials_cache
        Optional cache shared between calls, see :func:`propagate_gradients`.

    Returns
    -------
    sympy.Matrix
        ``len(outputs) x len(inputs)`` matrix whose entries may reference the
        intermediate symbols of ``equations``.
    """
    gradients = propagate_gradients(equations, inputs, partials_cache)
    jac = sp.zeros(len(outputs), len(inputs))
    for i, out_sym in enumerate(outputs):
        for j, value in enumerate(gradients[out_sym]):
            jac[i, j] = value
    return jac
