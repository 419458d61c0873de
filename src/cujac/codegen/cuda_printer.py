"""SymPy printer emitting CUDA C expressions with array substitutions."""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import sympy as sp
from sympy.codegen.ast import float32, real
from sympy.printing.c import C99CodePrinter
from sympy.printing.precedence import PRECEDENCE

from cujac.model.parser import is_atomic_call


class CUDAPrinter(C99CodePrinter):
    """SymPy printer for CUDA device code with symbol substitutions.

    Parameters
    ----------
    symbol_map
        Mapping from symbols to the array element (``Indexed``) or name they
        are stored in.
    precision
        Number of significant digits used for floating-point literals.
    base_type
        ``numpy.float32`` or ``numpy.float64``; single precision selects
        ``f``-suffixed literals and math functions.
    """

    def __init__(
        self,
        symbol_map: Optional[Mapping[sp.Symbol, sp.Basic]] = None,
        precision: int = 17,
        base_type=np.float64,
    ):
        settings = {
            "precision": precision,
            "allow_unknown_functions": True,
        }
        if np.dtype(base_type) == np.dtype(np.float32):
            settings["type_aliases"] = {real: float32}
        super().__init__(settings)
        self.symbol_map = dict(symbol_map or {})

    def _print_Symbol(self, expr):
        """Print Symbol, applying the symbol map if available."""
        if expr in self.symbol_map:
            return self._print(self.symbol_map[expr])
        return super()._print_Symbol(expr)

    def _print_Float(self, flt):
        """Print literals with the configured number of digits."""
        type_ = self.type_aliases.get(real, real)
        suffix = self._get_literal_suffix(type_)
        num = str(flt.evalf(self._settings["precision"]))
        if 'e' not in num and '.' not in num:
            num += '.0'
        num_parts = num.split('e')
        num_parts[0] = num_parts[0].rstrip('0')
        if num_parts[0].endswith('.'):
            num_parts[0] += '0'
        return ''.join(num_parts) + suffix

    def _print_Pow(self, expr):
        """Expand squares and cubes into parenthesised multiplications."""
        base, exp = expr.as_base_exp()
        if exp.is_Integer and exp in (2, 3):
            rendered = self.parenthesize(base, PRECEDENCE["Mul"])
            return "(" + "*".join([rendered] * int(exp)) + ")"
        return super()._print_Pow(expr)

    def _print_Piecewise(self, expr: sp.Piecewise):
        """Always render Piecewise as a single nested ternary expression."""
        pieces = list(expr.args)
        last_expr, last_cond = pieces[-1]
        if last_cond != sp.true:
            # No fallback branch: the value is undefined, emit NAN
            rendered = "NAN"
            pieces_to_wrap = pieces
        else:
            rendered = self._print(last_expr)
            pieces_to_wrap = pieces[:-1]
        for e, c in reversed(pieces_to_wrap):
            rendered = f"(({self._print(c)}) ? ({self._print(e)}) : ({rendered}))"
        return rendered

    def _print_Function(self, expr):
        """Print atomic calls verbatim by their device function name."""
        if is_atomic_call(expr):
            args = ", ".join(self._print(arg) for arg in expr.args)
            return f"{expr.func.__name__}({args})"
        return super()._print_Function(expr)


def print_cuda(
    expr: sp.Expr,
    symbol_map: Optional[Dict] = None,
    **kwargs,
) -> str:
    """Print a single SymPy expression as CUDA C.

    Parameters
    ----------
    expr
        SymPy expression to print.
    symbol_map
        Mapping from symbols to array references.
    **kwargs
        Additional arguments passed to :class:`CUDAPrinter`.
    """
    printer = CUDAPrinter(symbol_map=symbol_map, **kwargs)
    return printer.doprint(expr)


def print_cuda_multiple(
    exprs: Iterable[Tuple[sp.Symbol, sp.Expr]],
    symbol_map: Optional[Dict] = None,
    **kwargs,
) -> List[str]:
    """Print ``lhs = rhs;`` statements for a sequence of assignments.

    Parameters
    ----------
    exprs
        ``(lhs, rhs)`` pairs. Left-hand sides are printed through the symbol
        map as well.
    symbol_map
        Mapping from symbols to array references or names.
    **kwargs
        Additional arguments passed to :class:`CUDAPrinter`.

    Returns
    -------
    list of str
        One C statement per assignment.
    """
    printer = CUDAPrinter(symbol_map=symbol_map, **kwargs)
    lines = []
    for assign_to, expr in exprs:
        lhs = printer.doprint(assign_to)
        rhs = printer.doprint(expr)
        lines.append(f"{lhs} = {rhs};")
    return lines
