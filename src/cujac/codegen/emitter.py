"""Lower symbolic expression vectors into bounded CUDA statement lists."""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import attrs
import numpy as np
import sympy as sp

from cujac._utils import getype_validator
from cujac.codegen.cuda_printer import print_cuda_multiple
from cujac.model.sym_utils import (
    cse_and_stack,
    prune_unused_assignments,
    topological_sort,
)

WORK_ARRAY = "v"


@attrs.define(frozen=True)
class CodegenSettings:
    """Limits and formatting options of the statement emitter.

    Attributes
    ----------
    max_assignments_per_function
        Maximum number of statements in one generated function. Longer
        bodies are split into ``__device__`` helper functions that share the
        work array. ``0`` disables splitting.
    max_operations_per_assignment
        Maximum number of operations (as counted by
        :func:`sympy.count_ops`) in one assignment. Larger expressions are
        split into temporaries. ``0`` disables splitting.
    parameter_precision
        Significant digits of floating-point literals.
    cse
        Whether to apply common subexpression elimination.
    """
    max_assignments_per_function: int = attrs.field(
        default=1000, validator=getype_validator(int, 0)
    )
    max_operations_per_assignment: int = attrs.field(
        default=1000, validator=getype_validator(int, 0)
    )
    parameter_precision: int = attrs.field(
        default=17, validator=getype_validator(int, 1)
    )
    cse: bool = attrs.field(
        default=True, validator=attrs.validators.instance_of(bool)
    )


@attrs.define(frozen=True)
class KernelBody:
    """Statements of one generated function body.

    Attributes
    ----------
    statements
        Statements of the function itself (helper calls when split).
    helpers
        Source of helper functions that must precede the function.
    work_size
        Number of entries of the temporary work array ``v``.
    """
    statements: Tuple[str, ...] = attrs.field(converter=tuple)
    helpers: Tuple[str, ...] = attrs.field(converter=tuple, factory=tuple)
    work_size: int = 0

    def render(self, indent: int = 2) -> str:
        """Return the body text, including the work array declaration."""
        prefix = " " * indent
        lines = []
        if self.work_size:
            lines.append(f"{prefix}Float {WORK_ARRAY}[{self.work_size}];")
        lines.extend(f"{prefix}{stmt}" for stmt in self.statements)
        return "\n".join(lines) + ("\n" if lines else "")


class _Temporaries:
    """Allocator for split-off temporaries."""

    def __init__(self):
        self.assignments: List[Tuple[sp.Symbol, sp.Expr]] = []
        self._names = sp.numbered_symbols("_split", real=True)

    def new(self, expr: sp.Expr) -> sp.Symbol:
        sym = next(self._names)
        self.assignments.append((sym, expr))
        return sym


def split_operations(
    expr: sp.Expr,
    limit: int,
    temporaries: _Temporaries,
) -> sp.Expr:
    """Rewrite ``expr`` so that it performs at most ``limit`` operations.

    Sub-expressions are moved into temporaries (largest first); long sums
    and products are chunked. Expressions whose top level alone exceeds
    the limit (e.g. a call with many arguments) are left as they are.

    Conditionals are rebuilt around split operands: branch values and the
    operands of their conditions may become temporaries, but the
    condition-value pairs and the conditions themselves stay in place.
    """
    if limit <= 0 or expr.is_Atom or sp.count_ops(expr) <= limit:
        return expr

    if isinstance(expr, sp.Piecewise) or not isinstance(expr, sp.Expr):
        return expr.func(*[split_operations(arg, limit, temporaries)
                           for arg in expr.args])

    if (expr.is_Add or expr.is_Mul) and len(expr.args) > limit + 1:
        size = limit + 1
        args = list(expr.args)
        chunks = [args[k:k + size] for k in range(0, len(args), size)]
        parts = [
            temporaries.new(split_operations(expr.func(*chunk), limit,
                                             temporaries))
            if len(chunk) > 1 else chunk[0]
            for chunk in chunks
        ]
        return split_operations(expr.func(*parts), limit, temporaries)

    replacements = {}
    args = sorted(expr.args, key=sp.count_ops, reverse=True)
    for arg in args:
        if sp.count_ops(expr.xreplace(replacements)) <= limit:
            break
        if (not isinstance(arg, sp.Expr) or arg.is_Atom
                or sp.count_ops(arg) == 0):
            continue
        replacements[arg] = temporaries.new(
            split_operations(arg, limit, temporaries)
        )
    return expr.xreplace(replacements)


def _apply_operation_limit(
    assignments: Sequence[Tuple[sp.Symbol, sp.Expr]],
    limit: int,
) -> List[Tuple[sp.Symbol, sp.Expr]]:
    if limit <= 0:
        return list(assignments)
    temporaries = _Temporaries()
    result = []
    for lhs, rhs in assignments:
        start = len(temporaries.assignments)
        rhs = split_operations(rhs, limit, temporaries)
        result.extend(temporaries.assignments[start:])
        result.append((lhs, rhs))
    return result


def generate_body(
    outputs: Sequence[sp.Expr],
    equations: Sequence[Tuple[sp.Symbol, sp.Expr]],
    symbol_map: Mapping[sp.Symbol, sp.Basic],
    output_name: str,
    function_name: str,
    parameters: Sequence[Tuple[str, str]],
    settings: Optional[CodegenSettings] = None,
    base_type=np.float64,
) -> KernelBody:
    """Lower an output expression vector into CUDA statements.

    Parameters
    ----------
    outputs
        Expressions for ``output_name[0], output_name[1], ...``.
    equations
        Intermediate assignments the outputs may reference. Unused ones are
        pruned.
    symbol_map
        Mapping of input (and tangent) symbols to array references.
    output_name
        Name of the output array, e.g. ``"dy"``.
    function_name
        Name of the enclosing function; prefix of helper functions.
    parameters
        ``(c_type, name)`` of the pointers in scope in the enclosing
        function. Helpers receive the same pointers plus the work array.
    settings
        Emitter limits and precision.
    base_type
        Numeric type used for literal suffixes and math functions.

    Returns
    -------
    KernelBody
    """
    if settings is None:
        settings = CodegenSettings()

    out_base = sp.IndexedBase(output_name, shape=(max(len(outputs), 1),))
    out_syms = [sp.Symbol(f"_out{k}", real=True) for k in range(len(outputs))]
    assignments = list(equations) + list(zip(out_syms, outputs))

    if settings.cse:
        assignments = cse_and_stack(assignments)
    else:
        assignments = topological_sort(assignments)
    assignments = prune_unused_assignments(assignments, out_syms)
    assignments = _apply_operation_limit(
        assignments, settings.max_operations_per_assignment
    )

    full_map: Dict[sp.Symbol, sp.Basic] = dict(symbol_map)
    out_index = {sym: k for k, sym in enumerate(out_syms)}
    temps = [lhs for lhs, _ in assignments if lhs not in out_index]
    work = sp.IndexedBase(WORK_ARRAY, shape=(max(len(temps), 1),))
    for t, sym in enumerate(temps):
        full_map[sym] = work[t]
    for sym, k in out_index.items():
        full_map[sym] = out_base[k]

    statements = print_cuda_multiple(
        assignments,
        symbol_map=full_map,
        precision=settings.parameter_precision,
        base_type=base_type,
    )

    limit = settings.max_assignments_per_function
    if limit <= 0 or len(statements) <= limit:
        return KernelBody(statements=statements, work_size=len(temps))

    arg_decl = ", ".join(
        f"{ctype}{name}" if ctype.endswith("*") else f"{ctype} {name}"
        for ctype, name in parameters
    )
    arg_names = ", ".join(name for _, name in parameters)
    sep = ", " if parameters else ""
    helpers = []
    calls = []
    for part, start in enumerate(range(0, len(statements), limit)):
        helper = f"{function_name}_part{part}"
        chunk = statements[start:start + limit]
        lines = [f"__device__ static void {helper}({arg_decl}{sep}"
                 f"Float *{WORK_ARRAY}) {{"]
        lines.extend(f"  {stmt}" for stmt in chunk)
        lines.append("}\n")
        helpers.append("\n".join(lines))
        calls.append(f"{helper}({arg_names}{sep}{WORK_ARRAY});")

    return KernelBody(
        statements=calls,
        helpers=helpers,
        work_size=max(len(temps), 1),
    )
