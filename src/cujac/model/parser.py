"""Parse textual model descriptions into structured SymPy objects."""

import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from warnings import warn

import sympy as sp
from sympy.parsing.sympy_parser import T, parse_expr

from cujac.errors import ConfigurationError, EquationWarning

# Lambda notation, auto-number, factorial notation, implicit multiplication
PARSE_TRANSFORMS = (T[0][0], T[3][0], T[4][0], T[8][0])

KNOWN_FUNCTIONS = {
    # Basic mathematical functions
    'exp': sp.exp,
    'log': sp.log,
    'sqrt': sp.sqrt,
    'pow': sp.Pow,

    # Trigonometric functions
    'sin': sp.sin,
    'cos': sp.cos,
    'tan': sp.tan,
    'asin': sp.asin,
    'acos': sp.acos,
    'atan': sp.atan,
    'atan2': sp.atan2,

    # Hyperbolic functions
    'sinh': sp.sinh,
    'cosh': sp.cosh,
    'tanh': sp.tanh,
    'asinh': sp.asinh,
    'acosh': sp.acosh,
    'atanh': sp.atanh,

    # Special functions
    'erf': sp.erf,
    'erfc': sp.erfc,

    # Rounding and absolute
    'Abs': sp.Abs,
    'abs': sp.Abs,
    'floor': sp.floor,
    'ceil': sp.ceiling,

    # Min/Max
    'Min': sp.Min,
    'Max': sp.Max,
    'min': sp.Min,
    'max': sp.Max,

    'Piecewise': sp.Piecewise,
    'sign': sp.sign,
}

RESERVED_NAMES = frozenset(
    {"x", "y", "dx", "dy", "v", "in", "out", "tx", "ty", "Float"}
)

_func_call_re = re.compile(r"\b([A-Za-z_]\w*)\s*\(")
_assignment_re = re.compile(r"^\s*([A-Za-z_]\w*)\s*=(?!=)(.+)$")


# ---------------------------- Input cleaning ------------------------------- #
def _replace_if(expr_str: str) -> str:
    """Recursively replace ternary conditionals with ``Piecewise`` blocks.

    Parameters
    ----------
    expr_str
        Expression string that may contain inline conditional expressions.

    Returns
    -------
    str
        Expression with ternary conditionals rewritten for SymPy parsing.
    """
    match = re.search(r"(.+?) if (.+?) else (.+)", expr_str)
    if match:
        true_str = _replace_if(match.group(1).strip())
        cond_str = _replace_if(match.group(2).strip())
        false_str = _replace_if(match.group(3).strip())
        return f"Piecewise(({true_str}, {cond_str}), ({false_str}, True))"
    return expr_str


def _split_lines(equations: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(equations, str):
        lines = equations.splitlines()
    else:
        lines = list(equations)
    return [line.strip() for line in lines
            if line.strip() and not line.strip().startswith("#")]


def _split_assignment(line: str) -> Tuple[str, str]:
    match = _assignment_re.match(line)
    if match is None:
        raise ConfigurationError(
            f"Equation '{line}' is not of the form 'name = expression'."
        )
    return match.group(1), match.group(2).strip()


# ---------------------------- Atomic functions ----------------------------- #
def make_atomic_function(
    name: str,
    derivative_name: Optional[str] = None,
) -> sp.FunctionClass:
    """Create a SymPy function class for an opaque CUDA device call.

    Parameters
    ----------
    name
        Name of the ``__device__`` function implementing the atomic.
    derivative_name
        Name of the ``__device__`` function evaluating its partial
        derivatives. Defaults to ``d_<name>``. It is called with the original
        arguments followed by the zero-based index of the argument being
        differentiated.

    Returns
    -------
    sympy.FunctionClass
        Function class flagged with ``is_atomic_call``.

    Notes
    -----
    The derivative of an atomic is itself an atomic call, so the derivative
    structure of an atomic cannot be decomposed column by column.
    """
    if derivative_name is None:
        derivative_name = f"d_{name}"

    function_class = type(sp.Function)
    derivative = function_class(
        derivative_name,
        (sp.Function,),
        {"is_atomic_call": True, "is_real": True},
    )

    def fdiff(self, argindex=1):
        return derivative(*self.args, sp.Integer(argindex - 1))

    return function_class(
        name,
        (sp.Function,),
        {"is_atomic_call": True, "is_real": True, "fdiff": fdiff},
    )


def is_atomic_call(expr: sp.Basic) -> bool:
    """Return ``True`` if ``expr`` is an application of an atomic function."""
    return bool(getattr(expr.func, "is_atomic_call", False))


def _process_calls(
    lines: Iterable[str],
    atomics: Mapping[str, sp.FunctionClass],
) -> Dict[str, object]:
    """Resolve callable names referenced in the equations.

    Raises
    ------
    ConfigurationError
        If a function is neither a known SymPy function nor an atomic.
    """
    calls = set()
    for line in lines:
        calls |= set(_func_call_re.findall(line))
    funcs = {}
    for name in sorted(calls):
        if name in atomics:
            funcs[name] = atomics[name]
        elif name in KNOWN_FUNCTIONS:
            funcs[name] = KNOWN_FUNCTIONS[name]
        else:
            raise ConfigurationError(
                f"Equations contain a call to a function {name}() that "
                f"isn't part of SymPy and wasn't declared as an atomic."
            )
    return funcs


# ---------------------------- Parsing -------------------------------------- #
def _check_names(names: Sequence[str], kind: str) -> None:
    for name in names:
        if not name.isidentifier() or name.startswith("_"):
            raise ConfigurationError(
                f"{kind} name '{name}' must be an identifier not starting "
                f"with an underscore."
            )
        if name in RESERVED_NAMES:
            raise ConfigurationError(
                f"{kind} name '{name}' is reserved for generated code."
            )
    seen = set()
    for name in names:
        if name in seen:
            raise ConfigurationError(f"Duplicate {kind.lower()} '{name}'.")
        seen.add(name)


def parse_model(
    equations: Union[str, Iterable[str]],
    inputs: Sequence[str],
    outputs: Sequence[str],
    constants: Optional[Mapping[str, float]] = None,
    atomics: Optional[Mapping[str, Optional[str]]] = None,
) -> Tuple[
    List[Tuple[sp.Symbol, sp.Expr]],
    List[sp.Symbol],
    List[sp.Symbol],
    Dict[str, sp.FunctionClass],
]:
    """Parse ``lhs = rhs`` strings into symbolic assignments.

    Parameters
    ----------
    equations
        Equation strings, either as one multi-line string or an iterable of
        lines. Lines starting with ``#`` are ignored. Python conditional
        expressions (``a if cond else b``) become ``Piecewise``.
    inputs
        Input variable names in domain order.
    outputs
        Output variable names in range order. Each must be assigned by an
        equation.
    constants
        Named constants substituted as numeric literals.
    atomics
        Mapping from atomic function name to the name of its derivative
        device function (``None`` selects ``d_<name>``).

    Returns
    -------
    tuple
        ``(assignments, input_symbols, output_symbols, atomic_functions)``.

    Raises
    ------
    ConfigurationError
        For malformed equations, duplicate or reserved names, undeclared
        symbols, unknown functions, or outputs without an equation.
    """
    constants = dict(constants or {})
    atomics = dict(atomics or {})
    inputs = list(inputs)
    outputs = list(outputs)
    _check_names(inputs, "Input")
    _check_names(outputs, "Output")

    atomic_functions = {
        name: make_atomic_function(name, deriv)
        for name, deriv in atomics.items()
    }

    lines = _split_lines(equations)
    split = [_split_assignment(line) for line in lines]
    lhs_names = [lhs for lhs, _ in split]
    _check_names(lhs_names, "Assigned")

    clashing = set(lhs_names) & (set(inputs) | set(constants))
    if clashing:
        raise ConfigurationError(
            f"Symbols {sorted(clashing)} are assigned but also declared as "
            f"inputs or constants."
        )

    symbols = {name: sp.Symbol(name, real=True)
               for name in inputs + lhs_names}
    local_dict = dict(symbols)
    local_dict.update(_process_calls((rhs for _, rhs in split),
                                     atomic_functions))

    const_subs = {
        sp.Symbol(name, real=True): sp.Float(value)
        for name, value in constants.items()
    }
    for name in constants:
        local_dict[name] = sp.Symbol(name, real=True)

    assignments = []
    for lhs, rhs in split:
        try:
            expr = parse_expr(
                _replace_if(rhs),
                local_dict=local_dict,
                transformations=PARSE_TRANSFORMS,
                evaluate=True,
            )
        except NameError as exc:
            raise ConfigurationError(
                f"Equation for '{lhs}' uses an undeclared name: {exc}"
            ) from exc
        expr = sp.sympify(expr).xreplace(const_subs)
        undeclared = {str(s) for s in expr.free_symbols} - set(symbols)
        if undeclared:
            raise ConfigurationError(
                f"Equation for '{lhs}' uses undeclared symbols "
                f"{sorted(undeclared)}."
            )
        assignments.append((symbols[lhs], expr))

    missing = [name for name in outputs if name not in lhs_names]
    if missing:
        raise ConfigurationError(
            f"Outputs {missing} are not assigned by any equation."
        )

    unused = [name for name in inputs
              if not any(symbols[name] in rhs.free_symbols
                         for _, rhs in assignments)]
    if unused:
        warn(f"Inputs {unused} do not appear in any equation; their "
             f"derivative columns will be empty.", EquationWarning)

    return (
        assignments,
        [symbols[name] for name in inputs],
        [symbols[name] for name in outputs],
        atomic_functions,
    )
