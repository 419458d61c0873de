"""Symbolic numeric function with forward-mode derivative primitives."""

from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import attrs
import numpy as np
import sympy as sp

from cujac._utils import PrecisionDType, precision_converter
from cujac.errors import ConfigurationError
from cujac.model.jacobian import generate_jacobian, propagate_gradients
from cujac.model.parser import is_atomic_call, parse_model
from cujac.model.sym_utils import hash_model_definition, topological_sort


@attrs.define(frozen=True)
class Sparsity:
    """Nonzero pattern of a Jacobian as parallel index tuples.

    Entries are enumerated by ascending row and, within a row, ascending
    column.

    Attributes
    ----------
    rows
        Row (output) index of each nonzero.
    cols
        Column (input) index of each nonzero.
    """
    rows: Tuple[int, ...] = attrs.field(converter=tuple)
    cols: Tuple[int, ...] = attrs.field(converter=tuple)

    @cols.validator
    def _check_lengths(self, attribute, value):
        if len(value) != len(self.rows):
            raise ValueError(
                f"rows and cols must have equal length, got "
                f"{len(self.rows)} and {len(value)}"
            )

    def __len__(self) -> int:
        return len(self.rows)

    def pairs(self) -> List[Tuple[int, int]]:
        """Return the ``(row, col)`` pairs in enumeration order."""
        return list(zip(self.rows, self.cols))


def create_model(
    equations: Union[str, Iterable[str]],
    inputs: Sequence[str],
    outputs: Sequence[str],
    constants: Optional[Mapping[str, float]] = None,
    atomics: Optional[Mapping[str, Optional[str]]] = None,
    name: Optional[str] = None,
    precision: PrecisionDType = np.float64,
) -> "SymbolicModel":
    """Create a :class:`SymbolicModel` from equation strings.

    Parameters
    ----------
    equations
        Assignments in ``name = expression`` form, as one multi-line string
        or an iterable of lines.
    inputs
        Input names; their order defines the domain layout.
    outputs
        Output names; their order defines the range layout.
    constants
        Named constants substituted as literals.
    atomics
        Opaque CUDA device functions used in the equations, mapped to the
        name of their derivative function (``None`` for ``d_<name>``).
    name
        Model name used as prefix of every generated function. Defaults to a
        name derived from the hash of the definition.
    precision
        Base numeric type of the generated code.

    Returns
    -------
    SymbolicModel
    """
    return SymbolicModel.create(
        equations=equations,
        inputs=inputs,
        outputs=outputs,
        constants=constants,
        atomics=atomics,
        name=name,
        precision=precision,
    )


class SymbolicModel:
    """A named numeric function ``y = f(x)`` defined by ordered assignments.

    The model plays the role of a recorded computation: it evaluates the
    function symbolically, computes and caches its Jacobian sparsity, and
    performs per-column forward sweeps or one sparse Jacobian sweep.

    Parameters
    ----------
    equations
        ``(lhs, rhs)`` assignments defining intermediates and outputs.
    inputs
        Input symbols in domain order.
    outputs
        Output symbols in range order; each must be assigned.
    atomics
        Atomic function classes referenced by the equations, keyed by name.
    name
        Model name. Defaults to ``model_<hash prefix>``.
    precision
        Base numeric type.
    """

    def __init__(
        self,
        equations: Iterable[Tuple[sp.Symbol, sp.Expr]],
        inputs: Sequence[sp.Symbol],
        outputs: Sequence[sp.Symbol],
        atomics: Optional[Mapping[str, sp.FunctionClass]] = None,
        name: Optional[str] = None,
        precision: PrecisionDType = np.float64,
    ):
        self.equations = topological_sort(list(equations))
        self.inputs = list(inputs)
        self.outputs = list(outputs)
        self.atomics = dict(atomics or {})
        self.precision = precision_converter(precision)

        assigned = {lhs for lhs, _ in self.equations}
        missing = [str(s) for s in self.outputs if s not in assigned]
        if missing:
            raise ConfigurationError(
                f"Outputs {missing} are not assigned by any equation."
            )

        self.fn_hash = hash_model_definition(
            self.equations, self.inputs, self.outputs
        )
        if name is None:
            name = f"model_{self.fn_hash[:8]}"
        if not name.isidentifier():
            raise ConfigurationError(
                f"Model name '{name}' is not a valid C identifier."
            )
        self.name = name

        self._jacobian = None
        self._sparsity = None
        self._partials_cache = {}

    @classmethod
    def create(
        cls,
        equations: Union[str, Iterable[str]],
        inputs: Sequence[str],
        outputs: Sequence[str],
        constants: Optional[Mapping[str, float]] = None,
        atomics: Optional[Mapping[str, Optional[str]]] = None,
        name: Optional[str] = None,
        precision: PrecisionDType = np.float64,
    ) -> "SymbolicModel":
        """Parse equation strings and instantiate a model."""
        assignments, input_syms, output_syms, atomic_funcs = parse_model(
            equations,
            inputs=inputs,
            outputs=outputs,
            constants=constants,
            atomics=atomics,
        )
        return cls(
            assignments,
            input_syms,
            output_syms,
            atomics=atomic_funcs,
            name=name,
            precision=precision,
        )

    def __repr__(self) -> str:
        return (f"SymbolicModel(name={self.name!r}, n={self.domain_size}, "
                f"m={self.range_size})")

    # ------------------------------------------------------------------ #
    #                           Dimensions                               #
    # ------------------------------------------------------------------ #
    @property
    def domain_size(self) -> int:
        """Number of inputs ``n``."""
        return len(self.inputs)

    @property
    def range_size(self) -> int:
        """Number of outputs ``m``."""
        return len(self.outputs)

    def atomics_used(self) -> bool:
        """Return ``True`` if any equation calls an atomic function."""
        for _, rhs in self.equations:
            if any(is_atomic_call(f) for f in rhs.atoms(sp.Function)):
                return True
        return False

    # ------------------------------------------------------------------ #
    #                         Sweeps and sparsity                        #
    # ------------------------------------------------------------------ #
    def forward_zero(self) -> List[sp.Expr]:
        """Return the output expressions, in terms of the assigned symbols.

        The values are the output symbols themselves; the defining
        assignments are :attr:`equations`.
        """
        return list(self.outputs)

    def forward_one(self, column: int) -> List[sp.Expr]:
        """Directional derivative of every output along input ``column``.

        The sweep differentiates with respect to the single input, isolated
        from every other column, so atomic calls are only ever
        differentiated for that input.

        Returns
        -------
        list of sympy.Expr
            ``d y_i / d x_column`` for every output ``i``.
        """
        if not 0 <= column < self.domain_size:
            raise IndexError(
                f"column {column} out of range for domain size "
                f"{self.domain_size}"
            )
        gradients = propagate_gradients(
            self.equations, [self.inputs[column]], self._partials_cache
        )
        return [gradients[out][0] for out in self.outputs]

    def jacobian(self) -> sp.Matrix:
        """Return the cached full symbolic Jacobian."""
        if self._jacobian is None:
            self._jacobian = generate_jacobian(
                self.equations,
                self.inputs,
                self.outputs,
                self._partials_cache,
            )
        return self._jacobian

    def jacobian_sparsity(self) -> Sparsity:
        """Return the cached Jacobian sparsity pattern.

        An entry is structurally nonzero unless its symbolic derivative is
        identically zero.
        """
        if self._sparsity is None:
            jac = self.jacobian()
            rows, cols = [], []
            for i in range(self.range_size):
                for j in range(self.domain_size):
                    if jac[i, j] != 0:
                        rows.append(i)
                        cols.append(j)
            self._sparsity = Sparsity(rows, cols)
        return self._sparsity

    def sparse_jacobian_forward(
        self,
        rows: Sequence[int],
        cols: Sequence[int],
    ) -> List[sp.Expr]:
        """Return the Jacobian entries at ``(rows[k], cols[k])``.

        One sweep over all columns shares the derivative work of every
        entry.
        """
        jac = self.jacobian()
        return [jac[i, j] for i, j in zip(rows, cols)]

    def reverse_one(self, weights: Sequence[sp.Symbol]) -> List[sp.Expr]:
        """Return ``weights^T J`` for symbolic output weights.

        Parameters
        ----------
        weights
            One symbol per output.

        Returns
        -------
        list of sympy.Expr
            One expression per input.
        """
        if len(weights) != self.range_size:
            raise ValueError(
                f"expected {self.range_size} weights, got {len(weights)}"
            )
        jac = self.jacobian()
        return [
            sp.Add(*[weights[i] * jac[i, j]
                     for i in range(self.range_size) if jac[i, j] != 0])
            for j in range(self.domain_size)
        ]

    # ------------------------------------------------------------------ #
    #                           Helpers                                  #
    # ------------------------------------------------------------------ #
    def inline(self, expr: sp.Expr) -> sp.Expr:
        """Substitute every assigned symbol in ``expr`` by its definition.

        The result depends only on the inputs (and atomic calls).
        """
        for lhs, rhs in reversed(self.equations):
            expr = expr.xreplace({lhs: rhs})
        return expr
