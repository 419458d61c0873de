"""Symbolic model definition and derivative primitives."""

from cujac.model.parser import (  # noqa
    KNOWN_FUNCTIONS,
    is_atomic_call,
    make_atomic_function,
    parse_model,
)
from cujac.model.symbolic_model import (  # noqa
    Sparsity,
    SymbolicModel,
    create_model,
)

__all__ = [
    "KNOWN_FUNCTIONS",
    "Sparsity",
    "SymbolicModel",
    "create_model",
    "is_atomic_call",
    "make_atomic_function",
    "parse_model",
]
