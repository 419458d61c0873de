"""Shared helpers for validation and precision handling."""

from typing import Any, Callable, Union

import numpy as np

PrecisionDType = Union[type, np.dtype]

ALLOWED_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}

CUDA_TYPE_NAMES = {
    np.dtype(np.float32): "float",
    np.dtype(np.float64): "double",
}


def precision_converter(value: PrecisionDType) -> type:
    """Return the numpy scalar type for a precision-like value.

    Parameters
    ----------
    value
        A numpy scalar type, dtype, or anything :func:`numpy.dtype` accepts.

    Returns
    -------
    type
        The numpy scalar type, e.g. :class:`numpy.float64`.

    Raises
    ------
    ValueError
        If the precision is neither float32 nor float64.
    """
    dtype = np.dtype(value)
    if dtype not in ALLOWED_PRECISIONS:
        raise ValueError(f"precision must be float32 or float64, got {value}")
    return dtype.type


def cuda_type_name(precision: PrecisionDType) -> str:
    """Return the CUDA C type name for a numpy precision."""
    return CUDA_TYPE_NAMES[np.dtype(precision)]


def getype_validator(dtype: type, min_: Any) -> Callable:
    """Return an attrs validator enforcing ``isinstance`` and a lower bound.

    Parameters
    ----------
    dtype
        Required Python type of the attribute.
    min_
        Inclusive lower bound.
    """
    def _validator(instance, attribute, value):
        if not isinstance(value, dtype) or isinstance(value, bool):
            raise TypeError(
                f"{attribute.name} must be {dtype.__name__}, "
                f"got {type(value).__name__}"
            )
        if value < min_:
            raise ValueError(
                f"{attribute.name} must be >= {min_}, got {value}"
            )
    return _validator


def c_identifier_validator(instance, attribute, value) -> None:
    """attrs validator requiring a valid C identifier."""
    if not isinstance(value, str) or not value.isidentifier():
        raise ValueError(
            f"{attribute.name} must be a valid C identifier, got {value!r}"
        )
