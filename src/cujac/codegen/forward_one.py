"""Sparse first-order forward sources: per-column functions and driver.

For every input column with nonzero Jacobian entries a directional device
function computes the compressed derivative vector, i.e. the entries of
that column in the order of its row list, scaled by the tangent ``dx[0]``.
Two strategies produce the compressed vectors:

``atomic_safe_columns``
    One isolated forward sweep per column. Required when the model calls
    atomic functions.
``direct_sparse_columns``
    One sparse Jacobian sweep shared by all columns, redistributed into
    per-column vectors. Only valid without atomics.

The strategy is chosen from :data:`COLUMN_STRATEGIES` by the model's
"atomics used" flag. A dispatch function routes a column to its function,
a lookup function returns a column's rows and the driver applies the
compressed evaluation to a packed tangent vector.
"""

from typing import Callable, Dict, List, Optional, Tuple

import sympy as sp

from cujac.codegen.emitter import CodegenSettings, generate_body
from cujac.codegen.function_source import FunctionSourceGen
from cujac.codegen.sparsity import (
    Partition,
    max_column_size,
    sparsity_lookup_source,
)
from cujac.errors import ConfigurationError
from cujac.model.symbolic_model import SymbolicModel
from cujac.time_logger import TimeLogger, default_timelogger

TANGENT = sp.Symbol("_dx", real=True)

Columns = Dict[int, List[sp.Expr]]
ColumnStrategy = Callable[[SymbolicModel, Partition, sp.Symbol], Columns]

SourceUnit = Tuple[str, str]

HOST_THREADS_PER_BLOCK = 256


def atomic_safe_columns(
    model: SymbolicModel,
    partition: Partition,
    tangent: sp.Symbol = TANGENT,
) -> Columns:
    """Compressed derivative vectors from one forward sweep per column."""
    columns = {}
    for col in sorted(partition):
        dy = model.forward_one(col)
        columns[col] = [dy[row] * tangent for row in partition[col]]
    return columns


def direct_sparse_columns(
    model: SymbolicModel,
    partition: Partition,
    tangent: sp.Symbol = TANGENT,
) -> Columns:
    """Compressed derivative vectors from a single sparse Jacobian sweep.

    Raises
    ------
    ConfigurationError
        If the model calls atomic functions, whose derivatives must be
        evaluated column by column.
    """
    if model.atomics_used():
        raise ConfigurationError(
            f"Model '{model.name}' calls atomic functions; the direct sparse "
            f"strategy requires an atomic-free model."
        )
    sparsity = model.jacobian_sparsity()
    flat = model.sparse_jacobian_forward(sparsity.rows, sparsity.cols)

    positions = {
        col: {row: e for e, row in enumerate(rows)}
        for col, rows in partition.items()
    }
    columns = {col: [sp.S.Zero] * len(partition[col])
               for col in sorted(partition)}
    for value, row, col in zip(flat, sparsity.rows, sparsity.cols):
        columns[col][positions[col][row]] = value * tangent
    return columns


COLUMN_STRATEGIES: Dict[bool, ColumnStrategy] = {
    True: atomic_safe_columns,
    False: direct_sparse_columns,
}


def select_strategy(model: SymbolicModel) -> ColumnStrategy:
    """Return the column strategy matching the model's use of atomics."""
    return COLUMN_STRATEGIES[model.atomics_used()]


def directional_function_source(function: str, partition: Partition) -> str:
    """Emit the dispatch function routing a column to its function.

    ``function(pos, out, in)`` calls ``function_indep<pos>(out, in)`` and
    returns 0 for a column in ``partition``. Any other position returns 1
    without writing to ``out``.
    """
    title = f"int {function}("
    pad = " " * len(title)
    lines = [
        "__device__\n",
        f"{title}unsigned long pos,\n",
        f"{pad}Float *const *out,\n",
        f"{pad}Float const *const *in) {{\n",
        "  switch (pos) {\n",
    ]
    for col in sorted(partition):
        lines.append(
            f"    case {col}:\n"
            f"      {function}_indep{col}(out, in);\n"
            f"      return 0;\n"
        )
    lines.append(
        "    default:\n"
        "      return 1;\n"
        "  }\n"
        "}\n"
    )
    return "".join(lines)


def driver_function_source(
    model_name: str,
    partition: Partition,
    domain_size: int,
    range_size: int,
) -> str:
    """Emit ``int <model>_forward_one(Float *ty, const Float *tx)``.

    ``tx`` holds ``(value, derivative)`` pairs of the ``n`` inputs and
    ``ty`` those of the ``m`` outputs. Columns whose derivative is nonzero
    and that have rows are collected in ascending order; the derivative
    entries of ``ty`` are zeroed, then every active column is dispatched
    and its compressed result added to ``ty`` at the column's rows. The
    first nonzero dispatch status is returned immediately.
    """
    dispatch = f"{model_name}_sparse_forward_one"
    lookup = f"{model_name}_forward_one_sparsity"
    n = domain_size
    m = range_size
    return (
        f"__device__\n"
        f"int {model_name}_forward_one(Float *ty, const Float *tx) {{\n"
        f"  unsigned long ePos, ej, i, j, nnz, nnzTx;\n"
        f"  unsigned long const *pos;\n"
        f"  unsigned long txPos[{max(1, n)}];\n"
        f"  Float const *in[2];\n"
        f"  Float *out[1];\n"
        f"  Float x[{max(1, n)}];\n"
        f"  Float compressed[{max(1, max_column_size(partition))}];\n"
        f"  int ret;\n"
        f"\n"
        f"  nnzTx = 0;\n"
        f"  for (j = 0; j < {n}; j++) {{\n"
        f"    if (tx[j * 2 + 1] != 0.0) {{\n"
        f"      {lookup}(j, &pos, &nnz);\n"
        f"      if (nnz == 0) {{\n"
        f"        continue;\n"
        f"      }}\n"
        f"      txPos[nnzTx++] = j;\n"
        f"    }}\n"
        f"  }}\n"
        f"\n"
        f"  for (i = 0; i < {m}; i++) {{\n"
        f"    ty[i * 2 + 1] = 0;\n"
        f"  }}\n"
        f"  for (j = 0; j < {n}; j++) {{\n"
        f"    x[j] = tx[j * 2];\n"
        f"  }}\n"
        f"\n"
        f"  for (ej = 0; ej < nnzTx; ej++) {{\n"
        f"    j = txPos[ej];\n"
        f"    {lookup}(j, &pos, &nnz);\n"
        f"    in[0] = x;\n"
        f"    in[1] = &tx[j * 2 + 1];\n"
        f"    out[0] = compressed;\n"
        f"    ret = {dispatch}(j, out, in);\n"
        f"    if (ret != 0) {{\n"
        f"      return ret;\n"
        f"    }}\n"
        f"    for (ePos = 0; ePos < nnz; ePos++) {{\n"
        f"      ty[pos[ePos] * 2 + 1] += compressed[ePos];\n"
        f"    }}\n"
        f"  }}\n"
        f"  return 0;\n"
        f"}}\n"
    )


def driver_host_source(
    model_name: str,
    domain_size: int,
    range_size: int,
) -> str:
    """Emit the batched driver kernel and its exported host entry point.

    ``<model>_forward_one_host(num_total_threads, ty, tx)`` evaluates the
    driver once per thread on consecutive ``2n``/``2m`` slices of the host
    buffers ``tx`` and ``ty``. It returns the first nonzero driver status,
    or a CUDA error code if a runtime call fails.
    """
    name = model_name
    tx_len = 2 * domain_size
    ty_len = 2 * range_size
    return (
        f"__global__ void {name}_forward_one_kernel(int num_total_threads,\n"
        f"                                           Float *ty,\n"
        f"                                           const Float *tx,\n"
        f"                                           int *status) {{\n"
        f"  const int i = blockIdx.x * blockDim.x + threadIdx.x;\n"
        f"  if (i >= num_total_threads) {{\n"
        f"    return;\n"
        f"  }}\n"
        f"  status[i] = {name}_forward_one(&ty[i * {ty_len}], "
        f"&tx[i * {tx_len}]);\n"
        f"}}\n"
        f"\n"
        f"extern \"C\" {{\n"
        f"MODULE_API int {name}_forward_one_host(int num_total_threads,\n"
        f"                                       Float *ty,\n"
        f"                                       const Float *tx) {{\n"
        f"  const size_t ty_size = num_total_threads * {ty_len} * "
        f"sizeof(Float);\n"
        f"  const size_t tx_size = num_total_threads * {tx_len} * "
        f"sizeof(Float);\n"
        f"  const size_t status_size = num_total_threads * sizeof(int);\n"
        f"  Float *dev_ty = nullptr;\n"
        f"  Float *dev_tx = nullptr;\n"
        f"  int *dev_status = nullptr;\n"
        f"  int *status = nullptr;\n"
        f"  int result = 0;\n"
        f"  cudaError_t err = cudaMalloc((void **)&dev_ty, ty_size);\n"
        f"  if (err == cudaSuccess)\n"
        f"    err = cudaMalloc((void **)&dev_tx, tx_size);\n"
        f"  if (err == cudaSuccess)\n"
        f"    err = cudaMalloc((void **)&dev_status, status_size);\n"
        f"  if (err == cudaSuccess)\n"
        f"    err = cudaMemcpy(dev_tx, tx, tx_size, cudaMemcpyHostToDevice);\n"
        f"  if (err == cudaSuccess)\n"
        f"    err = cudaMemcpy(dev_ty, ty, ty_size, cudaMemcpyHostToDevice);\n"
        f"  if (err == cudaSuccess) {{\n"
        f"    const int threads = {HOST_THREADS_PER_BLOCK};\n"
        f"    const int blocks = (num_total_threads + threads - 1) / threads;\n"
        f"    {name}_forward_one_kernel<<<blocks, threads>>>(\n"
        f"        num_total_threads, dev_ty, dev_tx, dev_status);\n"
        f"    err = cudaDeviceSynchronize();\n"
        f"  }}\n"
        f"  if (err == cudaSuccess)\n"
        f"    err = cudaMemcpy(ty, dev_ty, ty_size, cudaMemcpyDeviceToHost);\n"
        f"  if (err == cudaSuccess) {{\n"
        f"    status = (int *)malloc(status_size);\n"
        f"    err = cudaMemcpy(status, dev_status, status_size,\n"
        f"                     cudaMemcpyDeviceToHost);\n"
        f"  }}\n"
        f"  if (err == cudaSuccess) {{\n"
        f"    for (int k = 0; k < num_total_threads; ++k) {{\n"
        f"      if (status[k] != 0) {{\n"
        f"        result = status[k];\n"
        f"        break;\n"
        f"      }}\n"
        f"    }}\n"
        f"  }} else {{\n"
        f"    report_cuda_error(err, \"{name}_forward_one_host\");\n"
        f"    result = (int)err;\n"
        f"  }}\n"
        f"  free(status);\n"
        f"  cudaFree(dev_ty);\n"
        f"  cudaFree(dev_tx);\n"
        f"  cudaFree(dev_status);\n"
        f"  return result;\n"
        f"}}\n"
        f"}}\n"
    )


def generate_forward_one(
    model: SymbolicModel,
    partition: Partition,
    global_input_dim: int = 0,
    kernel_only: bool = False,
    settings: Optional[CodegenSettings] = None,
    strategy: Optional[ColumnStrategy] = None,
    debug: bool = False,
    timelogger: Optional[TimeLogger] = None,
) -> Tuple[str, List[SourceUnit]]:
    """Generate the forward-one unit of a model and its per-column units.

    Parameters
    ----------
    model
        Model to differentiate.
    partition
        Column partition of the model's Jacobian sparsity.
    global_input_dim
        Number of trailing inputs shared by all threads.
    kernel_only
        Emit device functions only, without kernels and host functions.
    settings
        Statement emitter settings.
    strategy
        Column strategy; defaults to the one selected by the model's use of
        atomics.
    debug
        Add debug prints to the generated kernels.
    timelogger
        Receiver of timing events.

    Returns
    -------
    tuple
        Text of the forward-one unit, and the per-column units it includes,
        as ``(file name, text)`` pairs in column order.
    """
    if timelogger is None:
        timelogger = default_timelogger
    if strategy is None:
        strategy = select_strategy(model)
    n = model.domain_size
    if global_input_dim > n:
        raise ConfigurationError(
            f"Global input size {global_input_dim} of model '{model.name}' "
            f"exceeds its input size {n}."
        )

    event = f"'{model.name}' (forward one)"
    with timelogger.timed(event):
        columns = strategy(model, partition, TANGENT)

    x = sp.IndexedBase("x", shape=(max(1, n),))
    dx = sp.IndexedBase("dx", shape=(1,))
    symbol_map = {sym: x[i] for i, sym in enumerate(model.inputs)}
    symbol_map[TANGENT] = dx[0]

    dispatch = f"{model.name}_sparse_forward_one"
    units = []
    code = []
    for col in sorted(columns):
        values = columns[col]
        function = f"{dispatch}_indep{col}"
        gen = FunctionSourceGen(
            name=function,
            local_input_dim=n - global_input_dim,
            global_input_dim=global_input_dim,
            output_dim=len(values),
            is_forward_one=True,
        )
        with timelogger.timed(f"'{model.name}' (forward one, indep {col})"):
            body = generate_body(
                values,
                model.equations,
                symbol_map,
                output_name=gen.output_name,
                function_name=function,
                parameters=gen.body_parameters,
                settings=settings,
                base_type=model.precision,
            )
        file_name = f"{function}.cuh"
        units.append((file_name, gen.emit_source(body, kernel_only, debug)))
        code.append(f"#include \"{file_name}\"\n")

    code.append("\n")
    code.append(directional_function_source(dispatch, partition))
    code.append("\n")
    code.append(sparsity_lookup_source(
        f"{model.name}_forward_one_sparsity", partition
    ))
    code.append("\n")
    code.append(driver_function_source(
        model.name, partition, n, model.range_size
    ))
    if not kernel_only:
        code.append("\n")
        code.append(driver_host_source(model.name, n, model.range_size))
    return "".join(code), units
