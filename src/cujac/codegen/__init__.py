"""CUDA source generation from symbolic models."""

from cujac.codegen.cuda_printer import (  # noqa
    CUDAPrinter,
    print_cuda,
    print_cuda_multiple,
)
from cujac.codegen.emitter import (  # noqa
    CodegenSettings,
    KernelBody,
    generate_body,
)
from cujac.codegen.forward_one import (  # noqa
    COLUMN_STRATEGIES,
    atomic_safe_columns,
    direct_sparse_columns,
    directional_function_source,
    driver_function_source,
    generate_forward_one,
    select_strategy,
)
from cujac.codegen.function_source import (  # noqa
    Accumulation,
    FunctionSourceGen,
)
from cujac.codegen.model_source import ModelSourceGen  # noqa
from cujac.codegen.sparsity import (  # noqa
    flatten_partition,
    partition_sparsity,
    sparsity_lookup_source,
)

__all__ = [
    "Accumulation",
    "COLUMN_STRATEGIES",
    "CUDAPrinter",
    "CodegenSettings",
    "FunctionSourceGen",
    "KernelBody",
    "ModelSourceGen",
    "atomic_safe_columns",
    "direct_sparse_columns",
    "directional_function_source",
    "driver_function_source",
    "flatten_partition",
    "generate_body",
    "generate_forward_one",
    "partition_sparsity",
    "print_cuda",
    "print_cuda_multiple",
    "select_strategy",
    "sparsity_lookup_source",
]
