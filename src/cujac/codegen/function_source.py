"""Wrap generated function bodies into CUDA translation units.

A generated device function computes one evaluation. For models that are
not kernel-only the unit additionally carries a ``__global__`` kernel that
maps one thread to one evaluation, device buffer management, host/device
transfer helpers and a launch wrapper, all exported with C linkage.
"""

from enum import Enum
from typing import List, Tuple

import attrs
from attrs import validators as val

from cujac._utils import c_identifier_validator, getype_validator
from cujac.codegen.emitter import KernelBody


class Accumulation(Enum):
    """How per-thread results are combined into the output buffer."""

    NONE = "none"
    SUM = "sum"
    MEAN = "mean"


DIRECTIONAL_SIGNATURE = (
    "__device__ void {name}(Float *const *out,\n"
    "{pad}Float const *const *in)"
)

DIRECTIONAL_BINDINGS = (
    "  Float const *x = in[0];\n"
    "  Float const *dx = in[1];\n"
    "  Float *dy = out[0];\n"
)

PLAIN_SIGNATURE = "__device__ void {name}(Float *y, const Float *x)"

HEADER_TEMPLATE = (
    "extern \"C\" {{\n"
    "MODULE_API bool {name}_allocate(int num_total_threads);\n"
    "MODULE_API void {name}_deallocate();\n"
    "MODULE_API bool {name}_send_local(int num_total_threads,\n"
    "                                  const Float *input);\n"
    "MODULE_API bool {name}_send_global(const Float *input);\n"
    "MODULE_API bool {name}_receive(int num_total_threads, Float *output);\n"
    "MODULE_API int {name}_launch(int num_total_threads, int num_blocks,\n"
    "                             int num_threads_per_block);\n"
    "MODULE_API CudaFunctionMetaData {name}_meta();\n"
    "}}\n\n"
)

KERNEL_TEMPLATE = (
    "__global__ void {name}_kernel(int num_total_threads,\n"
    "                              Float *output,\n"
    "                              const Float *local_input,\n"
    "                              const Float *global_input) {{\n"
    "  const int i = blockIdx.x * blockDim.x + threadIdx.x;\n"
    "  if (i >= num_total_threads) {{\n"
    "    return;\n"
    "  }}\n"
    "  Float x[{input_size}];\n"
    "  Float result[{output_size}];\n"
    "  const Float *row = &local_input[i * {stride}];\n"
    "{gather}"
    "{call}"
    "{debug}"
    "{store}"
    "}}\n\n"
)

ALLOCATION_TEMPLATE = (
    "static Float *dev_{name}_output = nullptr;\n"
    "static Float *dev_{name}_local_input = nullptr;\n"
    "static Float *dev_{name}_global_input = nullptr;\n\n"
    "extern \"C\" {{\n"
    "MODULE_API bool {name}_allocate(int num_total_threads) {{\n"
    "  const size_t output_size = {output_rows} * {output_dim} * "
    "sizeof(Float);\n"
    "  const size_t local_size = num_total_threads * {stride} * "
    "sizeof(Float);\n"
    "  const size_t global_size = {global_size} * sizeof(Float);\n"
    "  if (!report_cuda_error(cudaMalloc((void **)&dev_{name}_output, "
    "output_size), \"{name}_allocate\")) {{\n"
    "    return false;\n"
    "  }}\n"
    "  if (!report_cuda_error(cudaMalloc((void **)&dev_{name}_local_input, "
    "local_size), \"{name}_allocate\")) {{\n"
    "    return false;\n"
    "  }}\n"
    "  return report_cuda_error(cudaMalloc((void **)"
    "&dev_{name}_global_input, global_size), \"{name}_allocate\");\n"
    "}}\n\n"
    "MODULE_API void {name}_deallocate() {{\n"
    "  cudaFree(dev_{name}_output);\n"
    "  cudaFree(dev_{name}_local_input);\n"
    "  cudaFree(dev_{name}_global_input);\n"
    "  dev_{name}_output = nullptr;\n"
    "  dev_{name}_local_input = nullptr;\n"
    "  dev_{name}_global_input = nullptr;\n"
    "}}\n"
    "}}\n\n"
)

SEND_TEMPLATE = (
    "extern \"C\" {{\n"
    "MODULE_API bool {name}_send_local(int num_total_threads,\n"
    "                                  const Float *input) {{\n"
    "  return report_cuda_error(\n"
    "      cudaMemcpy(dev_{name}_local_input, input,\n"
    "                 num_total_threads * {stride} * sizeof(Float),\n"
    "                 cudaMemcpyHostToDevice),\n"
    "      \"{name}_send_local\");\n"
    "}}\n\n"
    "MODULE_API bool {name}_send_global(const Float *input) {{\n"
    "  return report_cuda_error(\n"
    "      cudaMemcpy(dev_{name}_global_input, input,\n"
    "                 {global_dim} * sizeof(Float),\n"
    "                 cudaMemcpyHostToDevice),\n"
    "      \"{name}_send_global\");\n"
    "}}\n\n"
    "MODULE_API bool {name}_receive(int num_total_threads, Float *output) {{\n"
    "  return report_cuda_error(\n"
    "      cudaMemcpy(output, dev_{name}_output,\n"
    "                 {output_rows} * {output_dim} * sizeof(Float),\n"
    "                 cudaMemcpyDeviceToHost),\n"
    "      \"{name}_receive\");\n"
    "}}\n"
    "}}\n\n"
)

LAUNCH_TEMPLATE = (
    "extern \"C\" {{\n"
    "MODULE_API int {name}_launch(int num_total_threads, int num_blocks,\n"
    "                             int num_threads_per_block) {{\n"
    "{reset}"
    "  {name}_kernel<<<num_blocks, num_threads_per_block>>>(\n"
    "      num_total_threads, dev_{name}_output, dev_{name}_local_input,\n"
    "      dev_{name}_global_input);\n"
    "  cudaError_t status = cudaDeviceSynchronize();\n"
    "  report_cuda_error(status, \"{name}_launch\");\n"
    "  return (int)status;\n"
    "}}\n\n"
    "MODULE_API CudaFunctionMetaData {name}_meta() {{\n"
    "  CudaFunctionMetaData data;\n"
    "  data.output_dim = {output_dim};\n"
    "  data.local_input_dim = {stride};\n"
    "  data.global_input_dim = {global_dim};\n"
    "  data.accumulated_output = {accumulated};\n"
    "  return data;\n"
    "}}\n"
    "}}\n"
)


@attrs.define(frozen=True)
class FunctionSourceGen:
    """Descriptor of one generated CUDA function and its boilerplate.

    Parameters
    ----------
    name
        Name of the device function; prefix of every exported symbol.
    local_input_dim
        Number of inputs that differ per thread.
    global_input_dim
        Number of inputs shared by all threads. They follow the local inputs
        in the input vector ``x``.
    output_dim
        Length of the output vector of one evaluation.
    accumulate
        Combination of per-thread outputs in the kernel.
        The model generators always use ``Accumulation.NONE``; ``SUM`` and
        ``MEAN`` are only reached by descriptors constructed directly.
    is_forward_one
        Whether the function is directional, taking ``(out, in)`` pointer
        arrays with a tangent vector ``dx`` in ``in[1]``.
    tangent_dim
        Number of tangent entries read by a directional function. Threads
        store them after their local inputs.
    """

    name: str = attrs.field(validator=c_identifier_validator)
    local_input_dim: int = attrs.field(validator=getype_validator(int, 0))
    global_input_dim: int = attrs.field(validator=getype_validator(int, 0))
    output_dim: int = attrs.field(validator=getype_validator(int, 0))
    accumulate: Accumulation = attrs.field(
        default=Accumulation.NONE,
        validator=val.instance_of(Accumulation),
    )
    is_forward_one: bool = attrs.field(
        default=False, validator=val.instance_of(bool)
    )
    tangent_dim: int = attrs.field(
        default=1, validator=getype_validator(int, 0)
    )

    @property
    def input_dim(self) -> int:
        """Length of the input vector ``x``."""
        return self.local_input_dim + self.global_input_dim

    @property
    def output_name(self) -> str:
        """Name of the output array inside the device function."""
        return "dy" if self.is_forward_one else "y"

    @property
    def body_parameters(self) -> List[Tuple[str, str]]:
        """Pointers in scope of the function body, as ``(type, name)``."""
        if self.is_forward_one:
            return [("Float const *", "x"),
                    ("Float const *", "dx"),
                    ("Float *", "dy")]
        return [("Float *", "y"), ("const Float *", "x")]

    @property
    def row_stride(self) -> int:
        """Number of per-thread entries in the local input buffer."""
        if self.is_forward_one:
            return self.local_input_dim + self.tangent_dim
        return self.local_input_dim

    @property
    def accumulated(self) -> bool:
        return self.accumulate is not Accumulation.NONE

    # ------------------------------------------------------------------ #
    #                           Emitters                                 #
    # ------------------------------------------------------------------ #
    def emit_header(self) -> str:
        """Return the exported declarations of the unit."""
        return HEADER_TEMPLATE.format(name=self.name)

    def emit_function(self, body: KernelBody) -> str:
        """Return helper functions and the device function itself."""
        parts = list(body.helpers)
        if self.is_forward_one:
            pad = " " * len(f"__device__ void {self.name}(")
            signature = DIRECTIONAL_SIGNATURE.format(name=self.name, pad=pad)
            bindings = DIRECTIONAL_BINDINGS
        else:
            signature = PLAIN_SIGNATURE.format(name=self.name)
            bindings = ""
        parts.append(f"{signature} {{\n{bindings}{body.render()}}}\n\n")
        return "\n".join(parts)

    def emit_kernel(
        self,
        body: KernelBody,
        kernel_only: bool = False,
        debug: bool = False,
    ) -> str:
        """Return the device function and, unless kernel-only, its kernel.

        Parameters
        ----------
        body
            Statements computing one evaluation.
        kernel_only
            Emit only the device function (and its helpers).
        debug
            Print the outputs of thread 0 from the kernel.
        """
        source = self.emit_function(body)
        if kernel_only:
            return source

        local = self.local_input_dim
        gather = []
        if local:
            gather.append(
                f"  for (int k = 0; k < {local}; ++k) {{\n"
                f"    x[k] = row[k];\n"
                f"  }}\n"
            )
        if self.global_input_dim:
            gather.append(
                f"  for (int k = 0; k < {self.global_input_dim}; ++k) {{\n"
                f"    x[{local} + k] = global_input[k];\n"
                f"  }}\n"
            )

        if self.is_forward_one:
            call = (
                f"  Float const *in[2] = {{x, &row[{local}]}};\n"
                f"  Float *out[1] = {{result}};\n"
                f"  {self.name}(out, in);\n"
            )
        else:
            call = f"  {self.name}(result, x);\n"

        debug_lines = ""
        if debug:
            debug_lines = (
                f"  if (i == 0) {{\n"
                f"    printf(\"{self.name}:\");\n"
                f"    for (int k = 0; k < {self.output_dim}; ++k) {{\n"
                f"      printf(\" %f\", (double)result[k]);\n"
                f"    }}\n"
                f"    printf(\"\\n\");\n"
                f"  }}\n"
            )

        if self.accumulate is Accumulation.NONE:
            target = f"output[i * {self.output_dim} + k] = result[k];"
        elif self.accumulate is Accumulation.SUM:
            target = "atomicAdd(&output[k], result[k]);"
        else:
            target = "atomicAdd(&output[k], result[k] / num_total_threads);"
        store = (
            f"  for (int k = 0; k < {self.output_dim}; ++k) {{\n"
            f"    {target}\n"
            f"  }}\n"
        )

        source += KERNEL_TEMPLATE.format(
            name=self.name,
            input_size=max(1, self.input_dim),
            output_size=max(1, self.output_dim),
            stride=self.row_stride,
            gather="".join(gather),
            call=call,
            debug=debug_lines,
            store=store,
        )
        return source

    def _output_rows(self) -> str:
        return "1" if self.accumulated else "num_total_threads"

    def emit_allocation_functions(self) -> str:
        """Return device buffer allocation and deallocation functions."""
        return ALLOCATION_TEMPLATE.format(
            name=self.name,
            output_rows=self._output_rows(),
            output_dim=max(1, self.output_dim),
            stride=max(1, self.row_stride),
            global_size=max(1, self.global_input_dim),
        )

    def emit_send_functions(self) -> str:
        """Return host/device transfer functions."""
        return SEND_TEMPLATE.format(
            name=self.name,
            stride=self.row_stride,
            global_dim=self.global_input_dim,
            output_rows=self._output_rows(),
            output_dim=self.output_dim,
        )

    def emit_kernel_launch(self) -> str:
        """Return the launch wrapper and metadata accessor."""
        reset = ""
        if self.accumulated:
            reset = (
                f"  cudaMemset(dev_{self.name}_output, 0,\n"
                f"             {self.output_dim} * sizeof(Float));\n"
            )
        return LAUNCH_TEMPLATE.format(
            name=self.name,
            reset=reset,
            output_dim=self.output_dim,
            stride=self.row_stride,
            global_dim=self.global_input_dim,
            accumulated="true" if self.accumulated else "false",
        )

    def emit_source(
        self,
        body: KernelBody,
        kernel_only: bool = False,
        debug: bool = False,
    ) -> str:
        """Return the complete translation unit text."""
        if kernel_only:
            return self.emit_kernel(body, kernel_only=True)
        return (
            self.emit_header()
            + self.emit_kernel(body, debug=debug)
            + self.emit_allocation_functions()
            + self.emit_send_functions()
            + self.emit_kernel_launch()
        )
