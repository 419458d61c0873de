"""Per-model CUDA source generation for every enabled capability."""

from typing import List, Optional, Tuple

import sympy as sp

from cujac._utils import cuda_type_name
from cujac.codegen.emitter import CodegenSettings, KernelBody, generate_body
from cujac.codegen.forward_one import ColumnStrategy, generate_forward_one
from cujac.codegen.function_source import FunctionSourceGen
from cujac.codegen.sparsity import Partition, partition_sparsity
from cujac.errors import ConfigurationError
from cujac.model.symbolic_model import SymbolicModel
from cujac.time_logger import TimeLogger, default_timelogger

SourceUnit = Tuple[str, str]


class ModelSourceGen:
    """Generate the CUDA sources of one model.

    Parameters
    ----------
    model
        Symbolic model to generate code for.
    global_input_dim
        Number of trailing inputs shared by all threads of a kernel launch.
        Must not exceed the model's input size.
    kernel_only
        Emit device functions only, for inclusion by other generated code.
        Kernel-only models export nothing and are not listed by
        ``model_info``.
    create_forward_zero
        Generate ``y = f(x)``.
    create_sparse_forward_one
        Generate the sparse first-order forward driver.
    create_reverse_one
        Generate ``px = py^T J``.
    create_jacobian
        Generate the dense row-major Jacobian.
    create_sparse_jacobian
        Generate the nonzero Jacobian values in sparsity order.
    settings
        Statement emitter settings.
    strategy
        Column strategy of the forward-one generator. Defaults to the one
        selected by the model's use of atomics.
    timelogger
        Receiver of timing events.
    """

    def __init__(
        self,
        model: SymbolicModel,
        global_input_dim: int = 0,
        kernel_only: bool = False,
        create_forward_zero: bool = True,
        create_sparse_forward_one: bool = False,
        create_reverse_one: bool = False,
        create_jacobian: bool = False,
        create_sparse_jacobian: bool = False,
        settings: Optional[CodegenSettings] = None,
        strategy: Optional[ColumnStrategy] = None,
        timelogger: Optional[TimeLogger] = None,
    ):
        if global_input_dim < 0 or global_input_dim > model.domain_size:
            raise ConfigurationError(
                f"Global input size {global_input_dim} of model "
                f"'{model.name}' must be between 0 and its input size "
                f"{model.domain_size}."
            )
        self.model = model
        self.global_input_dim = global_input_dim
        self.kernel_only = kernel_only
        self.create_forward_zero = create_forward_zero
        self.create_sparse_forward_one = create_sparse_forward_one
        self.create_reverse_one = create_reverse_one
        self.create_jacobian = create_jacobian
        self.create_sparse_jacobian = create_sparse_jacobian
        self.settings = settings if settings is not None else CodegenSettings()
        self.strategy = strategy
        self.timelogger = (timelogger if timelogger is not None
                           else default_timelogger)

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def base_type_name(self) -> str:
        """CUDA name of the model's base type."""
        return cuda_type_name(self.model.precision)

    @property
    def is_kernel_only(self) -> bool:
        return self.kernel_only

    @property
    def local_input_dim(self) -> int:
        return self.model.domain_size - self.global_input_dim

    @property
    def output_dim(self) -> int:
        return self.model.range_size

    def capabilities(self) -> List[str]:
        """Return the enabled capability names in generation order."""
        flags = [
            ("forward_zero", self.create_forward_zero),
            ("forward_one", self.create_sparse_forward_one),
            ("reverse_one", self.create_reverse_one),
            ("jacobian", self.create_jacobian),
            ("sparse_jacobian", self.create_sparse_jacobian),
        ]
        return [capability for capability, enabled in flags if enabled]

    def partition(self) -> Partition:
        """Column partition of the model's Jacobian sparsity."""
        return partition_sparsity(self.model.jacobian_sparsity())

    # ------------------------------------------------------------------ #
    #                          Internals                                 #
    # ------------------------------------------------------------------ #
    def _input_map(self) -> dict:
        x = sp.IndexedBase("x", shape=(max(1, self.model.domain_size),))
        return {sym: x[i] for i, sym in enumerate(self.model.inputs)}

    def _body(self, gen: FunctionSourceGen, outputs, symbol_map) -> KernelBody:
        return generate_body(
            outputs,
            self.model.equations,
            symbol_map,
            output_name=gen.output_name,
            function_name=gen.name,
            parameters=gen.body_parameters,
            settings=self.settings,
            base_type=self.model.precision,
        )

    def _plain_source(self, suffix: str, outputs, debug: bool) -> str:
        gen = FunctionSourceGen(
            name=f"{self.name}_{suffix}",
            local_input_dim=self.local_input_dim,
            global_input_dim=self.global_input_dim,
            output_dim=len(outputs),
        )
        event = f"'{self.name}' ({suffix.replace('_', ' ')})"
        with self.timelogger.timed(event):
            body = self._body(gen, outputs, self._input_map())
        return gen.emit_source(body, self.kernel_only, debug)

    # ------------------------------------------------------------------ #
    #                          Capabilities                              #
    # ------------------------------------------------------------------ #
    def forward_zero_source(self, debug: bool = False) -> str:
        """Source of ``<model>_forward_zero``, computing ``y = f(x)``."""
        return self._plain_source(
            "forward_zero", self.model.forward_zero(), debug
        )

    def forward_one_source(
        self,
        sources: List[SourceUnit],
        debug: bool = False,
    ) -> str:
        """Source of the sparse first-order forward driver.

        Per-column units are appended to ``sources``; the returned unit
        includes them.
        """
        self.timelogger.progress(
            f"'{self.name}' (forward one)",
            f"Generating first-order forward code for '{self.name}' with "
            f"input dimension {self.local_input_dim} and output dimension "
            f"{self.output_dim}. Atomics used: {self.model.atomics_used()}",
        )
        code, units = generate_forward_one(
            self.model,
            self.partition(),
            global_input_dim=self.global_input_dim,
            kernel_only=self.kernel_only,
            settings=self.settings,
            strategy=self.strategy,
            debug=debug,
            timelogger=self.timelogger,
        )
        sources.extend(units)
        return code

    def reverse_one_source(self, debug: bool = False) -> str:
        """Source of ``<model>_reverse_one``, computing ``py^T J``.

        The function is directional: ``dx`` holds one weight per output and
        ``dy`` receives one value per input.
        """
        m = self.model.range_size
        weights = [sp.Symbol(f"_w{i}", real=True) for i in range(m)]
        gen = FunctionSourceGen(
            name=f"{self.name}_reverse_one",
            local_input_dim=self.local_input_dim,
            global_input_dim=self.global_input_dim,
            output_dim=self.model.domain_size,
            is_forward_one=True,
            tangent_dim=m,
        )
        dx = sp.IndexedBase("dx", shape=(max(1, m),))
        symbol_map = self._input_map()
        symbol_map.update({w: dx[i] for i, w in enumerate(weights)})
        with self.timelogger.timed(f"'{self.name}' (reverse one)"):
            body = self._body(gen, self.model.reverse_one(weights),
                              symbol_map)
        return gen.emit_source(body, self.kernel_only, debug)

    def jacobian_source(self, debug: bool = False) -> str:
        """Source of ``<model>_jacobian``, the row-major ``m x n`` Jacobian."""
        jac = self.model.jacobian()
        return self._plain_source("jacobian", list(jac), debug)

    def sparse_jacobian_source(self, debug: bool = False) -> str:
        """Source of ``<model>_sparse_jacobian`` and its index tables.

        ``<model>_jacobian_rows`` and ``<model>_jacobian_cols`` hold the
        row and column of each generated value.
        """
        sparsity = self.model.jacobian_sparsity()
        values = self.model.sparse_jacobian_forward(
            sparsity.rows, sparsity.cols
        )
        size = max(1, len(sparsity))
        rows = ", ".join(str(r) for r in sparsity.rows) or "0"
        cols = ", ".join(str(c) for c in sparsity.cols) or "0"
        tables = (
            f"__device__ const unsigned long {self.name}_jacobian_rows"
            f"[{size}] = {{{rows}}};\n"
            f"__device__ const unsigned long {self.name}_jacobian_cols"
            f"[{size}] = {{{cols}}};\n\n"
        )
        return tables + self._plain_source("sparse_jacobian", values, debug)
