"""Assemble generated model sources into one CUDA library."""

from pathlib import Path
from typing import List, Optional, Tuple, Union

from cujac.codegen.model_source import ModelSourceGen
from cujac.errors import BuildError, ConfigurationError
from cujac.time_logger import TimeLogger, default_timelogger
from cujac.toolchain import (
    ToolchainConfig,
    build_command,
    find_nvcc as locate_nvcc,
    run_compiler,
    shared_library_name,
)

SourceUnit = Tuple[str, str]

UTIL_HEADER_TEMPLATE = """#ifndef CUDA_UTILS_H
#define CUDA_UTILS_H

#include <math.h>
#include <stdio.h>
#include <stdlib.h>

typedef {base_type} Float;

#ifdef _WIN32
#define MODULE_API __declspec(dllexport)
#else
#define MODULE_API
#endif

struct CudaFunctionMetaData {{
  int output_dim;
  int local_input_dim;
  int global_input_dim;
  bool accumulated_output;
}};

static bool report_cuda_error(cudaError_t status, const char *context) {{
  if (status != cudaSuccess) {{
    fprintf(stderr, "Error %i (%s) in %s: %s.\\n", (int)status,
            cudaGetErrorName(status), context, cudaGetErrorString(status));
    return false;
  }}
  return true;
}}

void allocate(void **x, size_t size) {{
  cudaError status = cudaMallocHost(x, size);
  if (status != cudaSuccess) {{
    fprintf(stderr,
            "Error %i (%s) while allocating %zu units of CUDA memory: %s.\\n",
            status, cudaGetErrorName(status), size,
            cudaGetErrorString(status));
    exit((int)status);
  }}
}}

#endif  // CUDA_UTILS_H
"""

MODEL_INFO_TEMPLATE = """#ifndef MODEL_INFO_H
#define MODEL_INFO_H

extern "C" {{
MODULE_API void model_info(char const *const **names, int *count) {{
  static const char *const models[] = {{
{entries}
  }};
  *names = models;
  *count = {count};
}}
}}
#endif  // MODEL_INFO_H
"""


class LibraryProcessor:
    """Generate, save and compile the CUDA sources of several models.

    Parameters
    ----------
    model
        Main model of the library; it stays last in the model list.
    library_name
        Name of the library. Defaults to the name of ``model``.
    toolchain
        Compiler settings. Defaults to a fresh :class:`ToolchainConfig`.
    find_nvcc
        Look up ``nvcc`` with :func:`cujac.toolchain.find_nvcc` and store it
        in the toolchain configuration.
    timelogger
        Receiver of timing events and diagnostics.

    Raises
    ------
    ConfigurationError
        If ``find_nvcc`` is set and the compiler cannot be found.
    """

    def __init__(
        self,
        model: ModelSourceGen,
        library_name: str = "",
        toolchain: Optional[ToolchainConfig] = None,
        find_nvcc: bool = True,
        timelogger: Optional[TimeLogger] = None,
    ):
        self.models: List[ModelSourceGen] = [model]
        self.library_name = library_name or model.name
        if not self.library_name.isidentifier():
            raise ConfigurationError(
                f"Library name '{self.library_name}' is not a valid "
                f"identifier."
            )
        self.toolchain = (toolchain if toolchain is not None
                          else ToolchainConfig())
        self.timelogger = (timelogger if timelogger is not None
                           else default_timelogger)
        self.sources: List[SourceUnit] = []
        self.extra_sources: List[SourceUnit] = []
        self._generated: List[str] = []

        if find_nvcc:
            nvcc = locate_nvcc()
            if nvcc is None:
                raise ConfigurationError(
                    "NVIDIA CUDA Compiler (nvcc) could not be found. Make "
                    "sure \"nvcc\" is accessible from the system path or set "
                    "CUJAC_NVCC."
                )
            self.toolchain.nvcc_path = nvcc

    # ------------------------------------------------------------------ #
    #                          Composition                               #
    # ------------------------------------------------------------------ #
    def add_model(self, model: ModelSourceGen, prepend: bool = True) -> None:
        """Add a model at the front, or just before the main (last) model."""
        if prepend:
            self.models.insert(0, model)
        elif not self.models:
            self.models.append(model)
        else:
            self.models.insert(len(self.models) - 1, model)

    def add_source(self, name: str, text: str) -> None:
        """Add a user unit, e.g. atomic function implementations.

        User units are emitted after the shared headers and before the
        model sources, and included by the main unit in insertion order.
        """
        self.extra_sources.append((name, text))

    @property
    def debug_mode(self) -> bool:
        return self.toolchain.debug

    # ------------------------------------------------------------------ #
    #                          Generation                                #
    # ------------------------------------------------------------------ #
    def util_header_source(self) -> str:
        """Shared types, export macro and CUDA error helpers."""
        return UTIL_HEADER_TEMPLATE.format(
            base_type=self.models[0].base_type_name
        )

    def model_info_source(self) -> str:
        """``model_info`` listing every model that is not kernel-only."""
        names = [m.name for m in self.models if not m.is_kernel_only]
        if names:
            entries = ",\n".join(f"    \"{name}\"" for name in names)
        else:
            entries = "    0"
        return MODEL_INFO_TEMPLATE.format(entries=entries, count=len(names))

    def generate_code(self) -> List[SourceUnit]:
        """Generate every source unit, replacing earlier results.

        Returns
        -------
        list of tuple
            ``(file name, text)`` units; the last one is ``<library>.cu``.
        """
        self.sources = []
        self._generated = []
        debug = self.debug_mode

        with self.timelogger.timed(f"'{self.library_name}' (generate code)"):
            self.sources.append(("util.h", self.util_header_source()))
            self.sources.append(("model_info.h", self.model_info_source()))
            self.sources.extend(self.extra_sources)

            for cgen in self.models:
                extension = "cuh" if cgen.is_kernel_only else "cu"
                for capability in cgen.capabilities():
                    src_name = f"{cgen.name}_{capability}.{extension}"
                    if capability == "forward_one":
                        text = cgen.forward_one_source(self.sources, debug)
                    else:
                        generator = getattr(cgen, f"{capability}_source")
                        text = generator(debug)
                    self.sources.append((src_name, text))
                    self._generated.append(src_name)

            main = "#include \"util.h\"\n#include \"model_info.h\"\n\n"
            includes = [name for name, _ in self.extra_sources]
            includes += self._generated
            main += "".join(f"#include \"{name}\"\n" for name in includes)
            self.sources.append((f"{self.library_name}.cu", main))
        return list(self.sources)

    # ------------------------------------------------------------------ #
    #                        Persistence and build                       #
    # ------------------------------------------------------------------ #
    @property
    def src_dir(self) -> Path:
        return self.toolchain.source_dir(self.library_name)

    def save_sources(self, directory: Union[str, Path, None] = None) -> Path:
        """Write every generated unit to the source directory.

        Parameters
        ----------
        directory
            Target directory; overrides (and updates) the configured source
            directory.

        Returns
        -------
        pathlib.Path
            The directory the sources were written to.

        Raises
        ------
        ConfigurationError
            If :meth:`generate_code` has not been called.
        """
        if not self.sources:
            raise ConfigurationError(
                "No source files have been generated yet. Ensure "
                "`generate_code()` is called before saving the code."
            )
        if directory is not None:
            self.toolchain.src_dir = Path(directory)
        target = self.src_dir
        target.mkdir(parents=True, exist_ok=True)
        self.timelogger.progress(
            f"'{self.library_name}' (save sources)",
            f"Saving source files at {target.resolve()}",
        )
        for name, text in self.sources:
            (target / name).write_text(text)
        return target

    def library_file_name(self) -> str:
        """File name of the shared library on this platform."""
        return shared_library_name(self.library_name)

    def build_command(self) -> List[str]:
        return build_command(self.toolchain, self.library_name)

    def create_library(self) -> Path:
        """Compile the saved sources into a shared library.

        Returns
        -------
        pathlib.Path
            Path of the shared library.

        Raises
        ------
        BuildError
            If the compiler exits with a nonzero return code.
        """
        command = self.build_command()
        self.timelogger.progress(
            "CUDA compilation",
            f"Compiling CUDA library via {self.toolchain.nvcc_path}",
        )
        returncode = run_compiler(command, self.timelogger)
        if returncode:
            raise BuildError(returncode, " ".join(command))
        return self.toolchain.output_dir / self.library_file_name()

