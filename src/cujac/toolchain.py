"""Configuration and invocation of the CUDA compiler."""

import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import attrs
from attrs import validators as val

from cujac.time_logger import TimeLogger, default_timelogger

DEFAULT_NVCC = "/usr/bin/nvcc"


def _is_windows(system: Optional[str] = None) -> bool:
    if system is None:
        system = sys.platform
    return system.startswith("win")


def shared_library_name(name: str, system: Optional[str] = None) -> str:
    """Return the platform file name of shared library ``name``.

    Parameters
    ----------
    name
        Library name without extension.
    system
        Platform identifier in :data:`sys.platform` form. Defaults to the
        running platform.
    """
    suffix = ".dll" if _is_windows(system) else ".so"
    return f"{name}{suffix}"


def find_nvcc() -> Optional[str]:
    """Locate the ``nvcc`` executable.

    The ``CUJAC_NVCC`` environment variable takes precedence, followed by the
    ``PATH`` and the ``bin`` directory of ``CUDA_HOME`` or ``CUDA_PATH``.

    Returns
    -------
    str or None
        Path of the compiler, or ``None`` if it was not found.
    """
    override = os.environ.get("CUJAC_NVCC")
    if override:
        return override
    found = shutil.which("nvcc")
    if found:
        return found
    for variable in ("CUDA_HOME", "CUDA_PATH"):
        root = os.environ.get(variable)
        if not root:
            continue
        for exe in ("nvcc", "nvcc.exe"):
            candidate = Path(root) / "bin" / exe
            if candidate.is_file():
                return str(candidate)
    return None


@attrs.define
class ToolchainConfig:
    """Compiler settings of one library.

    Attributes
    ----------
    nvcc_path
        Path of the ``nvcc`` executable.
    optimization_level
        ``ptxas`` optimisation level, 0 to 3.
    debug
        Compile with device debug information and add debug prints to the
        generated kernels.
    src_dir
        Directory holding the generated sources. ``None`` selects
        ``<library>_srcs``.
    output_dir
        Directory receiving the shared library.
    extra_flags
        Additional arguments passed to ``nvcc`` before the source file.
    """
    nvcc_path: str = attrs.field(default=DEFAULT_NVCC,
                                 validator=val.instance_of(str))
    optimization_level: int = attrs.field(
        default=0,
        validator=[val.instance_of(int), val.in_(range(4))],
    )
    debug: bool = attrs.field(default=False, validator=val.instance_of(bool))
    src_dir: Optional[Path] = attrs.field(
        default=None,
        converter=attrs.converters.optional(Path),
    )
    output_dir: Path = attrs.field(default=Path("."), converter=Path)
    extra_flags: List[str] = attrs.field(factory=list, converter=list)

    def source_dir(self, library_name: str) -> Path:
        """Return the configured source directory or its default."""
        if self.src_dir is None:
            return Path(f"{library_name}_srcs")
        return self.src_dir


def build_command(
    config: ToolchainConfig,
    library_name: str,
    system: Optional[str] = None,
) -> List[str]:
    """Return the ``nvcc`` argument list building ``library_name``.

    The main unit ``<library>.cu`` in the source directory is compiled with
    relocatable device code into a shared library in the output directory.
    """
    src_dir = config.source_dir(library_name)
    output = config.output_dir / shared_library_name(library_name, system)
    command = [
        config.nvcc_path,
        f"--ptxas-options=-O{config.optimization_level},-v",
        "-rdc=true",
    ]
    if config.debug:
        command += ["-G", "-lineinfo"]
    if not _is_windows(system):
        command += ["--compiler-options", "-fPIC"]
    command += ["-o", str(output), "--shared"]
    command += list(config.extra_flags)
    command.append(str(src_dir / f"{library_name}.cu"))
    return command


def run_compiler(
    command: Sequence[str],
    timelogger: Optional[TimeLogger] = None,
) -> int:
    """Run the compiler and wait for it to finish.

    The command line and the duration are reported to ``timelogger``.

    Returns
    -------
    int
        Return code of the compiler process.
    """
    if timelogger is None:
        timelogger = default_timelogger
    event = "CUDA compilation"
    timelogger.progress(event, shlex.join(command), command=list(command))
    with timelogger.timed(event):
        completed = subprocess.run(list(command), check=False)
    duration = timelogger.get_event_duration(event)
    if duration is not None:
        timelogger.progress(
            event,
            f"CUDA compilation process terminated after {duration:.3f} "
            f"seconds.",
        )
    return completed.returncode
