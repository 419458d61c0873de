"""
cujac: CUDA sparse Jacobian kernel generator
"""

from importlib.metadata import version

from cujac.codegen import *             # noqa
from cujac.model import *               # noqa
from cujac.errors import BuildError, ConfigurationError, EquationWarning  # noqa
from cujac.library import LibraryProcessor  # noqa
from cujac.time_logger import TimeLogger, default_timelogger  # noqa
from cujac.toolchain import ToolchainConfig, find_nvcc  # noqa

__all__ = [
    "BuildError",
    "CodegenSettings",
    "ConfigurationError",
    "EquationWarning",
    "LibraryProcessor",
    "ModelSourceGen",
    "SymbolicModel",
    "TimeLogger",
    "ToolchainConfig",
    "create_model",
    "default_timelogger",
    "find_nvcc",
]

try:
    __version__ = version("cujac")
except ImportError:
    # Package is not installed
    __version__ = "unknown"
