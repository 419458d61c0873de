import numpy as np
import pytest

from cujac import LibraryProcessor, ModelSourceGen, TimeLogger, ToolchainConfig
from tests.system_fixtures import (
    build_atomic_model,
    build_coupled_model,
    build_piecewise_model,
    build_scenario_model,
)

np.set_printoptions(linewidth=120, precision=12)


# --------------------------------------------------------------------------- #
#                               Models                                        #
# --------------------------------------------------------------------------- #
@pytest.fixture
def scenario_model():
    return build_scenario_model()


@pytest.fixture
def coupled_model():
    return build_coupled_model()


@pytest.fixture
def atomic_model():
    return build_atomic_model()


@pytest.fixture
def piecewise_model():
    return build_piecewise_model()


@pytest.fixture
def scenario_partition():
    """Column partition of the scenario model's sparsity."""
    return {0: [0, 1], 2: [0]}


# --------------------------------------------------------------------------- #
#                            Infrastructure                                   #
# --------------------------------------------------------------------------- #
@pytest.fixture
def silent_logger():
    """Time logger recording nothing."""
    return TimeLogger(verbosity=None)


@pytest.fixture
def recording_logger():
    """Time logger recording events without printing them."""
    return TimeLogger(verbosity="default")


@pytest.fixture
def toolchain_override(request):
    """Override ToolchainConfig fields through indirect parametrisation."""
    return request.param if hasattr(request, "param") else {}


@pytest.fixture
def toolchain(tmp_path, toolchain_override):
    settings = {
        "nvcc_path": "/opt/cuda/bin/nvcc",
        "src_dir": tmp_path / "srcs",
        "output_dir": tmp_path,
    }
    settings.update(toolchain_override)
    return ToolchainConfig(**settings)


@pytest.fixture
def scenario_source_gen(scenario_model, silent_logger):
    return ModelSourceGen(
        scenario_model,
        create_sparse_forward_one=True,
        timelogger=silent_logger,
    )


@pytest.fixture
def library(scenario_source_gen, toolchain, silent_logger):
    """Library of the scenario model that does not look up nvcc."""
    return LibraryProcessor(
        scenario_source_gen,
        library_name="scenario_lib",
        toolchain=toolchain,
        find_nvcc=False,
        timelogger=silent_logger,
    )


@pytest.fixture
def fake_compiler(monkeypatch):
    """Replace the compiler process; set ``returncode`` to control it."""

    class FakeCompletedProcess:
        def __init__(self, returncode):
            self.returncode = returncode

    class FakeCompiler:
        returncode = 0

        def __init__(self):
            self.commands = []

        def __call__(self, command, check=False, **kwargs):
            self.commands.append(list(command))
            return FakeCompletedProcess(self.returncode)

    compiler = FakeCompiler()
    monkeypatch.setattr("cujac.toolchain.subprocess.run", compiler)
    return compiler


@pytest.fixture
def clean_cuda_env(monkeypatch):
    """Remove compiler-related environment variables."""
    for variable in ("CUJAC_NVCC", "CUDA_HOME", "CUDA_PATH"):
        monkeypatch.delenv(variable, raising=False)
    return monkeypatch

