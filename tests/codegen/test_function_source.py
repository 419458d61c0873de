import pytest

from cujac.codegen.emitter import KernelBody
from cujac.codegen.function_source import Accumulation, FunctionSourceGen


@pytest.fixture
def body():
    return KernelBody(statements=["y[0] = x[0]*x[1];"])


@pytest.fixture
def plain_gen():
    return FunctionSourceGen(name="model_forward_zero", local_input_dim=2,
                             global_input_dim=1, output_dim=1)


@pytest.fixture
def directional_gen():
    return FunctionSourceGen(name="model_indep0", local_input_dim=3,
                             global_input_dim=0, output_dim=2,
                             is_forward_one=True)


class TestFunctionSourceGen:
    def test_properties(self, plain_gen, directional_gen):
        assert plain_gen.input_dim == 3
        assert plain_gen.output_name == "y"
        assert plain_gen.row_stride == 2
        assert not plain_gen.accumulated
        assert directional_gen.output_name == "dy"
        assert directional_gen.row_stride == 4

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "bad name"},
            {"local_input_dim": -1},
            {"output_dim": 2.0},
            {"accumulate": "sum"},
        ],
    )
    def test_invalid(self, kwargs):
        settings = dict(name="fn", local_input_dim=1, global_input_dim=0,
                        output_dim=1)
        settings.update(kwargs)
        with pytest.raises((TypeError, ValueError)):
            FunctionSourceGen(**settings)

    def test_plain_function(self, plain_gen, body):
        source = plain_gen.emit_function(body)
        assert source.startswith(
            "__device__ void model_forward_zero(Float *y, const Float *x) {"
        )
        assert "  y[0] = x[0]*x[1];\n" in source

    def test_directional_function(self, directional_gen):
        body = KernelBody(statements=["dy[0] = dx[0];"])
        source = directional_gen.emit_function(body)
        assert "__device__ void model_indep0(Float *const *out," in source
        assert "Float const *const *in)" in source
        assert "Float const *dx = in[1];" in source
        assert "Float *dy = out[0];" in source

    def test_helpers_precede_function(self, plain_gen):
        body = KernelBody(
            statements=["fn_part0(y, x, v);"],
            helpers=["__device__ static void fn_part0() {\n}\n"],
            work_size=1,
        )
        source = plain_gen.emit_function(body)
        assert source.index("fn_part0()") < source.index("model_forward_zero")

    def test_kernel_only(self, plain_gen, body):
        source = plain_gen.emit_source(body, kernel_only=True)
        assert "__global__" not in source
        assert "extern \"C\"" not in source
        assert "model_forward_zero(Float *y" in source

    def test_full_unit(self, plain_gen, body):
        source = plain_gen.emit_source(body)
        assert "MODULE_API" in source
        for symbol in ("allocate", "deallocate", "send_local", "send_global",
                       "receive", "launch", "meta"):
            assert f"model_forward_zero_{symbol}(" in source
        assert "__global__ void model_forward_zero_kernel(" in source
        assert "x[2 + k] = global_input[k];" in source
        assert "output[i * 1 + k] = result[k];" in source
        assert "data.accumulated_output = false;" in source

    def test_directional_kernel_passes_tangent(self, directional_gen):
        body = KernelBody(statements=["dy[0] = dx[0];"])
        source = directional_gen.emit_kernel(body)
        assert "Float const *in[2] = {x, &row[3]};" in source
        assert "model_indep0(out, in);" in source

    @pytest.mark.parametrize(
        "mode, store",
        [
            (Accumulation.SUM, "atomicAdd(&output[k], result[k]);"),
            (Accumulation.MEAN,
             "atomicAdd(&output[k], result[k] / num_total_threads);"),
        ],
    )
    def test_accumulated_output(self, body, mode, store):
        gen = FunctionSourceGen(name="acc", local_input_dim=2,
                                global_input_dim=0, output_dim=1,
                                accumulate=mode)
        source = gen.emit_source(body)
        assert gen.accumulated
        assert store in source
        assert "cudaMemset(dev_acc_output, 0," in source
        assert "data.accumulated_output = true;" in source

    def test_debug_prints(self, plain_gen, body):
        assert "printf" not in plain_gen.emit_kernel(body)
        assert "printf(\"model_forward_zero:\");" in plain_gen.emit_kernel(
            body, debug=True
        )

    def test_errors_are_reported(self, plain_gen, body):
        source = plain_gen.emit_source(body)
        assert "report_cuda_error(status, \"model_forward_zero_launch\");" \
            in source
        assert "return (int)status;" in source
