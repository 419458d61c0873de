import numpy as np
import pytest
import sympy as sp

from cujac.errors import ConfigurationError
from cujac.model import Sparsity, SymbolicModel, create_model
from tests.cpu_reference import dense_jacobian, lambdify_outputs
from tests.system_fixtures import ATOMIC_IMPLEMENTATIONS


class TestSparsity:
    def test_pairs_and_length(self):
        sparsity = Sparsity([0, 0, 1], [0, 2, 0])
        assert len(sparsity) == 3
        assert sparsity.pairs() == [(0, 0), (0, 2), (1, 0)]

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError, match="equal length"):
            Sparsity([0, 1], [0])


class TestSymbolicModel:
    def test_dimensions(self, scenario_model):
        assert scenario_model.domain_size == 3
        assert scenario_model.range_size == 2
        assert scenario_model.name == "scenario"

    def test_scenario_sparsity(self, scenario_model):
        sparsity = scenario_model.jacobian_sparsity()
        assert sparsity.pairs() == [(0, 0), (0, 2), (1, 0)]

    def test_sparsity_cached(self, scenario_model):
        assert (scenario_model.jacobian_sparsity()
                is scenario_model.jacobian_sparsity())

    def test_default_name_from_hash(self):
        model = create_model(["r = 2 * u"], inputs=["u"], outputs=["r"])
        assert model.name == f"model_{model.fn_hash[:8]}"

    def test_same_definition_same_hash(self):
        first = create_model(["t = u + 1", "r = t * 2"],
                             inputs=["u"], outputs=["r"])
        second = create_model(["r = t * 2", "t = u + 1"],
                              inputs=["u"], outputs=["r"])
        assert first.fn_hash == second.fn_hash

    def test_invalid_name(self):
        with pytest.raises(ConfigurationError, match="C identifier"):
            create_model(["r = u"], inputs=["u"], outputs=["r"],
                         name="not-valid")

    def test_invalid_precision(self):
        with pytest.raises(ValueError, match="float32 or float64"):
            create_model(["r = u"], inputs=["u"], outputs=["r"],
                         precision=np.int32)

    def test_unassigned_output(self):
        u, r = sp.symbols("u r", real=True)
        with pytest.raises(ConfigurationError, match="not assigned"):
            SymbolicModel([], [u], [r])

    def test_atomics_used(self, scenario_model, atomic_model):
        assert not scenario_model.atomics_used()
        assert atomic_model.atomics_used()

    def test_forward_zero(self, coupled_model):
        x = [0.3, -1.2, 0.7]
        fn = lambdify_outputs(coupled_model, coupled_model.forward_zero())
        w = x[0] * x[1]
        expected = [w + np.exp(x[2]), x[1]**3 - 0.5 * x[0],
                    w / (1 + x[2]**2)]
        np.testing.assert_allclose(fn(x), expected, rtol=1e-12)

    @pytest.mark.parametrize("column", [0, 1, 2])
    def test_forward_one_matches_jacobian_column(self, coupled_model,
                                                 column):
        x = [0.3, -1.2, 0.7]
        fn = lambdify_outputs(coupled_model,
                              coupled_model.forward_one(column))
        jac = dense_jacobian(coupled_model, x)
        np.testing.assert_allclose(fn(x), jac[:, column], rtol=1e-12)

    def test_forward_one_out_of_range(self, coupled_model):
        with pytest.raises(IndexError):
            coupled_model.forward_one(3)

    def test_jacobian_against_finite_differences(self, coupled_model):
        x = np.array([0.3, -1.2, 0.7])
        f = lambdify_outputs(coupled_model, coupled_model.forward_zero())
        jac = dense_jacobian(coupled_model, x)
        h = 1e-6
        for j in range(3):
            step = np.zeros(3)
            step[j] = h
            column = (f(x + step) - f(x - step)) / (2 * h)
            np.testing.assert_allclose(jac[:, j], column, rtol=1e-6,
                                       atol=1e-8)

    def test_sparse_jacobian_forward(self, coupled_model):
        x = [0.3, -1.2, 0.7]
        sparsity = coupled_model.jacobian_sparsity()
        values = coupled_model.sparse_jacobian_forward(sparsity.rows,
                                                       sparsity.cols)
        fn = lambdify_outputs(coupled_model, values)
        jac = dense_jacobian(coupled_model, x)
        expected = [jac[i, j] for i, j in sparsity.pairs()]
        np.testing.assert_allclose(fn(x), expected, rtol=1e-12)

    def test_reverse_one(self, coupled_model):
        x = [0.3, -1.2, 0.7]
        weights = sp.symbols("w0:3", real=True)
        fn = lambdify_outputs(coupled_model,
                              coupled_model.reverse_one(weights),
                              extra_args=weights)
        py = [1.5, -0.5, 2.0]
        jac = dense_jacobian(coupled_model, x)
        np.testing.assert_allclose(fn(x, *py), np.asarray(py) @ jac,
                                   rtol=1e-12)

    def test_reverse_one_weight_count(self, coupled_model):
        with pytest.raises(ValueError, match="expected 3 weights"):
            coupled_model.reverse_one(sp.symbols("w0:2"))

    def test_atomic_derivative_numeric(self, atomic_model):
        x = [0.4, 1.5]
        jac = dense_jacobian(atomic_model, x, ATOMIC_IMPLEMENTATIONS)
        u0, u1 = x
        expected = np.array([
            [2 * u0 * u1 * u1, 2 * u0 * u1 * u0 + 1],
            [0.0, 3.0],
        ])
        np.testing.assert_allclose(jac, expected, rtol=1e-12)

    def test_inline_depends_on_inputs_only(self, coupled_model):
        expr = coupled_model.jacobian()[2, 2]
        inlined = coupled_model.inline(expr)
        assert inlined.free_symbols <= set(coupled_model.inputs)
