import pytest
import sympy as sp

from cujac.errors import ConfigurationError, EquationWarning
from cujac.model.parser import (
    is_atomic_call,
    make_atomic_function,
    parse_model,
)


class TestParseModel:
    """Parsing of ``lhs = rhs`` equation strings."""

    def test_multiline_string(self):
        equations = """
        t = a * c
        p = t + sin(a)
        """
        assignments, inputs, outputs, atomics = parse_model(
            equations, inputs=["a", "c"], outputs=["p"]
        )
        a, c = inputs
        t = sp.Symbol("t", real=True)
        assert [str(lhs) for lhs, _ in assignments] == ["t", "p"]
        assert assignments[0][1] == a * c
        assert assignments[1][1] == t + sp.sin(a)
        assert outputs == [sp.Symbol("p", real=True)]
        assert atomics == {}

    def test_symbols_are_real(self):
        assignments, inputs, _, _ = parse_model(
            ["r = u"], inputs=["u"], outputs=["r"]
        )
        assert inputs[0].is_real
        assert assignments[0][0].is_real

    def test_comments_and_blank_lines_ignored(self):
        assignments, _, _, _ = parse_model(
            ["# leading comment", "", "r = 2 * u"],
            inputs=["u"],
            outputs=["r"],
        )
        assert len(assignments) == 1

    def test_constants_substituted(self):
        assignments, inputs, _, _ = parse_model(
            ["r = k * u"], inputs=["u"], outputs=["r"], constants={"k": 0.25}
        )
        (u,) = inputs
        assert assignments[0][1] == sp.Float(0.25) * u
        assert not any(str(s) == "k" for s in assignments[0][1].free_symbols)

    def test_ternary_becomes_piecewise(self):
        assignments, inputs, _, _ = parse_model(
            ["r = u**2 if u > 0 else -u"], inputs=["u"], outputs=["r"]
        )
        (u,) = inputs
        assert assignments[0][1] == sp.Piecewise((u**2, u > 0), (-u, True))

    def test_comparison_is_not_assignment(self):
        with pytest.raises(ConfigurationError, match="not of the form"):
            parse_model(["u == 1"], inputs=["u"], outputs=[])

    def test_unknown_function(self):
        with pytest.raises(ConfigurationError, match="isn't part of SymPy"):
            parse_model(["r = mystery(u)"], inputs=["u"], outputs=["r"])

    def test_undeclared_symbol(self):
        with pytest.raises(ConfigurationError, match="undeclared"):
            parse_model(["r = u + z"], inputs=["u"], outputs=["r"])

    def test_missing_output(self):
        with pytest.raises(ConfigurationError, match="not assigned"):
            parse_model(["r = u"], inputs=["u"], outputs=["r", "s"])

    @pytest.mark.parametrize(
        "inputs, match",
        [
            (["x"], "reserved"),
            (["dy"], "reserved"),
            (["_hidden"], "underscore"),
            (["u", "u"], "Duplicate"),
        ],
        ids=["x", "dy", "underscore", "duplicate"],
    )
    def test_invalid_input_names(self, inputs, match):
        with pytest.raises(ConfigurationError, match=match):
            parse_model(["r = 1"], inputs=inputs, outputs=["r"])

    def test_assigned_input_rejected(self):
        with pytest.raises(ConfigurationError, match="also declared"):
            parse_model(["u = 1", "r = u"], inputs=["u"], outputs=["r"])

    def test_unused_input_warns(self):
        with pytest.warns(EquationWarning, match="do not appear"):
            parse_model(["r = 2 * u"], inputs=["u", "w"], outputs=["r"])


class TestAtomics:
    """Opaque device-function calls."""

    def test_make_atomic_function_flags(self):
        sq = make_atomic_function("sq")
        u = sp.Symbol("u", real=True)
        assert is_atomic_call(sq(u))
        assert not is_atomic_call(sp.sin(u))

    def test_derivative_is_atomic_call(self):
        sq = make_atomic_function("sq")
        u, w = sp.symbols("u w", real=True)
        derivative = sp.diff(sq(u * w), u)
        calls = list(derivative.atoms(sp.Function))
        assert len(calls) == 1
        assert is_atomic_call(calls[0])
        assert calls[0].func.__name__ == "d_sq"
        assert calls[0].args == (u * w, sp.Integer(0))
        assert derivative == calls[0] * w

    def test_custom_derivative_name(self):
        f = make_atomic_function("f", "f_grad")
        u, w = sp.symbols("u w", real=True)
        derivative = sp.diff(f(u, w), w)
        assert derivative.func.__name__ == "f_grad"
        assert derivative.args[-1] == sp.Integer(1)

    def test_parse_with_atomics(self):
        assignments, inputs, _, atomics = parse_model(
            ["r = sq(u) + 1"],
            inputs=["u"],
            outputs=["r"],
            atomics={"sq": None},
        )
        assert set(atomics) == {"sq"}
        calls = assignments[0][1].atoms(sp.Function)
        assert any(is_atomic_call(call) for call in calls)
