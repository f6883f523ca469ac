import numpy as np
import pytest

from furnace.errors import FormulaEvaluationError
from furnace.models.formula import FormulaEvaluator, evaluate_formula


def test_arithmetic_and_power_caret():
    assert evaluate_formula("2 + 3 * 4 ^ 2") == pytest.approx(50.0)
    assert evaluate_formula("-x + 1", x=3) == pytest.approx(-2.0)


def test_functions_and_constants():
    assert evaluate_formula("sin(pi / 2) + exp(0) + log(e)") == pytest.approx(3.0)
    assert evaluate_formula("sqrt(16) + abs(-2)") == pytest.approx(6.0)
    assert evaluate_formula("max(1, T) + min(1, T)", T=5) == pytest.approx(6.0)


def test_conditional_is_vectorized():
    T = np.array([50.0, 150.0, 250.0])
    result = evaluate_formula("if(T > 100 and T < 200, 2, 1)", T=T)
    np.testing.assert_array_equal(result, [1.0, 2.0, 1.0])


def test_comparison_chain_and_not():
    T = np.array([0.0, 5.0, 10.0])
    np.testing.assert_array_equal(evaluate_formula("if(0 < T < 10, 1, 0)", T=T), [0, 1, 0])
    np.testing.assert_array_equal(evaluate_formula("if(not T > 1, 1, 0)", T=T), [1, 0, 0])


def test_constant_variables_and_names():
    evaluator = FormulaEvaluator("base * (1 + 0.001 * T)", {"base": 45.0})
    assert evaluator.names == {"base", "T"}
    np.testing.assert_allclose(evaluator.evaluate(T=np.array([0.0, 1000.0])), [45.0, 90.0])


@pytest.mark.parametrize("expression", [
    "",
    "1 +",
    "__import__('os')",
    "T.real",
    "lambda: 1",
    "open(1)",
    "'abc'",
    "[1, 2]",
])
def test_rejected_formulas(expression):
    with pytest.raises(FormulaEvaluationError) as excinfo:
        FormulaEvaluator(expression)
    assert excinfo.value.code == "E008"


def test_unknown_variable():
    with pytest.raises(FormulaEvaluationError):
        evaluate_formula("T * y", T=1.0)


def test_wrong_argument_count():
    with pytest.raises(FormulaEvaluationError):
        evaluate_formula("sin(1, 2)")
    with pytest.raises(FormulaEvaluationError):
        evaluate_formula("if(1, 2)")


@pytest.mark.parametrize("expression", ["1 / 0", "log(-1)", "sqrt(T - 10)"])
def test_non_finite_results(expression):
    with pytest.raises(FormulaEvaluationError):
        evaluate_formula(expression, T=np.array([1.0, 20.0]))
