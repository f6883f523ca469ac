import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags
from scipy.sparse.linalg import spsolve

from furnace.errors import ConvergenceError
from furnace.solvers.sor import SORSolver


def five_point_matrix(n, diagonal):
    """n×n 网格上的五点格式矩阵, 邻居系数为 -1"""
    size = n * n
    main = np.full(size, float(diagonal))
    east = -np.ones(size - 1)
    east[np.arange(1, size) % n == 0] = 0.0
    north = -np.ones(size - n)
    return csr_matrix(diags([main, east, east, north, north], [0, 1, -1, n, -n]))


def test_converges_to_direct_solution():
    A = five_point_matrix(10, 4.5)
    rng = np.random.default_rng(0)
    b = rng.uniform(-1.0, 1.0, A.shape[0])
    result = SORSolver(omega=1.5, tolerance=1e-12, max_iterations=2000).solve(A, b, np.zeros_like(b))
    assert result.converged
    np.testing.assert_allclose(result.x, spsolve(A.tocsc(), b), atol=1e-9)
    assert result.residual == result.residual_history[-1]
    assert result.iterations == len(result.residual_history)


def test_residual_decreases_monotonically():
    A = five_point_matrix(10, 20.0)
    b = np.linspace(0.0, 100.0, A.shape[0])
    result = SORSolver(omega=1.2, tolerance=1e-10, max_iterations=200).solve(A, b, np.zeros_like(b))
    assert result.converged
    history = np.array(result.residual_history)
    assert np.all(np.diff(history) <= 0.0)


def test_exact_initial_guess_converges_immediately():
    A = five_point_matrix(5, 6.0)
    x = np.arange(25.0)
    result = SORSolver().solve(A, A @ x, x)
    assert result.converged
    assert result.iterations == 1
    np.testing.assert_allclose(result.x, x)


def test_initial_guess_not_modified():
    A = five_point_matrix(4, 5.0)
    x0 = np.ones(16)
    SORSolver().solve(A, np.zeros(16), x0)
    assert np.all(x0 == 1.0)


def test_not_converged_returns_best_iterate():
    A = five_point_matrix(10, 4.1)
    b = np.ones(A.shape[0])
    result = SORSolver(omega=1.2, tolerance=1e-14, max_iterations=3).solve(A, b, np.zeros_like(b))
    assert not result.converged
    assert result.iterations == 3
    assert result.residual <= min(result.residual_history)


def test_solve_or_raise():
    A = five_point_matrix(10, 4.1)
    b = np.ones(A.shape[0])
    solver = SORSolver(omega=1.2, tolerance=1e-14, max_iterations=3)
    with pytest.raises(ConvergenceError) as excinfo:
        solver.solve_or_raise(A, b, np.zeros_like(b))
    assert excinfo.value.code == "E004"
    assert excinfo.value.iterations == 3
    # 单次求解可以放宽设置
    result = solver.solve_or_raise(A, b, np.zeros_like(b), tolerance=1e-8, max_iterations=1000)
    assert result.converged


@pytest.mark.parametrize("kwargs", [
    {"omega": 0.0},
    {"omega": 2.0},
    {"tolerance": 0.0},
    {"max_iterations": 0},
])
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        SORSolver(**kwargs)


def test_zero_diagonal_rejected():
    A = csr_matrix(np.array([[0.0, 1.0], [1.0, 2.0]]))
    with pytest.raises(ValueError):
        SORSolver().solve(A, np.ones(2), np.zeros(2))
