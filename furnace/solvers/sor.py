"""
逐次超松弛 (SOR) 迭代求解器

按行优先顺序做 Gauss-Seidel 扫描, 每个节点使用最新的邻居值.
扫描核在 CSR 数组上用 numba 编译.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from numba import njit

from furnace.errors import ConvergenceError

logger = logging.getLogger(__name__)


@njit(cache=True)
def _sor_sweep(indptr, indices, data, b, x, omega):
    max_update = 0.0
    for row in range(x.shape[0]):
        diag = 0.0
        sigma = 0.0
        for k in range(indptr[row], indptr[row + 1]):
            col = indices[k]
            if col == row:
                diag += data[k]
            else:
                sigma += data[k] * x[col]
        update = omega * ((b[row] - sigma) / diag - x[row])
        x[row] += update
        if abs(update) > max_update or update != update:
            max_update = abs(update)
    return max_update


@njit(cache=True)
def _residual_norm(indptr, indices, data, b, x):
    norm = 0.0
    for row in range(x.shape[0]):
        r = b[row]
        for k in range(indptr[row], indptr[row + 1]):
            r -= data[k] * x[indices[k]]
        if abs(r) > norm or r != r:
            norm = abs(r)
    return norm


@dataclass
class SolverResult:
    """SOR 求解结果; converged 为 False 时 x 为残差最小的迭代值"""
    x: np.ndarray
    iterations: int
    converged: bool
    residual: float
    max_update: float
    residual_history: list = field(default_factory=list)


class SORSolver:
    def __init__(self, omega=1.25, tolerance=1e-6, max_iterations=500):
        """
        Args:
            omega: 松弛因子, 0 < omega < 2 (超松弛取 1 < omega < 2)
            tolerance: 收敛判据, 一次扫描中节点最大修正量
            max_iterations: 最大扫描次数
        """
        if not 0.0 < omega < 2.0:
            raise ValueError(f"Relaxation factor must lie in (0, 2), got {omega}")
        if not tolerance > 0:
            raise ValueError(f"Tolerance must be positive, got {tolerance}")
        if max_iterations < 1:
            raise ValueError(f"Maximum iterations must be at least 1, got {max_iterations}")
        self.omega = omega
        self.tolerance = tolerance
        self.max_iterations = int(max_iterations)

    def solve(self, A, b, x0, tolerance=None, max_iterations=None):
        """求解 A·x = b

        Args:
            A: scipy.sparse CSR 矩阵, 对角元非零
            b: 右端项
            x0: 初值 (不会被修改)
            tolerance, max_iterations: 覆盖本次求解的设置

        Returns:
            SolverResult
        """
        tolerance = self.tolerance if tolerance is None else tolerance
        max_iterations = self.max_iterations if max_iterations is None else int(max_iterations)

        if np.any(A.diagonal() == 0):
            raise ValueError("SOR requires a matrix without zero diagonal entries")

        indptr = A.indptr
        indices = A.indices
        data = np.asarray(A.data, dtype=np.float64)
        b = np.asarray(b, dtype=np.float64).ravel()
        x = np.array(x0, dtype=np.float64).ravel()

        best_x = x.copy()
        best_residual = _residual_norm(indptr, indices, data, b, x)
        history = []
        max_update = np.inf
        converged = False
        iterations = 0

        for iterations in range(1, max_iterations + 1):
            max_update = _sor_sweep(indptr, indices, data, b, x, self.omega)
            residual = _residual_norm(indptr, indices, data, b, x)
            history.append(residual)
            if not np.isfinite(max_update) or not np.isfinite(residual):
                logger.debug("SOR diverged after %d sweeps", iterations)
                break
            if residual <= best_residual:
                best_residual = residual
                best_x[:] = x
            if max_update <= tolerance:
                converged = True
                break

        if converged:
            return SolverResult(x, iterations, True, history[-1], max_update, history)
        return SolverResult(best_x, iterations, False, best_residual, max_update, history)

    def solve_or_raise(self, A, b, x0, **kwargs):
        """求解, 未收敛时抛出 ConvergenceError"""
        result = self.solve(A, b, x0, **kwargs)
        if not result.converged:
            raise ConvergenceError(
                f"SOR did not converge in {result.iterations} sweeps "
                f"(max update {result.max_update:.3e}, residual {result.residual:.3e})",
                iterations=result.iterations,
                residual=result.residual,
            )
        return result
