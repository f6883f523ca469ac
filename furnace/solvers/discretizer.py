"""
Crank-Nicolson 有限体积离散

对每个节点控制体:

    ρV c_eff/Δt (T* - Tⁿ) = ½ΣG(T*_nb - T*) + ½ΣG(Tⁿ_nb - Tⁿ) + qV

G 为相邻节点间的导热导纳 k_{face} A_face / Δ, k_face 取两侧 k(Tⁿ) 的调和平均.
k 与 c_eff = dH/dT 滞后到 Tⁿ, 热源在 step n 显式计算, 因此每步只解一个线性方程组.
"""

import numpy as np
from scipy.sparse import csr_matrix


class LinearSystem:
    """五点格式的稀疏方程组 A·x = b, 按节点 (i, j) 存储系数

    west/east/south/north 分别是与 (i-1, j), (i+1, j), (i, j-1), (i, j+1)
    的耦合系数, 不存在的邻居系数恒为 0.
    """

    def __init__(self, mesh, diagonal, west, east, south, north, rhs, capacity, mass_rate):
        self.mesh = mesh
        self.diagonal = diagonal
        self.west = west
        self.east = east
        self.south = south
        self.north = north
        self.rhs = rhs
        self.capacity = capacity      # ρV c_eff/Δt
        self.mass_rate = mass_rate    # ρV/Δt
        self.dirichlet = np.zeros(mesh.shape, dtype=bool)
        self.dirichlet_values = mesh.full(0.0)
        self._matrix = None

    def add_diagonal(self, index, value):
        self.diagonal[index] += value
        self._matrix = None

    def add_rhs(self, index, value):
        self.rhs[index] += value
        self._matrix = None

    def set_dirichlet(self, index, value):
        """将节点行替换为恒等行 x = value"""
        for coeffs in (self.west, self.east, self.south, self.north):
            coeffs[index] = 0.0
        self.diagonal[index] = 1.0
        self.rhs[index] = value
        self.dirichlet[index] = True
        self.dirichlet_values[index] = value
        self._matrix = None

    def matrix(self):
        """按行优先顺序组装 CSR 矩阵"""
        if self._matrix is None:
            nr, nz = self.mesh.shape
            k = np.arange(nr * nz).reshape(nr, nz)
            rows = [k.ravel()]
            cols = [k.ravel()]
            data = [self.diagonal.ravel()]
            for coeffs, offset in ((self.west, -nz), (self.east, nz), (self.south, -1), (self.north, 1)):
                mask = coeffs != 0.0
                rows.append(k[mask])
                cols.append(k[mask] + offset)
                data.append(coeffs[mask])
            A = csr_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(nr * nz, nr * nz),
            )
            A.sort_indices()
            self._matrix = A
        return self._matrix

    def b(self):
        return self.rhs.ravel().copy()

    def heat_rate(self, x_new, x_old):
        """与本步离散一致的节点净吸热率 (W)

        等于 ½F(T*) + ½F(Tⁿ) + qV + 边界换热, 即 b - A x* + M (x* - xⁿ).
        恒等行 (第一类边界) 上的值没有物理意义.
        """
        x_new = np.asarray(x_new, dtype=float).ravel()
        x_old = np.asarray(x_old, dtype=float).ravel()
        rate = self.rhs.ravel() - self.matrix() @ x_new + self.capacity.ravel() * (x_new - x_old)
        return rate.reshape(self.mesh.shape)


class Discretizer:
    def __init__(self, mesh, material_model, enthalpy_map):
        self.mesh = mesh
        self.material = material_model
        self.enthalpy_map = enthalpy_map

    def conductances(self, T):
        """径向与轴向导纳 (W/K), 形状分别为 (nr-1, nz) 和 (nr, nz-1)"""
        mesh = self.mesh
        k = self.material.conductivity(T)
        k_r = _harmonic_mean(k[:-1, :], k[1:, :])
        k_z = _harmonic_mean(k[:, :-1], k[:, 1:])
        G_r = k_r * mesh.radial_face_area / mesh.dr
        G_z = k_z * mesh.axial_face_area[:, :-1] / mesh.dz
        return G_r, G_z

    def conduction(self, T, G_r, G_z):
        """净导热流入 F(T) (W)"""
        flux = np.zeros_like(T)
        q_r = G_r * (T[1:, :] - T[:-1, :])
        q_z = G_z * (T[:, 1:] - T[:, :-1])
        flux[:-1, :] += q_r
        flux[1:, :] -= q_r
        flux[:, :-1] += q_z
        flux[:, 1:] -= q_z
        return flux

    def assemble(self, T, source, dt):
        """组装一个 Crank-Nicolson 步的方程组

        Args:
            T: step n 的温度场 (°C)
            source: 体积热源 (W/m³), 在 step n 计算
            dt: 时间步长 (s)

        Returns:
            LinearSystem (尚未施加外边界条件)
        """
        mesh = self.mesh
        G_r, G_z = self.conductances(T)

        mass_rate = self.material.density * mesh.cell_volume / dt
        capacity = mass_rate * self.enthalpy_map.heat_capacity(T)

        west = mesh.full(0.0)
        east = mesh.full(0.0)
        south = mesh.full(0.0)
        north = mesh.full(0.0)
        east[:-1, :] = -0.5 * G_r
        west[1:, :] = -0.5 * G_r
        north[:, :-1] = -0.5 * G_z
        south[:, 1:] = -0.5 * G_z

        diagonal = capacity - (west + east + south + north)
        rhs = capacity * T + 0.5 * self.conduction(T, G_r, G_z) + source * mesh.cell_volume

        return LinearSystem(mesh, diagonal, west, east, south, north, rhs, capacity, mass_rate)


def _harmonic_mean(a, b):
    return 2.0 * a * b / (a + b)
