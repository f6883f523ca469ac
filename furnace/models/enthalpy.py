"""
焓法相变模型

H(T) = ∫c_p dT + Σ L_k * S(T - T_k), 其中 S 为半宽 eps 的 C1 光滑阶跃函数.
显热部分在细网格上用梯形积分制表 (常数 c_p 时精确), 表外线性外推.
逆映射 T(H) 用带区间保护的牛顿迭代, 迭代次数有上限.
"""

import numpy as np
from scipy.integrate import cumulative_trapezoid

ABSOLUTE_ZERO = -273.15
WATER_LATENT_HEAT = 2.257e6   # 水的汽化潜热 (J/kg)
MOISTURE_POINT = 100.0        # 水分蒸发温度 (°C)
REFERENCE_TEMPERATURE = 0.0   # H(0 °C) = 0


def heaviside_c1(x, eps):
    """C1 光滑阶跃函数, 在 [-eps, eps] 内为三次多项式"""
    x = np.asarray(x, dtype=float)
    inside = -x ** 3 / (4 * eps ** 3) + 3 * x / (4 * eps) + 0.5
    return np.where(np.abs(x) < eps, inside, np.where(x > 0, 1.0, 0.0))


def dirac_c1(x, eps):
    """heaviside_c1 的导数"""
    x = np.asarray(x, dtype=float)
    return np.where(np.abs(x) < eps, 3.0 / (4 * eps) * (1.0 - x ** 2 / eps ** 2), 0.0)


class LatentBand:
    def __init__(self, name, temperature, latent_heat):
        self.name = name
        self.temperature = float(temperature)
        self.latent_heat = float(latent_heat)

    def __repr__(self):
        return f"LatentBand({self.name!r}, T={self.temperature}, L={self.latent_heat})"


class EnthalpyMap:
    def __init__(self, material_model, t_low=-100.0, t_high=4000.0, half_width=5.0,
                 resolution=1.0, max_iterations=60, phase_changes=True):
        """构建焓-温度映射

        Args:
            material_model: MaterialModel, 提供 c_p(T)
            t_low, t_high: 制表温度范围 (°C), 会自动扩展以覆盖全部相变带
            half_width: 相变光滑带半宽 (°C)
            resolution: 显热表的温度步长 (°C)
            max_iterations: 逆映射牛顿迭代上限
            phase_changes: 为 False 时不计潜热, H 只含显热
        """
        if not half_width > 0:
            raise ValueError(f"Phase change half width must be positive, got {half_width}")

        props = material_model.properties
        self.half_width = float(half_width)
        self.max_iterations = int(max_iterations)

        self.bands = []
        if phase_changes:
            if props.moisture_content > 0:
                self.bands.append(LatentBand("moisture", MOISTURE_POINT,
                                             props.moisture_content * WATER_LATENT_HEAT))
            if props.has_fusion:
                self.bands.append(LatentBand("fusion", props.melting_point, props.latent_heat_fusion))
            if props.has_vaporization:
                self.bands.append(LatentBand("vaporization", props.vaporization_point,
                                             props.latent_heat_vaporization))

        margin = 2 * self.half_width + resolution
        t_low = min([t_low, REFERENCE_TEMPERATURE] + [b.temperature - margin for b in self.bands])
        t_high = max([t_high, REFERENCE_TEMPERATURE] + [b.temperature + margin for b in self.bands])
        t_low = max(t_low, ABSOLUTE_ZERO)
        n = int(np.ceil((t_high - t_low) / resolution)) + 1

        # 显热表
        self.grid = np.linspace(t_low, t_high, max(n, 2))
        cp = material_model.specific_heat(self.grid)
        sensible = cumulative_trapezoid(cp, self.grid, initial=0.0)
        self._sensible_table = sensible - np.interp(REFERENCE_TEMPERATURE, self.grid, sensible)
        self._slopes = np.diff(self._sensible_table) / np.diff(self.grid)

        # 逆映射的初值表
        self._enthalpy_table = self.enthalpy(self.grid)

    def _sensible(self, T):
        grid, table = self.grid, self._sensible_table
        h = np.interp(T, grid, table)
        h = np.where(T < grid[0], table[0] + self._slopes[0] * (T - grid[0]), h)
        return np.where(T > grid[-1], table[-1] + self._slopes[-1] * (T - grid[-1]), h)

    def _sensible_slope(self, T):
        index = np.clip(np.searchsorted(self.grid, T, side="right") - 1, 0, len(self._slopes) - 1)
        return self._slopes[index]

    def latent_enthalpy(self, T):
        """已吸收的潜热部分 (J/kg)"""
        T = np.asarray(T, dtype=float)
        latent = np.zeros_like(T)
        for band in self.bands:
            latent = latent + band.latent_heat * heaviside_c1(T - band.temperature, self.half_width)
        return latent

    def enthalpy(self, T):
        """比焓 H(T) (J/kg), 以 0 °C 为基准"""
        T = np.asarray(T, dtype=float)
        return self._sensible(T) + self.latent_enthalpy(T)

    def heat_capacity(self, T):
        """等效比热 dH/dT (J/(kg·K)), 含潜热"""
        T = np.asarray(T, dtype=float)
        c = self._sensible_slope(T)
        for band in self.bands:
            c = c + band.latent_heat * dirac_c1(T - band.temperature, self.half_width)
        return c

    def temperature(self, H):
        """由比焓反求温度"""
        H = np.asarray(H, dtype=float)
        grid, table = self.grid, self._enthalpy_table

        # 表外焓只有线性显热
        below = H < table[0]
        above = H > table[-1]
        t_below = grid[0] + (H - table[0]) / self._slopes[0]
        t_above = grid[-1] + (H - table[-1]) / self._slopes[-1]

        index = np.clip(np.searchsorted(table, H, side="right") - 1, 0, len(grid) - 2)
        lo = grid[index]
        hi = grid[index + 1]
        T = np.interp(H, table, grid)

        tolerance = 1e-12 * (np.abs(H) + np.abs(table[-1] - table[0]))
        for _ in range(self.max_iterations):
            g = self.enthalpy(T) - H
            done = (np.abs(g) <= tolerance) | (hi - lo <= 1e-12 * (1.0 + np.abs(T)))
            if np.all(done | below | above):
                break
            lo = np.where(g < 0, T, lo)
            hi = np.where(g > 0, T, hi)
            with np.errstate(divide="ignore", invalid="ignore"):
                T_new = T - g / self.heat_capacity(T)
            outside = ~np.isfinite(T_new) | (T_new <= lo) | (T_new >= hi)
            T_new = np.where(outside, 0.5 * (lo + hi), T_new)
            T = np.where(done, T, T_new)

        T = np.where(below, t_below, np.where(above, t_above, T))
        if T.ndim == 0:
            return float(T)
        return T

    def _band_fraction(self, H, name):
        H = np.asarray(H, dtype=float)
        for band in self.bands:
            if band.name == name:
                h_start, h_end = self.enthalpy(
                    np.array([band.temperature - self.half_width, band.temperature + self.half_width])
                )
                return np.clip((H - h_start) / (h_end - h_start), 0.0, 1.0)
        return np.zeros_like(H)

    def melt_fraction(self, H):
        """焓在熔化潜热带中的位置, 即液相分数"""
        return self._band_fraction(H, "fusion")

    def vapor_fraction(self, H):
        """焓在汽化潜热带中的位置, 即气相分数"""
        return self._band_fraction(H, "vaporization")
