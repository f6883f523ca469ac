"""
无限长实心圆柱的解析解 (Carslaw & Jaeger)

初始温度 T0 均匀, t = 0 时表面温度突变为 Ts:

    T(r, t) = Ts + (T0 - Ts) * (2/R) * Σ J0(β_n r) / (β_n J1(β_n R)) * exp(-α β_n² t)

其中 β_n R 为 J0 的第 n 个零点.
"""

import numpy as np
from scipy.special import j0, j1, jn_zeros

from furnace.models.material import MaterialProperties
from furnace.simulation.parameters import SimulationParameters
from furnace.solvers.boundary import FIXED


def cylinder_temperature(r, t, radius, diffusivity, initial_temperature, surface_temperature,
                         terms=200):
    """
    Args:
        r: 径向坐标 (m), 标量或数组
        t: 时间 (s), t > 0
        radius: 圆柱半径 R (m)
        diffusivity: 热扩散率 α = k/(ρ c_p) (m²/s)
        initial_temperature: T0
        surface_temperature: Ts
        terms: 级数项数

    Returns:
        与 r 形状相同的温度
    """
    if not t > 0:
        raise ValueError(f"Analytical solution needs t > 0, got {t}")
    r = np.asarray(r, dtype=float)
    beta = jn_zeros(0, terms) / radius

    rb = r[..., None] * beta
    series = j0(rb) / (beta * j1(beta * radius)) * np.exp(-diffusivity * beta ** 2 * t)
    theta = (2.0 / radius) * series.sum(axis=-1)
    return surface_temperature + (initial_temperature - surface_temperature) * theta


def relative_l2_error(numerical, exact, reference):
    """温升的相对 L2 误差 ||T_num - T_exact|| / ||T_exact - T_ref||"""
    numerical = np.asarray(numerical, dtype=float)
    exact = np.asarray(exact, dtype=float)
    return float(np.linalg.norm(numerical - exact) / np.linalg.norm(exact - reference))


def benchmark_parameters(nr=50, nz=50, time_step=0.1, total_time=60.0,
                         initial_temperature=25.0, surface_temperature=500.0):
    """圆柱突加壁温算例: 上下底面绝热, 外壁第一类边界, 无热源, 常物性"""
    params = SimulationParameters()
    params.radius = 0.05
    params.height = 0.05
    params.nr = nr
    params.nz = nz
    params.material = MaterialProperties(
        name="Benchmark steel", density=7850.0, specific_heat=490.0, thermal_conductivity=45.0,
    )
    params.initial_temperature = initial_temperature
    params.ambient_temperature = initial_temperature
    params.wall_condition = FIXED
    params.wall_temperature = surface_temperature
    params.enable_convection = False
    params.enable_radiation = False
    params.enable_phase_changes = False
    params.time_step = time_step
    params.total_time = total_time
    params.output_interval = 100
    return params


def benchmark_error(controller):
    """已完成的算例与解析解之间温升的相对 L2 误差"""
    params = controller.parameters
    material = params.material
    diffusivity = material.thermal_conductivity / (material.density * material.specific_heat)
    field = controller.field
    exact = cylinder_temperature(
        controller.mesh.r, field.time, params.radius, diffusivity,
        params.initial_temperature, params.wall_temperature,
    )
    exact = np.repeat(exact[:, None], controller.mesh.nz, axis=1)
    return relative_l2_error(field.temperature, exact, params.initial_temperature)
