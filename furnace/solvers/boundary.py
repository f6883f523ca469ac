import numpy as np

from furnace.models.plasma_torch import STEFAN_BOLTZMANN, KELVIN

ADIABATIC = "adiabatic"
FIXED = "fixed"
ROBIN = "robin"


class BoundaryConditionHandler:
    """修改已组装方程组中边界节点的行和右端项

    轴线 (r = 0) 不需要处理: 网格中 r_{-1/2} = 0, 轴线节点没有内侧面,
    通量自然为零. 外壁为对流+辐射的混合边界 (或第一类边界),
    上下底面为绝热或第一类边界.
    """

    def __init__(self, mesh, emissivity, ambient_temperature, convection_coefficient,
                 enable_convection=True, enable_radiation=True,
                 wall=ROBIN, wall_temperature=None,
                 bottom=ADIABATIC, bottom_temperature=None,
                 top=ADIABATIC, top_temperature=None):
        self.mesh = mesh
        self.emissivity = emissivity
        self.ambient_temperature = ambient_temperature
        self.convection_coefficient = convection_coefficient
        self.enable_convection = enable_convection
        self.enable_radiation = enable_radiation
        self.wall = wall
        self.wall_temperature = wall_temperature
        self.bottom = bottom
        self.bottom_temperature = bottom_temperature
        self.top = top
        self.top_temperature = top_temperature

    def fixed_nodes(self):
        """第一类边界节点的 (掩码, 温度) 列表, 后者覆盖前者"""
        nr, nz = self.mesh.shape
        fixed = []
        if self.wall == FIXED:
            mask = np.zeros((nr, nz), dtype=bool)
            mask[-1, :] = True
            fixed.append((mask, self.wall_temperature))
        if self.bottom == FIXED:
            mask = np.zeros((nr, nz), dtype=bool)
            mask[:, 0] = True
            fixed.append((mask, self.bottom_temperature))
        if self.top == FIXED:
            mask = np.zeros((nr, nz), dtype=bool)
            mask[:, -1] = True
            fixed.append((mask, self.top_temperature))
        return fixed

    def impose(self, T):
        """把第一类边界温度写入温度场 (初始化时使用)"""
        T = T.copy()
        for mask, value in self.fixed_nodes():
            T[mask] = value
        return T

    def wall_transfer_coefficient(self, T_wall):
        """外壁总换热系数 h + h_rad (W/(m²·K)), 辐射在 Tⁿ 处线性化"""
        h = np.zeros_like(T_wall)
        if self.enable_convection:
            h = h + self.convection_coefficient
        if self.enable_radiation:
            T_s = T_wall + KELVIN
            T_a = self.ambient_temperature + KELVIN
            h = h + self.emissivity * STEFAN_BOLTZMANN * (T_a ** 2 + T_s ** 2) * (T_a + T_s)
        return h

    def apply(self, system, T):
        """施加外边界条件

        Args:
            system: Discretizer.assemble 返回的 LinearSystem
            T: step n 温度场 (°C)
        """
        if self.wall == ROBIN:
            G_w = self.wall_transfer_coefficient(T[-1, :]) * self.mesh.wall_area
            system.add_diagonal((-1, slice(None)), 0.5 * G_w)
            system.add_rhs((-1, slice(None)), G_w * (self.ambient_temperature - 0.5 * T[-1, :]))

        for mask, value in self.fixed_nodes():
            system.set_dirichlet(mask, value)
        return system
