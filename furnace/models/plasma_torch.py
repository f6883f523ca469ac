import logging
from dataclasses import dataclass, asdict

import numpy as np

from furnace.errors import ValidationError

logger = logging.getLogger(__name__)

STEFAN_BOLTZMANN = 5.670374419e-8  # W/(m²·K⁴)
KELVIN = 273.15


@dataclass(frozen=True)
class PlasmaTorch:
    """等离子炬配置

    位置在 (r, z) 平面内; pitch 为相对水平面的仰角 (向 +z 为正),
    yaw 为偏离子午面的角度, 均为度.
    """
    r_position: float = 0.0         # m
    z_position: float = 0.0         # m
    pitch: float = 90.0             # deg
    yaw: float = 0.0                # deg
    power: float = 100.0            # kW
    efficiency: float = 0.8
    gas_flow: float = 0.01          # kg/s
    gas_temperature: float = 5000.0  # K
    beam_radius: float = 0.1        # 高斯衰减宽度 σ (m)
    id: str = "torch-1"

    @property
    def absorbed_power(self):
        """沉积到炉料中的功率 P·η (W)"""
        return self.power * 1e3 * self.efficiency

    def direction(self):
        """炬轴在 (r, z) 平面内的单位方向, 无平面分量时返回 None"""
        pitch = np.radians(self.pitch)
        yaw = np.radians(self.yaw)
        d_r = np.cos(pitch) * np.cos(yaw)
        d_z = np.sin(pitch)
        norm = np.hypot(d_r, d_z)
        if norm < 1e-12:
            return None
        return d_r / norm, d_z / norm

    def validate(self, radius, height):
        errors = []
        if not 0.0 <= self.r_position <= radius:
            errors.append(
                f"Radial position of torch {self.id} ({self.r_position}) outside [0, {radius}]"
            )
        if not 0.0 <= self.z_position <= height:
            errors.append(
                f"Axial position of torch {self.id} ({self.z_position}) outside [0, {height}]"
            )
        if not self.power > 0:
            errors.append(f"Power of torch {self.id} must be positive, got {self.power}")
        if not 0.0 < self.efficiency <= 1.0:
            errors.append(f"Efficiency of torch {self.id} must lie in (0, 1], got {self.efficiency}")
        if self.gas_flow < 0:
            errors.append(f"Gas flow of torch {self.id} must not be negative, got {self.gas_flow}")
        if not self.gas_temperature > 0:
            errors.append(f"Gas temperature of torch {self.id} must be positive (K), got {self.gas_temperature}")
        if not self.beam_radius > 0:
            errors.append(f"Beam radius of torch {self.id} must be positive, got {self.beam_radius}")
        return errors

    @classmethod
    def from_dict(cls, data):
        """从参数表构建, 同时接受 torchPower 等外部键名"""
        data = dict(data)
        position = data.pop("torchPosition", None)
        if position is not None:
            data["r_position"] = position.get("r", 0.0)
            data["z_position"] = position.get("z", 0.0)
        direction = data.pop("torchDirection", None)
        if direction is not None:
            data["pitch"] = direction.get("pitch", 90.0)
            data["yaw"] = direction.get("yaw", 0.0)
        aliases = {
            "torchPower": "power",
            "torchEfficiency": "efficiency",
            "torchTemperature": "gas_temperature",
            "rPosition": "r_position",
            "zPosition": "z_position",
            "gasFlow": "gas_flow",
            "gasTemperature": "gas_temperature",
            "beamRadius": "beam_radius",
        }
        known = set(cls.__dataclass_fields__)
        values = {}
        for key, value in data.items():
            name = aliases.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown torch property '{key}'")
            values[name] = value
        return cls(**values)

    def to_dict(self):
        return asdict(self)


class HeatSources:
    """单个时间步的体积热源 (W/m³)"""

    def __init__(self, radiation, convection, deposition):
        self.radiation = radiation
        self.convection = convection
        self.deposition = deposition

    def total(self):
        return self.radiation + self.convection + self.deposition


class TorchHeatSource:
    def __init__(self, mesh, torches, material_model, convection_coefficient,
                 enable_radiation=True, enable_convection=True):
        """预计算每个炬的视角因子和功率沉积分布

        Args:
            mesh: Mesh
            torches: PlasmaTorch 列表
            material_model: MaterialModel (提供发射率)
            convection_coefficient: 炬气对流换热系数 h (W/(m²·K))
            enable_radiation: 是否计算辐射项
            enable_convection: 是否计算对流项
        """
        self.mesh = mesh
        self.torches = list(torches)
        self.emissivity = material_model.emissivity
        self.convection_coefficient = convection_coefficient
        self.enable_radiation = enable_radiation
        self.enable_convection = enable_convection

        # 单位换热面积对应的体积比 A/V
        self.exchange_ratio = mesh.axial_face_area / mesh.cell_volume

        self.view_factors = [self.view_factor(torch) for torch in self.torches]
        self.deposition = mesh.full(0.0)
        for torch, factor in zip(self.torches, self.view_factors):
            self.deposition += self._deposition_density(torch, factor)
        logger.debug("Configured %d torch(es), deposited power %.1f W",
                     len(self.torches), self.total_power())

    def view_factor(self, torch):
        """高斯视角因子 F = exp(-d²/2σ²), d 为节点到炬轴半直线的平面距离"""
        R, Z = self.mesh.grid()
        v_r = R - torch.r_position
        v_z = Z - torch.z_position
        dist2 = v_r ** 2 + v_z ** 2
        direction = torch.direction()
        if direction is not None:
            along = v_r * direction[0] + v_z * direction[1]
            perpendicular2 = np.maximum(dist2 - along ** 2, 0.0)
            dist2 = np.where(along > 0, perpendicular2, dist2)
        return np.exp(-dist2 / (2.0 * torch.beam_radius ** 2))

    def _deposition_density(self, torch, factor):
        weights = factor * self.mesh.cell_volume
        total = weights.sum()
        if not total > 0:
            # 光束比网格还窄, 全部沉积到最近节点
            i = int(round(torch.r_position / self.mesh.dr))
            j = int(round(torch.z_position / self.mesh.dz))
            weights = self.mesh.full(0.0)
            weights[i, j] = self.mesh.cell_volume[i, j]
            total = weights.sum()
        return torch.absorbed_power * weights / total / self.mesh.cell_volume

    def total_power(self):
        """全部炬的沉积功率之和 (W)"""
        return sum(torch.absorbed_power for torch in self.torches)

    def compute(self, temperature):
        """计算 step n 的体积热源

        Args:
            temperature: 当前温度场 (°C)

        Returns:
            HeatSources
        """
        radiation = self.mesh.full(0.0)
        convection = self.mesh.full(0.0)
        T_kelvin = temperature + KELVIN

        for torch, factor in zip(self.torches, self.view_factors):
            if self.enable_radiation:
                flux = self.emissivity * STEFAN_BOLTZMANN * factor * (
                    torch.gas_temperature ** 4 - T_kelvin ** 4
                )
                radiation += flux * self.exchange_ratio
            if self.enable_convection:
                flux = self.convection_coefficient * factor * (torch.gas_temperature - KELVIN - temperature)
                convection += flux * self.exchange_ratio

        return HeatSources(radiation, convection, self.deposition.copy())
