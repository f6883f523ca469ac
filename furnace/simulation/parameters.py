import json
import math
import numbers

from furnace.errors import ValidationError
from furnace.models.material import MaterialProperties, get_material
from furnace.models.plasma_torch import PlasmaTorch
from furnace.solvers.boundary import ADIABATIC, FIXED, ROBIN

# 外部参数表键名 -> 属性名
_SCHEMA_KEYS = {
    "furnaceRadius": "radius",
    "furnaceHeight": "height",
    "meshRadialCells": "nr",
    "meshAxialCells": "nz",
    "simulationTimeStep": "time_step",
    "simulationDuration": "total_time",
    "maxIterations": "max_iterations",
    "convergenceTolerance": "tolerance",
    "relaxationFactor": "relaxation_factor",
    "initialTemperature": "initial_temperature",
    "ambientTemperature": "ambient_temperature",
    "convectionCoefficient": "convection_coefficient",
    "enableConvection": "enable_convection",
    "enableRadiation": "enable_radiation",
    "enablePhaseChanges": "enable_phase_changes",
}

# 类型要求: 整数, 开关, 实数 (可选温度另行处理)
_INTEGER_FIELDS = ("nr", "nz", "max_iterations", "output_interval")
_FLAG_FIELDS = ("enable_convection", "enable_radiation", "enable_phase_changes", "formula_fallback")
_REAL_FIELDS = (
    "height", "radius", "initial_temperature", "ambient_temperature", "convection_coefficient",
    "phase_change_half_width", "time_step", "total_time", "relaxation_factor", "tolerance",
    "max_temperature",
)
_OPTIONAL_REAL_FIELDS = ("wall_temperature", "bottom_temperature", "top_temperature")


def _type_errors(params):
    errors = []
    for name in _INTEGER_FIELDS:
        value = getattr(params, name)
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            errors.append(f"Parameter '{name}' must be an integer, got {value!r}")
    for name in _FLAG_FIELDS:
        value = getattr(params, name)
        if not isinstance(value, bool):
            errors.append(f"Parameter '{name}' must be a boolean, got {value!r}")
    for name in _REAL_FIELDS + _OPTIONAL_REAL_FIELDS:
        value = getattr(params, name)
        if value is None and name in _OPTIONAL_REAL_FIELDS:
            continue
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            errors.append(f"Parameter '{name}' must be a number, got {value!r}")
    return errors


class SimulationParameters:
    def __init__(self):
        # 几何参数
        self.height = 1.0    # 炉膛高度 (m)
        self.radius = 0.5    # 炉膛半径 (m)

        # 网格
        self.nr = 20         # 径向节点数
        self.nz = 20         # 轴向节点数

        # 温度与换热
        self.initial_temperature = 25.0     # 初始温度 (°C)
        self.ambient_temperature = 25.0     # 环境温度 (°C)
        self.convection_coefficient = 10.0  # 对流换热系数 (W/(m²·K))
        self.enable_convection = True
        self.enable_radiation = True
        self.enable_phase_changes = True
        self.phase_change_half_width = 5.0  # 相变光滑带半宽 (°C)

        # 边界条件: 外壁 "robin" 或 "fixed", 上下底面 "adiabatic" 或 "fixed"
        self.wall_condition = ROBIN
        self.wall_temperature = None        # °C
        self.bottom_condition = ADIABATIC
        self.bottom_temperature = None      # °C
        self.top_condition = ADIABATIC
        self.top_temperature = None         # °C

        # 时间步长设置
        self.time_step = 1.0      # 时间步长 (s)
        self.total_time = 100.0   # 总模拟时间 (s)

        # SOR 求解器
        self.relaxation_factor = 1.25
        self.tolerance = 1e-6     # 节点最大修正量 (°C)
        self.max_iterations = 500
        self.formula_fallback = True

        # 发散判据 (°C)
        self.max_temperature = 1.0e5

        # 等离子炬与材料
        self.torches = []
        self.material = get_material("steel")

        # 输出控制
        self.output_interval = 10  # 每隔多少步记录温度场并输出进度

    @property
    def time_steps(self):
        """总步数, 最后一步可能不足一个 time_step"""
        return max(1, int(math.ceil(self.total_time / self.time_step - 1e-9)))

    def add_torch(self, torch):
        self.torches.append(torch)

    def remove_torch(self, torch_id):
        before = len(self.torches)
        self.torches = [t for t in self.torches if t.id != torch_id]
        return len(self.torches) < before

    def validate(self):
        """范围与一致性检查

        Raises:
            ValidationError: 汇总全部错误信息
        """
        # 类型不对时不做范围检查, 也不做任何转换
        errors = _type_errors(self)
        if errors:
            raise ValidationError("; ".join(errors))

        if not self.height > 0:
            errors.append(f"Furnace height must be positive, got {self.height}")
        if not self.radius > 0:
            errors.append(f"Furnace radius must be positive, got {self.radius}")
        if self.nr < 2:
            errors.append(f"Radial node count must be at least 2, got {self.nr}")
        if self.nz < 2:
            errors.append(f"Axial node count must be at least 2, got {self.nz}")
        if not self.time_step > 0:
            errors.append(f"Time step must be positive, got {self.time_step}")
        if not self.total_time > 0:
            errors.append(f"Total time must be positive, got {self.total_time}")
        elif self.time_step > 0 and self.time_step > self.total_time:
            errors.append(f"Time step ({self.time_step}) exceeds total time ({self.total_time})")
        if self.convection_coefficient < 0:
            errors.append(f"Convection coefficient must not be negative, got {self.convection_coefficient}")
        if self.initial_temperature <= -273.15 or self.ambient_temperature <= -273.15:
            errors.append("Initial and ambient temperatures must lie above absolute zero")
        if not self.phase_change_half_width > 0:
            errors.append(f"Phase change half width must be positive, got {self.phase_change_half_width}")
        if not 1.0 < self.relaxation_factor < 2.0:
            errors.append(f"Relaxation factor must lie in (1, 2), got {self.relaxation_factor}")
        if not self.tolerance > 0:
            errors.append(f"Convergence tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            errors.append(f"Maximum iterations must be at least 1, got {self.max_iterations}")
        if self.output_interval < 1:
            errors.append(f"Output interval must be at least 1, got {self.output_interval}")

        for name, condition, allowed, temperature in (
            ("wall", self.wall_condition, (ROBIN, FIXED), self.wall_temperature),
            ("bottom", self.bottom_condition, (ADIABATIC, FIXED), self.bottom_temperature),
            ("top", self.top_condition, (ADIABATIC, FIXED), self.top_temperature),
        ):
            if condition not in allowed:
                errors.append(f"Unknown {name} condition '{condition}', expected one of {allowed}")
            elif condition == FIXED and temperature is None:
                errors.append(f"Fixed {name} condition needs a {name} temperature")

        errors.extend(self.material.validate())

        seen = set()
        for torch in self.torches:
            errors.extend(torch.validate(self.radius, self.height))
            if torch.id in seen:
                errors.append(f"Duplicate torch id: {torch.id}")
            seen.add(torch.id)

        if errors:
            raise ValidationError("; ".join(errors))

    @classmethod
    def from_dict(cls, data):
        """从参数表构建, 接受外部键名 (furnaceRadius 等) 和属性名"""
        params = cls()
        for key, value in data.items():
            if key == "torches":
                params.torches = [
                    t if isinstance(t, PlasmaTorch) else PlasmaTorch.from_dict(t) for t in value
                ]
            elif key == "material":
                if isinstance(value, str):
                    params.material = get_material(value)
                elif isinstance(value, MaterialProperties):
                    params.material = value
                else:
                    params.material = MaterialProperties.from_dict(value)
            else:
                name = _SCHEMA_KEYS.get(key, key)
                if name == "time_steps" or not hasattr(params, name):
                    raise ValidationError(f"Unknown simulation parameter '{key}'")
                setattr(params, name, value)
        return params

    def to_dict(self):
        data = {k: v for k, v in vars(self).items() if k not in ("torches", "material")}
        data["torches"] = [t.to_dict() for t in self.torches]
        data["material"] = self.material.to_dict()
        return data

    def __eq__(self, other):
        if not isinstance(other, SimulationParameters):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None


def load_parameters(path):
    """从 JSON 文件读取参数"""
    with open(path, "r") as f:
        data = json.load(f)
    return SimulationParameters.from_dict(data)
