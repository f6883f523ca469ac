import logging
from dataclasses import dataclass, fields, asdict
from enum import IntEnum

import numpy as np
from numpy.polynomial import polynomial as P

from furnace.errors import FormulaEvaluationError, ValidationError
from furnace.models.formula import FormulaEvaluator

logger = logging.getLogger(__name__)

# 分区温度阈值 (°C)
DRYING_LIMIT = 100.0
PYROLYSIS_LIMIT = 400.0
GASIFICATION_LIMIT = 1000.0


class Zone(IntEnum):
    DRYING = 0
    PYROLYSIS = 1
    GASIFICATION = 2
    MELTING = 3

    @property
    def label(self):
        return self.name.capitalize()


@dataclass(frozen=True)
class MaterialProperties:
    """炉料物性, 一次运行中保持不变

    温度单位为 °C, 潜热单位为 J/kg. 物性曲线可以是加在基值上的多项式
    系数 (a1, a2, ...) -> base + a1*T + a2*T^2 + ..., 也可以是关于 T 的公式,
    公式中可以用变量 base 引用基值.
    """
    name: str = "Steel"
    density: float = 7850.0                 # kg/m³
    specific_heat: float = 490.0            # J/(kg·K)
    thermal_conductivity: float = 45.0      # W/(m·K)
    emissivity: float = 0.8
    moisture_content: float = 0.0           # 含水质量分数
    melting_point: float = None             # °C
    latent_heat_fusion: float = None        # J/kg
    vaporization_point: float = None        # °C
    latent_heat_vaporization: float = None  # J/kg
    conductivity_coefficients: tuple = ()
    specific_heat_coefficients: tuple = ()
    conductivity_formula: str = None
    specific_heat_formula: str = None

    @property
    def has_fusion(self):
        return self.melting_point is not None and bool(self.latent_heat_fusion)

    @property
    def has_vaporization(self):
        return self.vaporization_point is not None and bool(self.latent_heat_vaporization)

    def validate(self):
        """检查物性范围, 返回错误信息列表"""
        errors = []
        if not self.density > 0:
            errors.append(f"Material density must be positive, got {self.density}")
        if not self.specific_heat > 0:
            errors.append(f"Material specific heat must be positive, got {self.specific_heat}")
        if not self.thermal_conductivity > 0:
            errors.append(f"Material thermal conductivity must be positive, got {self.thermal_conductivity}")
        if not 0.0 <= self.emissivity <= 1.0:
            errors.append(f"Material emissivity must lie in [0, 1], got {self.emissivity}")
        if not 0.0 <= self.moisture_content < 1.0:
            errors.append(f"Moisture content must lie in [0, 1), got {self.moisture_content}")
        for label, value in (("latent heat of fusion", self.latent_heat_fusion),
                             ("latent heat of vaporization", self.latent_heat_vaporization)):
            if value is not None and value < 0:
                errors.append(f"Material {label} must not be negative, got {value}")
        if self.has_fusion and self.has_vaporization and self.vaporization_point <= self.melting_point:
            errors.append(
                f"Vaporization point ({self.vaporization_point}) must exceed melting point ({self.melting_point})"
            )
        return errors

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        aliases = {"latentHeat": "latent_heat_fusion", "latent_heat": "latent_heat_fusion"}
        values = {}
        for key, value in data.items():
            name = aliases.get(key, _snake_case(key))
            if name not in known:
                raise ValidationError(f"Unknown material property '{key}'")
            if name.endswith("_coefficients"):
                value = tuple(float(c) for c in value)
            values[name] = value
        return cls(**values)

    def to_dict(self):
        data = asdict(self)
        data["conductivity_coefficients"] = list(self.conductivity_coefficients)
        data["specific_heat_coefficients"] = list(self.specific_heat_coefficients)
        return data


def _snake_case(key):
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


MATERIAL_LIBRARY = {
    "steel": MaterialProperties(
        name="Steel", density=7850.0, specific_heat=490.0, thermal_conductivity=45.0,
        emissivity=0.8, melting_point=1450.0, latent_heat_fusion=2.7e5,
        vaporization_point=2860.0, latent_heat_vaporization=6.09e6,
    ),
    "aluminum": MaterialProperties(
        name="Aluminum", density=2700.0, specific_heat=900.0, thermal_conductivity=237.0,
        emissivity=0.1, melting_point=660.3, latent_heat_fusion=3.97e5,
        vaporization_point=2470.0, latent_heat_vaporization=1.05e7,
    ),
    "copper": MaterialProperties(
        name="Copper", density=8960.0, specific_heat=385.0, thermal_conductivity=401.0,
        emissivity=0.05, melting_point=1084.6, latent_heat_fusion=2.05e5,
        vaporization_point=2562.0, latent_heat_vaporization=4.73e6,
    ),
    "glass": MaterialProperties(
        name="Glass", density=2500.0, specific_heat=840.0, thermal_conductivity=1.05,
        emissivity=0.9, melting_point=1400.0, latent_heat_fusion=3.0e5,
    ),
    "biomass": MaterialProperties(
        name="Biomass", density=700.0, specific_heat=1700.0, thermal_conductivity=0.2,
        emissivity=0.9, moisture_content=0.15,
    ),
}


def get_material(key):
    """按名称从材料库中取材料"""
    try:
        return MATERIAL_LIBRARY[key.lower()]
    except KeyError:
        raise ValidationError(
            f"Material '{key}' not found in library, available: {sorted(MATERIAL_LIBRARY)}"
        ) from None


class PropertyCurve:
    """随温度变化的物性: 基值 + 多项式修正, 或用户公式"""

    def __init__(self, name, base, coefficients=(), formula=None, fallback=True, events=None):
        self.name = name
        self.base = float(base)
        self.coefficients = np.array([self.base, *coefficients], dtype=float)
        self.fallback = fallback
        self.events = events if events is not None else []
        self._formula = None
        if formula:
            try:
                self._formula = FormulaEvaluator(formula, {"base": self.base})
            except FormulaEvaluationError as e:
                self._handle_formula_error(e)

    @property
    def uses_formula(self):
        return self._formula is not None

    def __call__(self, T):
        T = np.asarray(T, dtype=float)
        if self._formula is not None:
            try:
                value = np.broadcast_to(self._formula.evaluate(T=T), T.shape).astype(float)
                if np.any(value <= 0):
                    raise FormulaEvaluationError(
                        f"Formula for {self.name} produced a non-positive value"
                    )
                return value
            except FormulaEvaluationError as e:
                self._handle_formula_error(e)
        value = P.polyval(T, self.coefficients)
        # 多项式在验证范围之外可能变号
        return np.maximum(value, 0.01 * self.base)

    def _handle_formula_error(self, error):
        if not self.fallback:
            raise error
        message = f"{self.name} formula rejected ({error}), falling back to base curve"
        logger.warning(message)
        self.events.append(message)
        self._formula = None


class MaterialModel:
    def __init__(self, properties, formula_fallback=True):
        """由物性构建 k(T), c_p(T)

        Args:
            properties: MaterialProperties
            formula_fallback: 公式出错时是否退回基值曲线 (否则抛出 FormulaEvaluationError)
        """
        self.properties = properties
        self.events = []
        self.conductivity_curve = PropertyCurve(
            "thermal conductivity", properties.thermal_conductivity,
            properties.conductivity_coefficients, properties.conductivity_formula,
            formula_fallback, self.events,
        )
        self.specific_heat_curve = PropertyCurve(
            "specific heat", properties.specific_heat,
            properties.specific_heat_coefficients, properties.specific_heat_formula,
            formula_fallback, self.events,
        )

    @property
    def density(self):
        return self.properties.density

    @property
    def emissivity(self):
        return self.properties.emissivity

    def conductivity(self, T):
        """导热系数 k(T) (W/(m·K))"""
        return self.conductivity_curve(T)

    def specific_heat(self, T):
        """比热容 c_p(T) (J/(kg·K)), 不含潜热"""
        return self.specific_heat_curve(T)

    def check_range(self, t_low, t_high, samples=64):
        """在温度区间上检查物性为正, 同时触发公式的早期回退"""
        probe = np.linspace(t_low, t_high, samples)
        errors = []
        for curve in (self.conductivity_curve, self.specific_heat_curve):
            curve(probe)
            if curve.uses_formula:
                continue
            values = P.polyval(probe, curve.coefficients)
            if np.any(values <= 0) or not np.all(np.isfinite(values)):
                errors.append(f"Material {curve.name} is not positive over [{t_low}, {t_high}] °C")
        return errors

    def drain_events(self):
        """取出并清空可恢复事件"""
        events = list(self.events)
        self.events.clear()
        return events

    @staticmethod
    def classify_zone(T):
        """确定节点所处的分区"""
        if T < DRYING_LIMIT:
            return Zone.DRYING
        elif T < PYROLYSIS_LIMIT:
            return Zone.PYROLYSIS
        elif T <= GASIFICATION_LIMIT:
            return Zone.GASIFICATION
        else:
            return Zone.MELTING

    @staticmethod
    def classify_zones(T):
        """逐节点分区, 返回 Zone 整数码数组"""
        T = np.asarray(T, dtype=float)
        return np.select(
            [T < DRYING_LIMIT, T < PYROLYSIS_LIMIT, T <= GASIFICATION_LIMIT],
            [Zone.DRYING, Zone.PYROLYSIS, Zone.GASIFICATION],
            default=Zone.MELTING,
        ).astype(np.int8)
