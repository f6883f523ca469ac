from dataclasses import dataclass, field, asdict
from enum import Enum

import numpy as np

SNAPSHOT_SCHEMA_VERSION = 1


class SimulationState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self):
        return self in (SimulationState.COMPLETED, SimulationState.FAILED)


class FieldState:
    """一个时间层的节点场: 温度, 焓, 液相/气相分数和分区

    提交后调用 freeze(), 此后数组只读; 下一步总是写入新的缓冲区.
    """

    _ARRAYS = ("temperature", "enthalpy", "melt_fraction", "vapor_fraction", "zones")

    def __init__(self, temperature, enthalpy, melt_fraction, vapor_fraction, zones, time=0.0, step=0):
        self.temperature = temperature
        self.enthalpy = enthalpy
        self.melt_fraction = melt_fraction
        self.vapor_fraction = vapor_fraction
        self.zones = zones
        self.time = time
        self.step = step

    def freeze(self):
        for name in self._ARRAYS:
            getattr(self, name).flags.writeable = False
        return self

    def copy(self):
        """可写的深拷贝"""
        return FieldState(*(np.array(getattr(self, name)) for name in self._ARRAYS),
                          time=self.time, step=self.step)

    def is_finite(self):
        return bool(np.all(np.isfinite(self.temperature)) and np.all(np.isfinite(self.enthalpy)))

    def equals(self, other):
        return (self.step == other.step and self.time == other.time and all(
            np.array_equal(getattr(self, name), getattr(other, name)) for name in self._ARRAYS
        ))


@dataclass
class StepDiagnostics:
    """每个时间步的标量诊断量"""
    step: int
    time: float
    min_temperature: float
    max_temperature: float
    avg_temperature: float
    max_gradient: float       # K/m
    max_heat_flux: float      # W/m²
    total_energy: float       # J, 以 0 °C 为基准
    latent_energy: float      # J
    input_energy: float = 0.0  # 炬累计沉积能量 (J)
    iterations: int = 0
    residual: float = 0.0
    events: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


@dataclass
class SimulationSnapshot:
    """对外发布的结果快照"""
    state: SimulationState
    step: int
    time: float
    progress: float
    temperature: np.ndarray
    melt_fraction: np.ndarray
    vapor_fraction: np.ndarray
    zones: np.ndarray
    diagnostics: StepDiagnostics = None
    error_code: str = None
    error_message: str = None

    def to_dict(self):
        """版本化的结构化记录, 数组转为嵌套列表"""
        return {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "state": self.state.value,
            "step": self.step,
            "time": self.time,
            "progress": self.progress,
            "temperature": self.temperature.tolist(),
            "melt_fraction": self.melt_fraction.tolist(),
            "vapor_fraction": self.vapor_fraction.tolist(),
            "zones": self.zones.tolist(),
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
