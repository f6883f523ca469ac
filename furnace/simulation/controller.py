"""
仿真控制器

状态机 NOT_STARTED -> RUNNING <-> PAUSED -> COMPLETED | FAILED.
每个 step() 依次执行: 热源 -> 组装 -> 边界条件 -> SOR 求解 -> 焓修正 -> 反求温度 -> 诊断,
只有整步成功后才提交新的温度场.
"""

import copy
import logging
import threading

import numpy as np

from furnace.errors import (
    ConvergenceError, FurnaceError, NumericalInstabilityError, SimulationStateError, ValidationError,
)
from furnace.models.enthalpy import ABSOLUTE_ZERO, EnthalpyMap
from furnace.models.material import MaterialModel
from furnace.models.mesh import Mesh
from furnace.models.plasma_torch import KELVIN, TorchHeatSource
from furnace.simulation.state import (
    FieldState, SimulationSnapshot, SimulationState, StepDiagnostics,
)
from furnace.solvers.boundary import BoundaryConditionHandler
from furnace.solvers.discretizer import Discretizer
from furnace.solvers.sor import SORSolver

logger = logging.getLogger(__name__)

# 首次求解不收敛时的重试放宽倍数
RETRY_TOLERANCE_FACTOR = 10.0
RETRY_ITERATION_FACTOR = 2


class SimulationController:
    def __init__(self, parameters=None):
        self.state = SimulationState.NOT_STARTED
        self.parameters = None
        self.error_code = None
        self.error_message = None

        self.history = []               # 每步的 StepDiagnostics
        self.temperature_history = []   # (time, 温度场), 每 output_interval 步记录一次

        self._field = None
        self._paused_field = None
        self._input_energy = 0.0

        self._lock = threading.Lock()
        self._stepping = False
        self._pause_requested = threading.Event()
        self._cancel_requested = threading.Event()

        if parameters is not None:
            self.configure(parameters)

    # ------------------------------------------------------------------
    # 配置
    # ------------------------------------------------------------------
    def configure(self, parameters):
        """校验参数, 构建网格与各个模型, 并初始化温度场

        Args:
            parameters: SimulationParameters

        Raises:
            SimulationStateError: 运行中或暂停时重新配置
            ValidationError: 参数不合法
            MeshInitializationError: 网格无法构建
        """
        with self._lock:
            if self.state in (SimulationState.RUNNING, SimulationState.PAUSED):
                raise SimulationStateError(f"Cannot configure while {self.state.value}")
            if (self.state is SimulationState.NOT_STARTED and self.parameters is not None
                    and parameters == self.parameters):
                logger.debug("Parameters unchanged, keeping current configuration")
                return

        parameters.validate()
        params = copy.deepcopy(parameters)

        mesh = Mesh(params.radius, params.height, params.nr, params.nz)
        material = MaterialModel(params.material, formula_fallback=params.formula_fallback)

        t_low, t_high = self._temperature_range(params)
        errors = material.check_range(t_low, t_high)
        if errors:
            raise ValidationError("; ".join(errors))

        enthalpy_map = EnthalpyMap(
            material, t_low, t_high,
            half_width=params.phase_change_half_width,
            phase_changes=params.enable_phase_changes,
        )
        heat_source = TorchHeatSource(
            mesh, params.torches, material, params.convection_coefficient,
            enable_radiation=params.enable_radiation,
            enable_convection=params.enable_convection,
        )
        boundary = BoundaryConditionHandler(
            mesh, material.emissivity, params.ambient_temperature, params.convection_coefficient,
            enable_convection=params.enable_convection,
            enable_radiation=params.enable_radiation,
            wall=params.wall_condition, wall_temperature=params.wall_temperature,
            bottom=params.bottom_condition, bottom_temperature=params.bottom_temperature,
            top=params.top_condition, top_temperature=params.top_temperature,
        )
        solver = SORSolver(params.relaxation_factor, params.tolerance, params.max_iterations)

        with self._lock:
            self.parameters = params
            self.mesh = mesh
            self.material = material
            self.enthalpy_map = enthalpy_map
            self.heat_source = heat_source
            self.boundary = boundary
            self.discretizer = Discretizer(mesh, material, enthalpy_map)
            self.solver = solver

            self.state = SimulationState.NOT_STARTED
            self.error_code = None
            self.error_message = None
            self.history = []
            self.temperature_history = []
            self._paused_field = None
            self._input_energy = 0.0
            self._pause_requested.clear()
            self._cancel_requested.clear()

            T = boundary.impose(mesh.full(params.initial_temperature))
            self._field = self._make_field(T, enthalpy_map.enthalpy(T), 0.0, 0).freeze()
            self._record(self._field, self._diagnostics(self._field, events=material.drain_events()))

        logger.info("Configured %dx%d mesh, material %s, %d torch(es), %d steps of %.4g s",
                    mesh.nr, mesh.nz, params.material.name, len(params.torches),
                    params.time_steps, params.time_step)

    @staticmethod
    def _temperature_range(params):
        temperatures = [params.initial_temperature, params.ambient_temperature, 0.0]
        for value in (params.wall_temperature, params.bottom_temperature, params.top_temperature):
            if value is not None:
                temperatures.append(value)
        temperatures.extend(torch.gas_temperature - KELVIN for torch in params.torches)
        t_low = max(min(temperatures) - 100.0, ABSOLUTE_ZERO + 1.0)
        t_high = max(temperatures) + 100.0
        return t_low, t_high

    def _require_configured(self):
        if self._field is None:
            raise SimulationStateError("Simulation has not been configured")

    # ------------------------------------------------------------------
    # 状态转换
    # ------------------------------------------------------------------
    def start(self):
        with self._lock:
            self._require_configured()
            if self.state is not SimulationState.NOT_STARTED:
                raise SimulationStateError(f"Cannot start a simulation that is {self.state.value}")
            self._pause_requested.clear()
            self._cancel_requested.clear()
            self.state = SimulationState.RUNNING
        logger.info("Simulation started")

    def pause(self):
        with self._lock:
            if self.state is not SimulationState.RUNNING:
                raise SimulationStateError(f"Cannot pause a simulation that is {self.state.value}")
            self._pause_locked()
        logger.info("Simulation paused at step %d (t=%.4g s)", self._field.step, self._field.time)

    def _pause_locked(self):
        self._paused_field = self._field.copy()
        self._pause_requested.clear()
        self._cancel_requested.clear()
        self.state = SimulationState.PAUSED

    def resume(self):
        with self._lock:
            if self.state is not SimulationState.PAUSED:
                raise SimulationStateError(f"Cannot resume a simulation that is {self.state.value}")
            self._field = self._paused_field.copy().freeze()
            self._paused_field = None
            self.state = SimulationState.RUNNING
        logger.info("Simulation resumed at step %d", self._field.step)

    def request_pause(self):
        """请求在当前步结束后暂停 (可从其他线程调用)

        Returns:
            bool: 运行中时为 True, 其余状态下忽略请求并返回 False
        """
        with self._lock:
            if self.state is not SimulationState.RUNNING:
                return False
            self._pause_requested.set()
        return True

    def cancel(self):
        """取消当前步: 丢弃未提交的结果, 停在最后提交的温度场上 (PAUSED)

        Returns:
            bool: 运行中时为 True, 其余状态下不做任何事并返回 False
        """
        with self._lock:
            if self.state is not SimulationState.RUNNING:
                return False
            if self._stepping:
                self._cancel_requested.set()
            else:
                self._pause_locked()
                logger.info("Simulation cancelled at step %d", self._field.step)
        return True

    # ------------------------------------------------------------------
    # 时间推进
    # ------------------------------------------------------------------
    def step(self):
        """推进一个时间步

        数值失败 (不收敛, 发散) 不会抛出, 而是使控制器进入 FAILED,
        保留最后一个有效温度场.

        Returns:
            SimulationSnapshot
        """
        with self._lock:
            if self.state is not SimulationState.RUNNING:
                raise SimulationStateError(f"Cannot step a simulation that is {self.state.value}")
            self._stepping = True

        try:
            field, diagnostics, input_energy = self._advance(self._field)
        except FurnaceError as e:
            with self._lock:
                self._stepping = False
                self._fail(e)
            return self.snapshot()

        with self._lock:
            self._stepping = False
            if self._cancel_requested.is_set():
                self._pause_locked()
                logger.info("Step %d discarded by cancel request", field.step)
                return self.snapshot()

            self._field = field.freeze()
            self._input_energy = input_energy
            self._record(field, diagnostics)

            total_steps = self.parameters.time_steps
            if field.step % self.parameters.output_interval == 0 or field.step >= total_steps:
                self._log_progress(diagnostics, total_steps)

            if field.step >= total_steps:
                self.state = SimulationState.COMPLETED
                logger.info("Simulation completed after %d steps (t=%.4g s)", field.step, field.time)
            elif self._pause_requested.is_set():
                self._pause_locked()
                logger.info("Simulation paused at step %d on request", field.step)

        return self.snapshot()

    def run_to_completion(self):
        """循环执行 step() 直到结束, 失败或收到暂停/取消请求

        Returns:
            SimulationSnapshot
        """
        if self.state is SimulationState.NOT_STARTED:
            self.start()
        elif self.state is SimulationState.PAUSED:
            self.resume()

        while self.state is SimulationState.RUNNING:
            self.step()
        return self.snapshot()

    def _advance(self, field):
        params = self.parameters
        mesh = self.mesh

        new_time = min((field.step + 1) * params.time_step, params.total_time)
        dt = new_time - field.time
        T = field.temperature

        sources = self.heat_source.compute(T).total()
        system = self.discretizer.assemble(T, sources, dt)
        self.boundary.apply(system, T)

        events = []
        A = system.matrix()
        b = system.b()
        result = self.solver.solve(A, b, T)
        self._check_temperature(result.x, field.step + 1)
        if not result.converged:
            message = (f"SOR did not converge in {result.iterations} sweeps at step {field.step + 1} "
                       f"(residual {result.residual:.3e}), retrying with relaxed tolerance")
            logger.warning(message)
            events.append(message)
            result = self.solver.solve_or_raise(
                A, b, result.x,
                tolerance=self.solver.tolerance * RETRY_TOLERANCE_FACTOR,
                max_iterations=self.solver.max_iterations * RETRY_ITERATION_FACTOR,
            )

        T_star = result.x.reshape(mesh.shape)
        self._check_temperature(T_star, field.step + 1)

        # 用离散一致的净吸热率修正焓, 再反求温度
        rate = system.heat_rate(T_star, T)
        H = field.enthalpy + rate / system.mass_rate
        T_new = np.asarray(self.enthalpy_map.temperature(H), dtype=float)
        if system.dirichlet.any():
            T_new = np.where(system.dirichlet, system.dirichlet_values, T_new)
            H = np.where(system.dirichlet, self.enthalpy_map.enthalpy(T_new), H)

        self._check_temperature(T_new, field.step + 1)

        # 固定温度节点上的沉积功率不计入输入能量
        deposited = sources * mesh.cell_volume
        input_energy = self._input_energy + float(deposited[~system.dirichlet].sum()) * dt
        dropped = float(deposited[system.dirichlet].sum())
        if dropped != 0.0:
            message = (f"Source power {dropped:.4g} W on fixed-temperature nodes excluded "
                       f"from input energy at step {field.step + 1}")
            logger.debug(message)
            events.append(message)

        new_field = self._make_field(T_new, H, new_time, field.step + 1)
        diagnostics = self._diagnostics(
            new_field, input_energy=input_energy, iterations=result.iterations,
            residual=result.residual, events=events + self.material.drain_events(),
        )
        return new_field, diagnostics, input_energy

    def _check_temperature(self, T, step):
        """非有限值, 低于绝对零度或超过 max_temperature 时视为发散

        Raises:
            NumericalInstabilityError
        """
        if not np.all(np.isfinite(T)):
            raise NumericalInstabilityError(f"Non-finite temperature at step {step}")
        lowest = np.min(T)
        if lowest <= ABSOLUTE_ZERO:
            raise NumericalInstabilityError(
                f"Temperature {lowest:.4g} °C below absolute zero at step {step}"
            )
        peak = np.max(np.abs(T))
        if peak > self.parameters.max_temperature:
            raise NumericalInstabilityError(
                f"Temperature {peak:.4g} °C exceeds limit {self.parameters.max_temperature:.4g} °C "
                f"at step {step}"
            )

    def _fail(self, error):
        self.state = SimulationState.FAILED
        self.error_code = error.code
        self.error_message = error.message
        extra = ""
        if isinstance(error, ConvergenceError):
            extra = f" after {error.iterations} sweeps"
        logger.error("Simulation failed at step %d%s: %s", self._field.step + 1, extra, error)

    # ------------------------------------------------------------------
    # 场与诊断
    # ------------------------------------------------------------------
    def _make_field(self, T, H, time, step):
        emap = self.enthalpy_map
        return FieldState(
            temperature=np.array(T, dtype=float),
            enthalpy=np.array(H, dtype=float),
            melt_fraction=emap.melt_fraction(H),
            vapor_fraction=emap.vapor_fraction(H),
            zones=self.material.classify_zones(T),
            time=float(time),
            step=int(step),
        )

    def _diagnostics(self, field, input_energy=0.0, iterations=0, residual=0.0, events=()):
        mesh = self.mesh
        T = field.temperature
        volume = mesh.cell_volume
        mass = self.material.density * volume

        gradient = mesh.gradient_magnitude(T)
        heat_flux = self.material.conductivity(T) * gradient

        return StepDiagnostics(
            step=field.step,
            time=field.time,
            min_temperature=float(T.min()),
            max_temperature=float(T.max()),
            avg_temperature=float((T * volume).sum() / volume.sum()),
            max_gradient=float(gradient.max()),
            max_heat_flux=float(heat_flux.max()),
            total_energy=float((mass * field.enthalpy).sum()),
            latent_energy=float((mass * self.enthalpy_map.latent_enthalpy(T)).sum()),
            input_energy=float(input_energy),
            iterations=int(iterations),
            residual=float(residual),
            events=list(events),
        )

    def _record(self, field, diagnostics):
        self.history.append(diagnostics)
        if (field.step % self.parameters.output_interval == 0
                or field.step >= self.parameters.time_steps):
            self.temperature_history.append((field.time, field.temperature))

    def _log_progress(self, diagnostics, total_steps):
        logger.info(
            "Progress %.1f%%  t=%.4g s  T[min/avg/max]=%.1f/%.1f/%.1f °C  SOR %d sweeps",
            100.0 * diagnostics.step / total_steps, diagnostics.time,
            diagnostics.min_temperature, diagnostics.avg_temperature, diagnostics.max_temperature,
            diagnostics.iterations,
        )

    # ------------------------------------------------------------------
    # 结果
    # ------------------------------------------------------------------
    @property
    def field(self):
        """最后提交的温度场 (只读)"""
        return self._field

    @property
    def progress(self):
        if self.parameters is None:
            return 0.0
        return self._field.step / self.parameters.time_steps

    def snapshot(self):
        self._require_configured()
        field = self._field
        return SimulationSnapshot(
            state=self.state,
            step=field.step,
            time=field.time,
            progress=self.progress,
            temperature=np.array(field.temperature),
            melt_fraction=np.array(field.melt_fraction),
            vapor_fraction=np.array(field.vapor_fraction),
            zones=np.array(field.zones),
            diagnostics=self.history[-1] if self.history else None,
            error_code=self.error_code,
            error_message=self.error_message,
        )

    def results(self):
        """汇总历史记录, 列表转换为 numpy 数组"""
        self._require_configured()
        results = {}
        for key in ("time", "min_temperature", "max_temperature", "avg_temperature",
                    "max_gradient", "max_heat_flux", "total_energy", "latent_energy",
                    "input_energy", "iterations", "residual"):
            results[key] = np.array([getattr(d, key) for d in self.history])

        results["snapshot_time"] = np.array([t for t, _ in self.temperature_history])
        results["temperature"] = np.stack([T for _, T in self.temperature_history])
        results["r"] = self.mesh.r.copy()
        results["z"] = self.mesh.z.copy()
        results["melt_fraction"] = np.array(self._field.melt_fraction)
        results["vapor_fraction"] = np.array(self._field.vapor_fraction)
        results["zones"] = np.array(self._field.zones)
        return results
