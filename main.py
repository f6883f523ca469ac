import argparse
import logging

from furnace.errors import FurnaceError
from furnace.models.plasma_torch import PlasmaTorch
from furnace.simulation.analytical import benchmark_error, benchmark_parameters
from furnace.simulation.controller import SimulationController
from furnace.simulation.parameters import SimulationParameters, load_parameters
from furnace.visualization.output import Output

logger = logging.getLogger("furnace")


def default_parameters():
    """默认算例: 钢料, 炉底中心一支竖直向上的等离子炬"""
    params = SimulationParameters()
    params.add_torch(PlasmaTorch(r_position=0.0, z_position=0.0, pitch=90.0, power=100.0,
                                 efficiency=0.8, gas_temperature=5000.0, beam_radius=0.1))
    return params


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Axisymmetric plasma furnace heat transfer simulation")
    parser.add_argument("--config", help="JSON parameter file")
    parser.add_argument("--benchmark", action="store_true",
                        help="run the cylinder benchmark and compare with the analytical solution")
    parser.add_argument("--plot", action="store_true", help="plot results when finished")
    parser.add_argument("--save", metavar="PATH", help="save results to an .npz archive")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 初始化参数
    if args.benchmark:
        params = benchmark_parameters()
    elif args.config:
        params = load_parameters(args.config)
    else:
        params = default_parameters()

    try:
        controller = SimulationController(params)
    except FurnaceError as e:
        logger.error("Configuration failed: %s", e)
        return 1

    # 进行模拟计算
    snapshot = controller.run_to_completion()
    if snapshot.error_code:
        logger.error("Simulation ended in state %s: [%s] %s",
                     snapshot.state.value, snapshot.error_code, snapshot.error_message)
    else:
        logger.info("Simulation %s at t=%.4g s, max temperature %.1f °C",
                    snapshot.state.value, snapshot.time, snapshot.temperature.max())

    if args.benchmark and not snapshot.error_code:
        logger.info("Relative L2 error against analytical solution: %.3f%%",
                    100.0 * benchmark_error(controller))

    results = controller.results()

    # 保存结果
    if args.save:
        Output.save_results(results, args.save)
        logger.info("Results saved to '%s'", args.save)

    # 输出结果
    if args.plot:
        Output.plot_results(results)

    return 0 if not snapshot.error_code else 2


if __name__ == "__main__":
    raise SystemExit(main())
