import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from furnace.models.plasma_torch import PlasmaTorch  # noqa: E402
from furnace.simulation.controller import SimulationController  # noqa: E402
from furnace.simulation.parameters import SimulationParameters  # noqa: E402
from furnace.visualization.output import Output  # noqa: E402


def run_small_case():
    params = SimulationParameters()
    params.radius = 0.1
    params.height = 0.2
    params.nr = 6
    params.nz = 6
    params.total_time = 3.0
    params.add_torch(PlasmaTorch(power=20.0, beam_radius=0.05))
    controller = SimulationController(params)
    controller.run_to_completion()
    return controller.results()


def test_save_results(tmp_path):
    results = run_small_case()
    path = tmp_path / "out" / "simulation_results.npz"
    Output.save_results(results, str(path))
    with np.load(path) as data:
        np.testing.assert_array_equal(data["temperature"], results["temperature"])
        np.testing.assert_array_equal(data["time"], results["time"])
        assert "zones" in data.files


def test_plot_results():
    results = run_small_case()
    fig = Output.plot_results(results, show=False)
    assert len(fig.axes) >= 4
    plt.close(fig)


def test_zone_changes():
    changes = Output._find_zone_changes(np.array([0.0, 1.0, 2.0, 3.0]),
                                        np.array([25.0, 150.0, 160.0, 1200.0]))
    assert changes == [(1.0, "Pyrolysis"), (3.0, "Melting")]
