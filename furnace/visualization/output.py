import os

import matplotlib.pyplot as plt
import numpy as np

from furnace.models.material import MaterialModel, Zone


class Output:
    @staticmethod
    def plot_results(results, show=True):
        """绘制模拟结果

        Args:
            results: SimulationController.results() 返回的字典
            show: 是否调用 plt.show()

        Returns:
            matplotlib Figure
        """
        time = results["time"]
        r = results["r"]
        z = results["z"]
        final_temperature = results["temperature"][-1]

        # 创建一个2x2的子图布局
        fig = plt.figure(figsize=(15, 12))

        # 1. 最终温度场 (r, z)
        ax1 = plt.subplot(2, 2, 1)
        R, Z = np.meshgrid(r, z, indexing="ij")
        contour = ax1.contourf(R, Z, final_temperature, levels=30, cmap="inferno")
        fig.colorbar(contour, ax=ax1, label="Temperature (°C)")
        ax1.set_xlabel("r (m)")
        ax1.set_ylabel("z (m)")
        ax1.set_title(f"Temperature Field at t = {results['snapshot_time'][-1]:.4g} s")
        ax1.set_aspect("equal")

        # 2. 温度随时间的变化
        ax2 = plt.subplot(2, 2, 2)
        ax2.plot(time, results["max_temperature"], "r-", label="Max")
        ax2.plot(time, results["avg_temperature"], "k-", label="Average")
        ax2.plot(time, results["min_temperature"], "b-", label="Min")
        ax2.set_xlabel("Time (s)")
        ax2.set_ylabel("Temperature (°C)")
        ax2.set_title("Temperature Evolution")
        ax2.legend()
        ax2.grid(True)

        # 添加最热分区的变化标注
        for zone_time, zone_name in Output._find_zone_changes(time, results["max_temperature"]):
            ax2.axvline(x=zone_time, color="k", linestyle="--", alpha=0.5)
            ax2.text(zone_time, ax2.get_ylim()[1], zone_name,
                     rotation=90, verticalalignment="top")

        # 3. 能量随时间的变化
        ax3 = plt.subplot(2, 2, 3)
        ax3.plot(time, results["total_energy"], "k-", label="Total (Σ ρVH)")
        ax3.plot(time, results["latent_energy"], "g-", label="Latent")
        ax3.plot(time, results["input_energy"] + results["total_energy"][0], "r--",
                 label="Initial + torch input")
        ax3.set_xlabel("Time (s)")
        ax3.set_ylabel("Energy (J)")
        ax3.set_title("Energy Balance")
        ax3.legend()
        ax3.grid(True)

        # 4. SOR 迭代次数
        ax4 = plt.subplot(2, 2, 4)
        ax4.plot(time[1:], results["iterations"][1:], "b.-")
        ax4.set_xlabel("Time (s)")
        ax4.set_ylabel("Sweeps")
        ax4.set_title("SOR Iterations per Step")
        ax4.grid(True)

        plt.tight_layout()
        if show:
            plt.show()
        return fig

    @staticmethod
    def _find_zone_changes(time, max_temperature):
        """找出最热节点所在分区变化的时间点"""
        zone_changes = []
        current_zone = None
        for t, T in zip(time, max_temperature):
            zone = MaterialModel.classify_zone(T)
            if zone != current_zone:
                if current_zone is not None:
                    zone_changes.append((t, Zone(zone).label))
                current_zone = zone
        return zone_changes

    @staticmethod
    def save_results(results, filename):
        """保存模拟结果到 .npz 文件"""
        directory = os.path.dirname(filename)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        np.savez(filename, **results)
