import numpy as np

from furnace.errors import MeshInitializationError


class Mesh:
    """轴对称 (r, z) 炉膛网格

    节点位于 r = i*dr, z = j*dz. 每个节点拥有由半节点半径 r_{i-1/2}, r_{i+1/2}
    和半节点高度围成的控制体 (截断在计算域内), 因此边界节点为半个单元,
    轴线节点是 r_{-1/2} = 0 的圆盘.

    Args:
        radius: 炉膛半径 (m)
        height: 炉膛高度 (m)
        nr: 径向节点数 (>= 2)
        nz: 轴向节点数 (>= 2)

    Raises:
        MeshInitializationError: 节点数不足或尺寸非正
    """

    def __init__(self, radius, height, nr, nz):
        if nr < 2 or nz < 2:
            raise MeshInitializationError(
                f"Mesh needs at least 2 nodes per direction, got nr={nr}, nz={nz}"
            )
        if not radius > 0 or not height > 0:
            raise MeshInitializationError(
                f"Furnace dimensions must be positive, got radius={radius}, height={height}"
            )

        self.radius = float(radius)
        self.height = float(height)
        self.nr = int(nr)
        self.nz = int(nz)
        self.dr = self.radius / (self.nr - 1)
        self.dz = self.height / (self.nz - 1)

        self.r = np.arange(self.nr) * self.dr
        self.z = np.arange(self.nz) * self.dz

        # 半节点半径 r_{i-1/2}, r_{i+1/2}
        self.r_minus = np.clip(self.r - 0.5 * self.dr, 0.0, self.radius)
        self.r_plus = np.clip(self.r + 0.5 * self.dr, 0.0, self.radius)

        # 轴向控制体高度, 上下边界为半个单元
        self.dz_cell = np.full(self.nz, self.dz)
        self.dz_cell[0] *= 0.5
        self.dz_cell[-1] *= 0.5

        ring_area = np.pi * (self.r_plus ** 2 - self.r_minus ** 2)
        self.axial_face_area = np.repeat(ring_area[:, None], self.nz, axis=1)
        self.cell_volume = self.axial_face_area * self.dz_cell[None, :]
        # 节点 i 与 i+1 之间的径向面积, shape (nr-1, nz)
        self.radial_face_area = 2.0 * np.pi * self.r_plus[:-1, None] * self.dz_cell[None, :]
        self.wall_area = 2.0 * np.pi * self.radius * self.dz_cell

    @property
    def shape(self):
        return (self.nr, self.nz)

    @property
    def size(self):
        return self.nr * self.nz

    @property
    def total_volume(self):
        return np.pi * self.radius ** 2 * self.height

    def node_index(self, i, j):
        """节点 (i, j) 的行优先一维索引"""
        if not (0 <= i < self.nr and 0 <= j < self.nz):
            raise IndexError(f"Node ({i}, {j}) outside mesh {self.shape}")
        return i * self.nz + j

    def node_ij(self, index):
        if not 0 <= index < self.size:
            raise IndexError(f"Node index {index} outside mesh of {self.size} nodes")
        return divmod(index, self.nz)

    def coordinates(self, i, j):
        return self.r[i], self.z[j]

    def grid(self):
        """返回形状为 (nr, nz) 的坐标数组 R, Z"""
        return np.meshgrid(self.r, self.z, indexing="ij")

    def full(self, value):
        return np.full(self.shape, float(value))

    def gradient_magnitude(self, field):
        """节点场 (r, z) 梯度的模"""
        dTdr, dTdz = np.gradient(field, self.dr, self.dz)
        return np.hypot(dTdr, dTdz)
