import numpy as np
import pytest

from furnace.errors import MeshInitializationError
from furnace.models.mesh import Mesh


def test_spacing_and_coordinates():
    mesh = Mesh(0.5, 1.0, 11, 21)
    assert mesh.dr == pytest.approx(0.05)
    assert mesh.dz == pytest.approx(0.05)
    assert mesh.r[0] == 0.0
    assert mesh.r[-1] == pytest.approx(0.5)
    assert mesh.z[-1] == pytest.approx(1.0)
    assert mesh.shape == (11, 21)
    assert mesh.size == 231


def test_control_volumes_tile_the_cylinder():
    mesh = Mesh(0.3, 0.7, 7, 9)
    assert mesh.cell_volume.sum() == pytest.approx(mesh.total_volume)
    assert mesh.wall_area.sum() == pytest.approx(2 * np.pi * 0.3 * 0.7)
    assert np.all(mesh.cell_volume > 0)


def test_axis_node_has_no_inner_face():
    mesh = Mesh(0.5, 1.0, 6, 4)
    assert mesh.r_minus[0] == 0.0
    # 径向面积从第一个内部面开始
    assert mesh.radial_face_area.shape == (5, 4)
    assert np.all(mesh.radial_face_area > 0)


@pytest.mark.parametrize("nr, nz", [(1, 10), (10, 1), (0, 0)])
def test_too_few_nodes(nr, nz):
    with pytest.raises(MeshInitializationError) as excinfo:
        Mesh(0.5, 1.0, nr, nz)
    assert excinfo.value.code == "E002"


def test_non_positive_dimensions():
    with pytest.raises(MeshInitializationError):
        Mesh(0.0, 1.0, 5, 5)
    with pytest.raises(MeshInitializationError):
        Mesh(0.5, -1.0, 5, 5)


def test_node_index_round_trip():
    mesh = Mesh(1.0, 2.0, 4, 5)
    assert mesh.node_index(2, 3) == 13
    assert mesh.node_ij(13) == (2, 3)
    with pytest.raises(IndexError):
        mesh.node_index(4, 0)
    with pytest.raises(IndexError):
        mesh.node_ij(20)


def test_gradient_of_linear_field():
    mesh = Mesh(1.0, 2.0, 5, 9)
    R, Z = mesh.grid()
    field = 3.0 * R + 4.0 * Z
    np.testing.assert_allclose(mesh.gradient_magnitude(field), 5.0)
