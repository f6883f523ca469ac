import numpy as np
import pytest

from furnace.models.enthalpy import EnthalpyMap
from furnace.models.material import MaterialModel, get_material
from furnace.models.mesh import Mesh
from furnace.solvers.boundary import ADIABATIC, FIXED, BoundaryConditionHandler
from furnace.solvers.discretizer import Discretizer


@pytest.fixture
def setup():
    mesh = Mesh(0.2, 0.3, 9, 7)
    material = MaterialModel(get_material("steel"))
    emap = EnthalpyMap(material, phase_changes=False)
    return mesh, material, Discretizer(mesh, material, emap)


def test_uniform_field_is_steady(setup):
    mesh, _, discretizer = setup
    T = mesh.full(300.0)
    system = discretizer.assemble(T, mesh.full(0.0), dt=1.0)
    np.testing.assert_allclose(system.matrix() @ T.ravel(), system.b(), rtol=1e-10)


def test_matrix_is_symmetric_and_diagonally_dominant(setup):
    mesh, _, discretizer = setup
    R, Z = mesh.grid()
    system = discretizer.assemble(100.0 + 500.0 * R + 50.0 * Z, mesh.full(0.0), dt=0.5)
    A = system.matrix().toarray()
    np.testing.assert_allclose(A, A.T, rtol=1e-12)
    off = np.abs(A).sum(axis=1) - np.abs(np.diag(A))
    assert np.all(np.diag(A) > off)


def test_axis_row_has_no_inner_neighbour(setup):
    mesh, _, discretizer = setup
    system = discretizer.assemble(mesh.full(20.0), mesh.full(0.0), dt=1.0)
    assert np.all(system.west[0, :] == 0.0)
    assert np.all(system.east[-1, :] == 0.0)
    assert np.all(system.south[:, 0] == 0.0)
    assert np.all(system.north[:, -1] == 0.0)


def test_conduction_is_conservative(setup):
    mesh, _, discretizer = setup
    rng = np.random.default_rng(0)
    T = rng.uniform(0.0, 1000.0, mesh.shape)
    G_r, G_z = discretizer.conductances(T)
    assert discretizer.conduction(T, G_r, G_z).sum() == pytest.approx(0.0, abs=1e-6)


def test_axis_symmetry_of_radial_profile(setup):
    mesh, _, discretizer = setup
    # 光滑的轴对称场 T = a r² 在轴线处导数为零
    R, _ = mesh.grid()
    T = 50.0 + 1e4 * R ** 2
    G_r, G_z = discretizer.conductances(T)
    flux = discretizer.conduction(T, G_r, G_z)
    # 每个内部节点净流入 = 4 a k V
    expected = 4 * 1e4 * 45.0 * mesh.cell_volume
    np.testing.assert_allclose(flux[:-1, :], expected[:-1, :], rtol=1e-10)


def test_steady_cylinder_with_uniform_source(setup):
    mesh, material, discretizer = setup
    q, k, T_s = 2.0e6, 45.0, 100.0
    R, _ = mesh.grid()
    exact = T_s + q * (mesh.radius ** 2 - R ** 2) / (4 * k)

    bc = BoundaryConditionHandler(mesh, material.emissivity, 25.0, 10.0,
                                  wall=FIXED, wall_temperature=T_s)
    system = discretizer.assemble(exact, mesh.full(q), dt=1.0)
    bc.apply(system, exact)
    np.testing.assert_allclose(system.matrix() @ exact.ravel(), system.b(), rtol=1e-10)


def test_heat_rate_sums_to_source_when_adiabatic(setup):
    mesh, _, discretizer = setup
    rng = np.random.default_rng(1)
    T_old = rng.uniform(20.0, 40.0, mesh.shape)
    T_new = T_old + rng.uniform(0.0, 1.0, mesh.shape)
    source = mesh.full(1.0e5)
    system = discretizer.assemble(T_old, source, dt=2.0)
    rate = system.heat_rate(T_new, T_old)
    assert rate.sum() == pytest.approx((source * mesh.cell_volume).sum(), rel=1e-9)


def test_dirichlet_row_is_identity(setup):
    mesh, _, discretizer = setup
    system = discretizer.assemble(mesh.full(20.0), mesh.full(0.0), dt=1.0)
    system.set_dirichlet((3, 2), 750.0)
    A = system.matrix()
    row = mesh.node_index(3, 2)
    assert A[row, row] == 1.0
    assert A.indptr[row + 1] - A.indptr[row] == 1
    assert system.b()[row] == 750.0
    assert system.dirichlet[3, 2]
    assert system.dirichlet.sum() == 1


def test_matrix_cache_invalidated(setup):
    mesh, _, discretizer = setup
    system = discretizer.assemble(mesh.full(20.0), mesh.full(0.0), dt=1.0)
    before = system.matrix()[0, 0]
    system.add_diagonal((0, 0), 5.0)
    assert system.matrix()[0, 0] == pytest.approx(before + 5.0)


def test_adiabatic_handler_leaves_system_unchanged(setup):
    mesh, material, discretizer = setup
    T = mesh.full(20.0)
    system = discretizer.assemble(T, mesh.full(0.0), dt=1.0)
    diagonal = system.diagonal.copy()
    rhs = system.rhs.copy()
    bc = BoundaryConditionHandler(mesh, material.emissivity, 25.0, 10.0,
                                  enable_convection=False, enable_radiation=False,
                                  bottom=ADIABATIC, top=ADIABATIC)
    bc.apply(system, T)
    np.testing.assert_array_equal(system.diagonal, diagonal)
    np.testing.assert_array_equal(system.rhs, rhs)
