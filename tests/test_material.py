import numpy as np
import pytest

from furnace.errors import FormulaEvaluationError, ValidationError
from furnace.models.material import (
    MATERIAL_LIBRARY, MaterialModel, MaterialProperties, Zone, get_material,
)


def test_constant_properties():
    model = MaterialModel(get_material("steel"))
    np.testing.assert_allclose(model.conductivity(np.array([0.0, 500.0])), 45.0)
    assert model.specific_heat(300.0) == pytest.approx(490.0)
    assert model.density == 7850.0


def test_polynomial_correction():
    props = MaterialProperties(thermal_conductivity=10.0, conductivity_coefficients=(0.01, 1e-5))
    model = MaterialModel(props)
    assert model.conductivity(100.0) == pytest.approx(10.0 + 1.0 + 0.1)


def test_formula_curve():
    props = MaterialProperties(specific_heat=500.0, specific_heat_formula="base + 0.2 * T")
    model = MaterialModel(props)
    np.testing.assert_allclose(model.specific_heat(np.array([0.0, 100.0])), [500.0, 520.0])


def test_bad_formula_falls_back_and_records_event():
    props = MaterialProperties(thermal_conductivity=20.0, conductivity_formula="base - T")
    model = MaterialModel(props)
    # 在 T > base 处公式为负
    values = model.conductivity(np.array([0.0, 100.0]))
    np.testing.assert_allclose(values, 20.0)
    events = model.drain_events()
    assert len(events) == 1
    assert "thermal conductivity" in events[0]
    assert model.drain_events() == []


def test_unparseable_formula_falls_back_at_construction():
    props = MaterialProperties(specific_heat_formula="base +* 2")
    model = MaterialModel(props)
    assert not model.specific_heat_curve.uses_formula
    assert len(model.drain_events()) == 1


def test_formula_error_without_fallback():
    props = MaterialProperties(conductivity_formula="log(T)")
    model = MaterialModel(props, formula_fallback=False)
    with pytest.raises(FormulaEvaluationError):
        model.conductivity(np.array([-5.0, 10.0]))


def test_check_range_flags_negative_polynomial():
    props = MaterialProperties(thermal_conductivity=10.0, conductivity_coefficients=(-0.01,))
    model = MaterialModel(props)
    assert model.check_range(0.0, 500.0) == []
    errors = model.check_range(0.0, 2000.0)
    assert len(errors) == 1


@pytest.mark.parametrize("T, zone", [
    (25.0, Zone.DRYING),
    (99.9, Zone.DRYING),
    (100.0, Zone.PYROLYSIS),
    (399.0, Zone.PYROLYSIS),
    (400.0, Zone.GASIFICATION),
    (1000.0, Zone.GASIFICATION),
    (1000.1, Zone.MELTING),
])
def test_zone_thresholds(T, zone):
    assert MaterialModel.classify_zone(T) == zone
    assert MaterialModel.classify_zones(np.array([T]))[0] == zone


def test_zone_classification_is_idempotent():
    T = np.linspace(-50.0, 3000.0, 301).reshape(7, 43)
    first = MaterialModel.classify_zones(T)
    second = MaterialModel.classify_zones(T)
    np.testing.assert_array_equal(first, second)
    np.testing.assert_array_equal(first.ravel(), [MaterialModel.classify_zone(t) for t in T.ravel()])


def test_zone_label():
    assert Zone.GASIFICATION.label == "Gasification"


def test_library_materials_are_valid():
    for key, props in MATERIAL_LIBRARY.items():
        assert props.validate() == [], key
    assert get_material("Copper").name == "Copper"
    with pytest.raises(ValidationError):
        get_material("unobtainium")


def test_validate_reports_every_problem():
    props = MaterialProperties(density=-1.0, emissivity=1.5, melting_point=1000.0, latent_heat_fusion=1e5,
                               vaporization_point=900.0, latent_heat_vaporization=1e6)
    errors = props.validate()
    assert len(errors) == 3


def test_from_dict_accepts_camel_case_keys():
    props = MaterialProperties.from_dict({
        "name": "Slag",
        "density": 2800,
        "specificHeat": 1000,
        "thermalConductivity": 1.5,
        "meltingPoint": 1300,
        "latentHeat": 4.0e5,
        "conductivityCoefficients": [0.001],
    })
    assert props.specific_heat == 1000
    assert props.latent_heat_fusion == 4.0e5
    assert props.conductivity_coefficients == (0.001,)
    assert props.has_fusion and not props.has_vaporization
    assert MaterialProperties.from_dict(props.to_dict()) == props


def test_from_dict_rejects_unknown_key():
    with pytest.raises(ValidationError):
        MaterialProperties.from_dict({"colour": "grey"})
