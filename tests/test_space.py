"""Tests for parameter declarations, configurations and unit-cube encoding."""
from __future__ import annotations

import unittest

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
from optuna.distributions import CategoricalDistribution, FloatDistribution, IntDistribution

from tidytune.errors import ConfigurationError, SpaceDeclarationError
from tidytune.space import Configuration, ParameterSpace, ParameterSpec


def _mixed_space() -> ParameterSpace:
    return ParameterSpace.from_dict(
        {
            "penalty": {"type": "float", "low": 1e-4, "high": 1.0, "log": True},
            "trees": {"type": "int", "low": 1, "high": 10},
            "kernel": {"type": "categorical", "choices": ["rbf", "polynomial", "linear"]},
        }
    )


class DeclarationTests(unittest.TestCase):
    def test_empty_space_is_rejected(self) -> None:
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpace(params=())
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpace.from_dict({})

    def test_duplicate_names_are_rejected(self) -> None:
        spec = ParameterSpec("x", low=0.0, high=1.0)
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpace(params=(spec, spec))

    def test_contradictory_bounds_are_rejected(self) -> None:
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpec("x", low=1.0, high=1.0)
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpec("x", low=0.0, high=1.0, log=True)
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpec("k", kind="categorical", choices=())
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpec("k", kind="categorical", choices=("a", "a"))
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpace.from_dict({"n": {"type": "int", "low": 0.2, "high": 0.8}})
        ParameterSpace.from_dict({"n": {"type": "int", "low": 0.5, "high": 1.5}})

    def test_unknown_type_is_rejected(self) -> None:
        with self.assertRaises(SpaceDeclarationError):
            ParameterSpace.from_dict({"x": {"type": "complex", "low": 0, "high": 1}})

    def test_declaration_error_is_a_value_error(self) -> None:
        self.assertTrue(issubclass(SpaceDeclarationError, ValueError))


class EncodingTests(unittest.TestCase):
    def test_log_scale_round_trip(self) -> None:
        spec = ParameterSpec("penalty", low=1e-4, high=1.0, log=True)
        self.assertAlmostEqual(spec.to_unit(1e-2), 0.5)
        self.assertAlmostEqual(spec.from_unit(0.5), 1e-2)

    def test_categorical_levels_occupy_equal_bins(self) -> None:
        spec = ParameterSpec("kernel", kind="categorical", choices=("a", "b", "c"))
        self.assertAlmostEqual(spec.to_unit("b"), 0.5)
        self.assertEqual(spec.from_unit(0.0), "a")
        self.assertEqual(spec.from_unit(0.99), "c")
        self.assertEqual(spec.from_unit(1.0), "c")

    def test_int_values_stay_in_bounds(self) -> None:
        spec = ParameterSpec("trees", kind="int", low=1, high=10)
        self.assertEqual(spec.from_unit(0.0), 1)
        self.assertEqual(spec.from_unit(1.0), 10)
        self.assertIsInstance(spec.from_unit(0.3), int)

    def test_features_one_hot_encode_categoricals(self) -> None:
        space = _mixed_space()
        config = space.configuration({"penalty": 0.01, "trees": 10, "kernel": "linear"})
        features = space.features([config])
        self.assertEqual(features.shape, (1, 5))
        np.testing.assert_allclose(features[0], [0.5, 1.0, 0.0, 0.0, 1.0])

    def test_distributions_match_declarations(self) -> None:
        distributions = _mixed_space().distributions()
        self.assertIsInstance(distributions["penalty"], FloatDistribution)
        self.assertTrue(distributions["penalty"].log)
        self.assertIsInstance(distributions["trees"], IntDistribution)
        self.assertIsInstance(distributions["kernel"], CategoricalDistribution)


class ConfigurationTests(unittest.TestCase):
    def test_configuration_is_ordered_and_hashable(self) -> None:
        space = _mixed_space()
        config = space.configuration({"kernel": "rbf", "trees": 3.0, "penalty": 0.1})
        self.assertEqual(config.names, ("penalty", "trees", "kernel"))
        self.assertIsInstance(config["trees"], int)
        self.assertEqual(hash(config), hash(Configuration(values=config.values)))
        self.assertEqual(config.as_dict(), {"penalty": 0.1, "trees": 3, "kernel": "rbf"})

    def test_out_of_bounds_values_raise_configuration_error(self) -> None:
        space = _mixed_space()
        with self.assertRaises(ConfigurationError):
            space.configuration({"penalty": 2.0, "trees": 3, "kernel": "rbf"})
        with self.assertRaises(ConfigurationError):
            space.configuration({"penalty": 0.1, "trees": 3, "kernel": "sigmoid"})
        with self.assertRaises(ConfigurationError):
            space.configuration({"penalty": 0.1, "trees": 2.5, "kernel": "rbf"})

    def test_missing_and_unknown_names(self) -> None:
        space = _mixed_space()
        with self.assertRaises(KeyError):
            space.configuration({"penalty": 0.1, "trees": 3})
        with self.assertRaises(KeyError):
            space.configuration({"penalty": 0.1, "trees": 3, "kernel": "rbf", "depth": 2})

    def test_contains_reports_validity(self) -> None:
        space = _mixed_space()
        good = Configuration(values=(("penalty", 0.1), ("trees", 2), ("kernel", "rbf")))
        bad = Configuration(values=(("penalty", 5.0), ("trees", 2), ("kernel", "rbf")))
        self.assertTrue(space.contains(good))
        self.assertFalse(space.contains(bad))


@settings(max_examples=50, deadline=2000)
@given(unit=st.lists(st.floats(min_value=0.0, max_value=1.0), min_size=3, max_size=3))
def test_decoded_points_always_lie_within_declared_bounds(unit: list[float]) -> None:
    space = _mixed_space()
    config = space.decode(unit)
    assert space.contains(config)
    encoded = space.encode(config)
    assert np.all(encoded >= -1e-12)
    assert np.all(encoded <= 1.0 + 1e-12)


def test_decode_rejects_wrong_length() -> None:
    with pytest.raises(ValueError):
        _mixed_space().decode([0.5, 0.5])
