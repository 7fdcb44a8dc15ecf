from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import yaml

from tidytune.acquisition import Acquisition
from tidytune.config import SearchRunConfig, ValidationError, load_config_file


def make_base_config() -> dict:
    return {
        "metadata": {
            "name": "experiment",
            "description": "example",
        },
        "seed": 123,
        "search": {
            "strategy": "bayes",
            "direction": "minimize",
            "n_iter": 4,
            "initial": 3,
        },
        "stopping": {
            "no_improve": 2,
            "time_limit_minutes": 5,
        },
        "search_space": {
            "x1": {"type": "float", "low": -5.0, "high": 10.0},
            "x2": {"type": "float", "low": 0.0, "high": 15.0},
        },
        "evaluator": {
            "module": "tidytune.evaluators.benchmarks",
            "callable": "create_branin_evaluator",
            "noise_std": 0.1,
        },
    }


class SearchRunConfigValidationTests(unittest.TestCase):
    def test_valid_configuration_passes(self) -> None:
        config = SearchRunConfig.model_validate(make_base_config())
        self.assertEqual(config.search.direction, "minimize")
        self.assertEqual(config.build_space().names, ("x1", "x2"))
        rules = config.stopping_rules()
        self.assertEqual(rules.n_iter, 4)
        self.assertEqual(rules.no_improve, 2)
        self.assertEqual(config.evaluator.model_dump()["noise_std"], 0.1)

    def test_settings_conversion(self) -> None:
        data = make_base_config()
        data["bayes"] = {
            "acquisition": "Confidence_Bound",
            "kappa": 2.0,
            "trade_off": 0.1,
            "trade_off_decay": 0.5,
            "uncertain": 4,
        }
        data["annealing"] = {"radius": [0.1, 0.2], "restart": 5}
        config = SearchRunConfig.model_validate(data)
        bayes = config.bayes.to_settings()
        self.assertIs(bayes.acquisition, Acquisition.CONFIDENCE_BOUND)
        self.assertEqual(bayes.uncertain, 4)
        self.assertAlmostEqual(bayes.trade_off.at(1), 0.1)
        annealing = config.annealing.to_settings()
        self.assertEqual(annealing.radius, (0.1, 0.2))
        self.assertEqual(annealing.restart, 5)

    def test_unknown_strategy_and_direction_fail(self) -> None:
        for key, value in (("strategy", "random"), ("direction", "sideways")):
            with self.subTest(key=key):
                data = make_base_config()
                data["search"][key] = value
                with self.assertRaises(ValidationError):
                    SearchRunConfig.model_validate(data)

    def test_search_space_requires_valid_ranges(self) -> None:
        data = make_base_config()
        data["search_space"]["x1"]["low"] = 20.0
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

        data = make_base_config()
        data["search_space"]["x1"] = {"type": "float", "low": 0.0, "high": 1.0, "log": True}
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

        data = make_base_config()
        data["search_space"]["kernel"] = {"type": "categorical", "choices": []}
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_unsupported_parameter_type_fails(self) -> None:
        data = make_base_config()
        data["search_space"]["x1"]["type"] = "complex"
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_missing_required_field_fails(self) -> None:
        data = make_base_config()
        data.pop("evaluator")
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_unknown_keys_are_rejected(self) -> None:
        data = make_base_config()
        data["search"]["sampler"] = "tpe"
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_explicit_initial_design_is_checked_against_space(self) -> None:
        data = make_base_config()
        data["search"]["initial"] = [{"x1": 0.0, "x2": 1.0}, {"x1": 0.5, "x2": 2.0}]
        config = SearchRunConfig.model_validate(data)
        self.assertEqual(len(config.search.initial), 2)

        data["search"]["initial"] = [{"x1": 50.0, "x2": 1.0}]
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_initial_sources_are_exclusive(self) -> None:
        data = make_base_config()
        data["search"]["grid"] = 3
        data["search"]["initial_study"] = {"storage": "sqlite:///prior.db", "study_name": "prior"}
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

        data = make_base_config()
        data["search"]["initial"] = [{"x1": 0.0, "x2": 1.0}]
        data["search"]["grid"] = 3
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

        data = make_base_config()
        data["search"]["initial"] = None
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)
        data["search"]["grid"] = {"x1": 3, "x2": 2}
        self.assertEqual(SearchRunConfig.model_validate(data).search.grid, {"x1": 3, "x2": 2})

    def test_grid_must_name_declared_parameters(self) -> None:
        data = make_base_config()
        data["search"]["grid"] = {"depth": 3}
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_annealing_radius_validation(self) -> None:
        data = make_base_config()
        data["annealing"] = {"radius": [0.3, 0.1]}
        with self.assertRaises(ValidationError):
            SearchRunConfig.model_validate(data)

    def test_load_config_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text(yaml.safe_dump(make_base_config()), encoding="utf-8")
            config = load_config_file(path)
            self.assertEqual(config.metadata.name, "experiment")

            path.write_text("- just\n- a list\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_config_file(path)


class ShippedConfigTests(unittest.TestCase):
    def test_example_configs_validate(self) -> None:
        configs_dir = Path(__file__).resolve().parents[1] / "configs"
        paths = sorted(configs_dir.glob("*.yaml"))
        self.assertTrue(paths)
        for path in paths:
            with self.subTest(path=path.name):
                load_config_file(path)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
