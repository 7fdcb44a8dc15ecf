import json
import tempfile
import unittest
from pathlib import Path

from tidytune.config import SearchRunConfig
from tidytune.search import StoppingRules, run_search
from tidytune.tracking import (
    RunHandle,
    RunMetadata,
    create_run,
    list_runs,
    load_run,
    result_status_payload,
    update_run_status,
)


def _make_config(name: str = "Example Run") -> dict:
    return {
        "metadata": {"name": name, "description": "demo"},
        "seed": 7,
        "search": {"strategy": "bayes", "direction": "minimize", "n_iter": 2, "initial": 2},
        "search_space": {
            "x1": {"type": "float", "low": -5.0, "high": 10.0},
            "x2": {"type": "float", "low": 0.0, "high": 15.0},
        },
        "evaluator": {
            "module": "tidytune.evaluators.benchmarks",
            "callable": "create_branin_evaluator",
        },
    }


class TrackingModuleTests(unittest.TestCase):
    def test_create_update_and_list_runs(self) -> None:
        config = SearchRunConfig.model_validate(_make_config())

        with tempfile.TemporaryDirectory() as tmpdir:
            runs_root = Path(tmpdir) / "runs"
            handle = create_run(config, runs_root=runs_root)

            self.assertIsInstance(handle, RunHandle)
            self.assertTrue(handle.run_dir.exists())
            self.assertEqual(handle.run_id, handle.artifacts.run_id)

            loaded = load_run(handle.run_id, runs_root=runs_root)
            self.assertIsInstance(loaded, RunMetadata)
            self.assertEqual(loaded.status, "created")
            self.assertEqual(loaded.seed, 7)
            self.assertEqual(
                loaded.artifact_path("config_original"),
                handle.artifacts.config_original,
            )

            refreshed = update_run_status(
                handle.run_id,
                "running",
                runs_root=runs_root,
                progress=0.5,
            )

            self.assertEqual(refreshed.status, "running")
            self.assertEqual(refreshed.status_payload.get("progress"), 0.5)
            self.assertIsNotNone(refreshed.status_payload.get("updated_at"))

            meta_raw = json.loads(refreshed.meta_path.read_text(encoding="utf-8"))
            self.assertEqual(meta_raw["status"]["state"], "running")

            all_runs = list_runs(runs_root=runs_root)
            self.assertEqual([run.run_id for run in all_runs], [handle.run_id])

            filtered = list_runs({"status": "running"}, runs_root=runs_root)
            self.assertEqual(len(filtered), 1)
            self.assertEqual(list_runs({"status": "completed"}, runs_root=runs_root), [])

            by_name = list_runs({"metadata.name": "Example Run"}, runs_root=runs_root)
            self.assertEqual(len(by_name), 1)
            by_strategy = list_runs({"search.strategy": "annealing"}, runs_root=runs_root)
            self.assertEqual(by_strategy, [])

            # a run directory path works as well as its identifier
            self.assertEqual(load_run(handle.run_dir).run_id, handle.run_id)
            with self.assertRaises(FileNotFoundError):
                load_run("missing", runs_root=runs_root)

    def test_list_runs_on_missing_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertEqual(list_runs(runs_root=Path(tmpdir) / "nothing"), [])

    def test_result_status_payload(self) -> None:
        config = SearchRunConfig.model_validate(_make_config())
        space = config.build_space()

        def evaluate(params, seed=None):
            return params["x1"] ** 2 + params["x2"]

        result = run_search(
            space,
            evaluate,
            direction="minimize",
            initial=3,
            stopping=StoppingRules(n_iter=0),
            seed=0,
        )
        payload = result_status_payload(result)
        self.assertEqual(payload["search_state"], "stopped_budget")
        self.assertEqual(payload["observations"], 3)
        self.assertEqual(payload["best_value"], result.best_mean)
        self.assertEqual(set(payload["best_params"]), {"x1", "x2"})

        with tempfile.TemporaryDirectory() as tmpdir:
            runs_root = Path(tmpdir)
            handle = create_run(config, runs_root=runs_root)
            metadata = update_run_status(handle.run_dir, "completed", **payload)
            self.assertEqual(metadata.best_value, result.best_mean)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
