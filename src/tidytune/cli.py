"""Command line interface for tidytune."""
from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

from pydantic import ValidationError

from .config import SearchRunConfig, load_config_file
from .results import SearchResult, SearchStatus
from .tracking import RunMetadata, create_run, list_runs, load_run, result_status_payload, update_run_status


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tidytune",
        description="Run an iterative hyperparameter search or inspect its configuration.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/branin_bayes.yaml"),
        help="Path to the search configuration YAML file.",
    )
    parser.add_argument(
        "--as-json",
        action="store_true",
        help="Print the validated configuration as JSON.",
    )
    parser.add_argument(
        "--summarize",
        action="store_true",
        help="Only print a summary of the configuration without running the search.",
    )
    parser.add_argument(
        "--runs-root",
        type=Path,
        default=Path("runs"),
        help="Directory that stores run artifacts (default: runs).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-v) or debugging detail (-vv).",
    )

    subparsers = parser.add_subparsers(dest="command")
    runs_parser = subparsers.add_parser("runs", help="Inspect tracked runs.")
    runs_sub = runs_parser.add_subparsers(dest="runs_command", required=True)

    list_parser = runs_sub.add_parser("list", help="List tracked runs in a compact table.")
    list_parser.add_argument("--runs-root", type=Path, default=Path("runs"))
    list_parser.add_argument("--status", help="Only show runs in this state.")
    list_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table.")

    show_parser = runs_sub.add_parser("show", help="Show one run's metadata.")
    show_parser.add_argument("--run-id", required=True)
    show_parser.add_argument("--runs-root", type=Path, default=Path("runs"))
    show_parser.add_argument("--json", dest="as_json", action="store_true")

    return parser.parse_args(argv)


def load_config(path: Path) -> SearchRunConfig:
    if not path.exists():
        raise SystemExit(f"Configuration file not found: {path}")
    try:
        return load_config_file(path)
    except ValidationError as exc:
        details = []
        for error in exc.errors(include_url=False):
            location = ".".join(str(loc) for loc in error["loc"])
            details.append(f"- {location or '<root>'}: {error['msg']}")
        raise SystemExit("Configuration validation failed:\n" + "\n".join(details)) from exc
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def summarize_config(config: Mapping[str, Any]) -> str:
    metadata = config.get("metadata", {})
    search = config.get("search", {})
    stopping = config.get("stopping", {})
    space = config.get("search_space", {})

    lines = [
        f"Experiment name : {metadata.get('name', 'N/A')}",
        f"Description    : {metadata.get('description') or 'N/A'}",
        f"Seed           : {config.get('seed', 'N/A')}",
        "",
        "[Search]",
        f"  Strategy     : {search.get('strategy', 'N/A')}",
        f"  Direction    : {search.get('direction', 'N/A')} {search.get('metric', '')}".rstrip(),
        f"  Iterations   : {search.get('n_iter', 'N/A')}",
        f"  Initial      : {_describe_initial(search)}",
    ]
    if search.get("strategy") == "annealing":
        annealing = config.get("annealing", {})
        lines.extend(
            [
                f"  Coefficient  : {annealing.get('coefficient', 'N/A')}",
                f"  Restart      : {annealing.get('restart', 'N/A')}",
            ]
        )
    else:
        bayes = config.get("bayes", {})
        lines.extend(
            [
                f"  Acquisition  : {bayes.get('acquisition', 'N/A')}",
                f"  Pool size    : {bayes.get('pool_size', 'N/A')}",
            ]
        )
    lines.extend(
        [
            "",
            "[Stopping]",
            f"  no_improve   : {stopping.get('no_improve', 'N/A')}",
            f"  max_failures : {stopping.get('max_failures', 'N/A')}",
            f"  time_limit   : {stopping.get('time_limit_minutes', 'N/A')}",
            "",
            "[Search space]",
        ]
    )
    for name, spec in space.items():
        if spec.get("type") == "categorical":
            detail = ", ".join(str(choice) for choice in spec.get("choices", []))
        else:
            detail = f"[{spec.get('low')}, {spec.get('high')}]" + (" log" if spec.get("log") else "")
        lines.append(f"  {name} ({spec.get('type')}): {detail}")
    return "\n".join(lines)


def _describe_initial(search: Mapping[str, Any]) -> str:
    if search.get("initial_study"):
        study = search["initial_study"]
        return f"optuna study {study.get('study_name')}"
    if search.get("grid") is not None:
        return f"grid ({search['grid']})"
    initial = search.get("initial")
    if isinstance(initial, list):
        return f"{len(initial)} explicit configuration(s)"
    return f"{initial} space-filling point(s)"


def format_result(result: SearchResult) -> str:
    lines = [
        "Search finished.",
        f"State           : {result.status.value} ({result.stop_reason or '-'})",
        f"Iterations      : {result.iterations_completed}",
        f"Observations    : {result.n_observations}",
        f"Best value      : {result.best_mean}",
    ]
    if result.best is not None:
        lines.append(f"Std. error      : {result.best.std_error}")
        lines.append("Best parameters :")
        lines.extend(f"  - {name}: {value}" for name, value in result.best.configuration.values)
    if result.failures:
        lines.append(f"Failures        : {result.failures}")
    if result.restarts:
        lines.append(f"Restarts        : {result.restarts}")
    return "\n".join(lines)


def _format_datetime(value: datetime | None) -> str:
    if value is None:
        return "-"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def _render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(header) for header in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))
    header_line = " | ".join(header.ljust(widths[idx]) for idx, header in enumerate(headers))
    separator = "-+-".join("-" * width for width in widths)
    body = [" | ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row)) for row in rows]
    return "\n".join([header_line, separator, *body])


def _serialize_run(metadata: RunMetadata) -> Dict[str, Any]:
    return {
        "run_id": metadata.run_id,
        "run_dir": str(metadata.run_dir),
        "created_at": metadata.created_at.isoformat() if metadata.created_at else None,
        "status": metadata.status,
        "status_payload": dict(metadata.status_payload),
        "metadata": dict(metadata.metadata),
        "search": dict(metadata.search),
    }


def _runs_list_command(args: argparse.Namespace) -> None:
    filters = {"status": args.status} if args.status else None
    runs = list_runs(filters, runs_root=args.runs_root)
    if args.json:
        print(json.dumps([_serialize_run(run) for run in runs], indent=2, ensure_ascii=False))
        return
    if not runs:
        print(f"No runs found under {args.runs_root}.")
        return
    rows = [
        [
            run.run_id,
            _format_datetime(run.created_at),
            str(run.search.get("strategy") or "-"),
            f"{run.best_value:.6g}" if run.best_value is not None else "-",
            run.status or "-",
        ]
        for run in runs
    ]
    print(_render_table(["run_id", "created", "strategy", "best_value", "status"], rows))


def _runs_show_command(args: argparse.Namespace) -> None:
    metadata = load_run(args.run_id, runs_root=args.runs_root)
    if args.as_json:
        print(json.dumps(dict(metadata.raw), indent=2, ensure_ascii=False))
        return
    lines = [
        f"Run ID         : {metadata.run_id}",
        f"Directory      : {metadata.run_dir}",
        f"Created at     : {_format_datetime(metadata.created_at)}",
        f"Status         : {metadata.status or '-'}",
    ]
    payload = [(key, value) for key, value in sorted(metadata.status_payload.items()) if key != "state"]
    if payload:
        lines.append("Status payload :")
        lines.extend(f"  - {key}: {value}" for key, value in payload)
    if metadata.artifacts:
        lines.append("Artifacts      :")
        lines.extend(f"  - {key}: {value}" for key, value in sorted(metadata.artifacts.items()))
    print("\n".join(lines))


def _install_interrupt_handler(event: threading.Event) -> Any:
    """First Ctrl-C stops the search after the running iteration; a second one aborts it."""

    def _handler(signum: int, frame: Any) -> None:
        if event.is_set():
            raise KeyboardInterrupt
        event.set()
        print("Interrupt received; stopping after the current iteration.")

    try:
        return signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not on the main thread
        return None


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)

    if args.command == "runs":
        if args.runs_command == "list":
            _runs_list_command(args)
        else:
            _runs_show_command(args)
        return

    config_model = load_config(args.config)
    config = config_model.model_dump(mode="python")

    if args.as_json:
        print(json.dumps(config_model.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return
    if args.summarize:
        print(summarize_config(config))
        return

    configure_logging(args.verbose)
    from .runner import run_from_config

    handle = create_run(config_model, config_source=args.config, runs_root=args.runs_root)
    update_run_status(handle.run_dir, "running")

    interrupt = threading.Event()
    previous = _install_interrupt_handler(interrupt)
    try:
        outcome = run_from_config(handle.config, interrupt=interrupt)
    except Exception as exc:
        update_run_status(handle.run_dir, "failed", error=f"{exc.__class__.__name__}: {exc}")
        raise
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)

    interrupted = outcome.result.status is SearchStatus.STOPPED_INTERRUPTED
    state = "interrupted" if interrupted else "completed"
    update_run_status(handle.run_dir, state, **result_status_payload(outcome.result))
    print(format_result(outcome.result))
    if outcome.report_path is not None:
        print(f"Report          : {outcome.report_path}")


if __name__ == "__main__":
    main()
