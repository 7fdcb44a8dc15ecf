"""Markdown report for a finished search."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List

from .config import SearchRunConfig
from .results import SearchResult, show_best


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


def render_report(config: SearchRunConfig, result: SearchResult, *, log_path: Path | None = None) -> str:
    metric = config.search.metric
    lines: List[str] = [
        f"# Search Report: {config.metadata.name}",
        "",
        f"Description: {config.metadata.description}",
        "",
        f"Strategy: {result.strategy} ({result.direction.value} {metric})",
        f"Iterations completed: {result.iterations_completed}",
        f"Observations: {result.n_observations}",
        f"Failed evaluations: {result.failures}",
    ]
    if result.strategy == "annealing":
        lines.append(f"Restarts: {result.restarts}")
    lines.append(f"Final state: {result.status.value} ({result.stop_reason or '-'})")
    if result.failed_out:
        lines.extend(["", "_Stopped early after consecutive evaluation failures._"])

    lines.extend(["", "## Best Configuration"])
    if result.best is None:
        lines.append("No successful evaluations.")
    else:
        lines.extend(
            f"- **{name}**: {_format_value(value)}"
            for name, value in result.best.configuration.values
        )
        lines.extend(
            [
                "",
                "## Best Performance",
                f"- **{metric}** (mean): {_format_value(result.best.mean)}",
                f"- **std_error**: {_format_value(result.best.std_error)}",
                f"- **iteration**: {result.best.iteration}",
            ]
        )

        top = show_best(result, n=config.report.top_n)
        columns = [*result.space.names, "mean", "std_error", "iteration", "source"]
        lines.extend(
            [
                "",
                f"## Top {len(top)} Observations",
                "",
                "| Rank | " + " | ".join(columns) + " |",
                "|" + " --- |" * (len(columns) + 1),
            ]
        )
        for rank, values in enumerate(top.to_dict(orient="records"), start=1):
            cells = [str(rank), *(_format_value(_plain(values.get(col))) for col in columns)]
            lines.append("| " + " | ".join(cells) + " |")

    if log_path is not None:
        lines.extend(["", f"Progress log: `{Path(log_path).name}`"])
    return "\n".join(lines) + "\n"


def _plain(value: Any) -> Any:
    return value.item() if hasattr(value, "item") else value


def build_report(
    config: SearchRunConfig,
    result: SearchResult,
    *,
    log_path: Path | None = None,
) -> Path:
    """Write the report under ``report.output_dir`` and return its path."""

    report_dir = Path(config.report.output_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    filename = config.report.filename or f"{config.metadata.name}.md"
    report_path = report_dir / filename
    report_path.write_text(render_report(config, result, log_path=log_path), encoding="utf-8")
    return report_path


__all__ = ["build_report", "render_report"]
