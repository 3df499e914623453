"""covtrend CLI implementation.

Provides the command-line interface for recording, analyzing and comparing
coverage history.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from covtrend.analysis import ChangeDirection, TrendAnalyzer, TrendDirection
from covtrend.cancellation import CancelScope
from covtrend.comparison import (
    ComparisonEngine,
    ComparisonResult,
    load_file_diffs,
    load_snapshot,
    save_comparison,
)
from covtrend.config import ConfigLoader, FileConfig
from covtrend.exceptions import CovTrendError, NotFoundError
from covtrend.models import CoverageSnapshot, RecordOptions
from covtrend.persistence import HistoryStore
from covtrend.sync import DirectoryTransport, HistorySynchronizer

app = typer.Typer(
    name="covtrend",
    help="Coverage history tracking, trend analysis and pull request comparison.",
    no_args_is_help=True,
)

console = Console()

_DIRECTION_STYLE = {
    TrendDirection.UP: "[green]↑ up[/green]",
    TrendDirection.DOWN: "[red]↓ down[/red]",
    TrendDirection.STABLE: "[dim]→ stable[/dim]",
}

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to covtrend.yaml configuration file."),
]
StoragePathOption = Annotated[
    str | None,
    typer.Option("--storage-path", "-s", help="History directory (overrides config)."),
]
TimeoutOption = Annotated[
    float | None,
    typer.Option("--timeout", help="Abort the operation after this many seconds."),
]


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_file_config(config_file: Path | None) -> FileConfig | None:
    try:
        return ConfigLoader.load_config(config_file)
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e


def _open_store(config_file: Path | None, storage_path: str | None) -> HistoryStore:
    file_config = _load_file_config(config_file)
    history_config = ConfigLoader.resolve_history_config(
        file_config, cli_storage_path=storage_path
    )
    return HistoryStore(history_config)


def _scope(timeout: float | None) -> CancelScope | None:
    return CancelScope(timeout=timeout) if timeout is not None else None


def _parse_metadata(items: list[str] | None) -> dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    metadata: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            msg = f"Invalid metadata '{item}'. Use KEY=VALUE."
            raise typer.BadParameter(msg)
        metadata[key] = value
    return metadata


def _build_snapshot(
    snapshot_file: Path | None,
    percentage: float | None,
    covered: int | None,
    total: int | None,
) -> CoverageSnapshot:
    if snapshot_file is not None:
        return load_snapshot(snapshot_file)
    try:
        if covered is not None and total is not None:
            return CoverageSnapshot.from_counts(covered, total)
        if percentage is not None:
            return CoverageSnapshot(percentage=percentage)
    except PydanticValidationError as e:
        raise typer.BadParameter(str(e)) from e
    msg = "Provide --snapshot, --percentage, or both --covered and --total."
    raise typer.BadParameter(msg)


@app.command()
def record(  # noqa: PLR0913 - Typer requires CLI args as function parameters
    snapshot_file: Annotated[
        Path | None,
        typer.Option("--snapshot", help="Coverage snapshot JSON file.", exists=True),
    ] = None,
    percentage: Annotated[
        float | None,
        typer.Option("--percentage", "-p", help="Overall coverage percentage."),
    ] = None,
    covered: Annotated[
        int | None,
        typer.Option("--covered", help="Covered statement count."),
    ] = None,
    total: Annotated[
        int | None,
        typer.Option("--total", help="Total statement count."),
    ] = None,
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch name (defaults to config)."),
    ] = None,
    commit: Annotated[
        str | None,
        typer.Option("--commit", help="Commit SHA."),
    ] = None,
    commit_url: Annotated[
        str | None,
        typer.Option("--commit-url", help="Link to the commit."),
    ] = None,
    meta: Annotated[
        list[str] | None,
        typer.Option("--meta", "-m", help="Extra metadata as KEY=VALUE (repeatable)."),
    ] = None,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
) -> None:
    """Record a coverage measurement.

    Example:
        covtrend record --covered 812 --total 1000 --branch main --commit abc123
    """
    store = _open_store(config_file, storage_path)
    try:
        snapshot = _build_snapshot(snapshot_file, percentage, covered, total)
        options = RecordOptions(
            branch=branch,
            commit_sha=commit,
            commit_url=commit_url,
            metadata=_parse_metadata(meta),
        )
        target_branch = branch or snapshot.branch or store.config.default_branch
        status = TrendAnalyzer(store).change_status(target_branch, snapshot.percentage)
        saved = store.record(snapshot, options)
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"[green]Recorded {saved.percentage:.2f}% for {saved.branch}@{saved.commit_sha}[/green]"
    )
    if status.baseline_available and status.previous_percentage is not None:
        change_style = {
            ChangeDirection.IMPROVED: "green",
            ChangeDirection.DECLINED: "red",
            ChangeDirection.STABLE: "dim",
        }[status.direction]
        console.print(
            f"[{change_style}]{status.direction.value}[/{change_style}] "
            f"from {status.previous_percentage:.2f}%"
        )
    else:
        console.print("[dim]No previous record for this branch.[/dim]")


@app.command()
def latest(
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch name (defaults to config)."),
    ] = None,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
) -> None:
    """Show the most recent record for a branch."""
    store = _open_store(config_file, storage_path)
    target_branch = branch or store.config.default_branch
    try:
        entry = store.get_latest_entry(target_branch)
    except NotFoundError:
        console.print(f"[yellow]No history for branch: {target_branch}[/yellow]")
        raise typer.Exit(code=0) from None
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Branch", entry.branch)
    table.add_row("Commit", entry.commit_sha)
    table.add_row("Coverage", f"{entry.percentage:.2f}%")
    table.add_row("Statements", f"{entry.covered_statements}/{entry.total_statements}")
    table.add_row("Timestamp", entry.timestamp.isoformat())
    if entry.commit_url:
        table.add_row("URL", entry.commit_url)
    console.print(table)


@app.command()
def trend(  # noqa: PLR0913 - Typer requires CLI args as function parameters
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch name (defaults to config)."),
    ] = None,
    days: Annotated[
        int,
        typer.Option("--days", "-d", help="Number of days to analyze.", min=1),
    ] = 30,
    max_points: Annotated[
        int | None,
        typer.Option("--max-points", help="Analyze only the newest N records.", min=1),
    ] = None,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Show coverage trend analysis for a branch.

    Example:
        covtrend trend --branch main --days 14
    """
    store = _open_store(config_file, storage_path)
    target_branch = branch or store.config.default_branch
    try:
        report = TrendAnalyzer(store).get_trend(
            target_branch, days, max_data_points=max_points, scope=_scope(timeout)
        )
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    summary = report.summary
    if summary.total_entries == 0:
        console.print(f"[yellow]No history for {target_branch} in the last {days} day(s).[/yellow]")
        raise typer.Exit(code=0)

    analysis = report.analysis
    table = Table(title=f"Coverage Trend: {target_branch} ({days}d)", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Entries", str(summary.total_entries))
    table.add_row("Average", f"{summary.average_percentage:.2f}%")
    table.add_row("Min / Max", f"{summary.min_percentage:.2f}% / {summary.max_percentage:.2f}%")
    table.add_row("Current trend", _DIRECTION_STYLE[summary.current_trend])
    table.add_row("Short-term trend", _DIRECTION_STYLE[analysis.short_term_trend.direction])
    table.add_row("Change over window", f"{analysis.short_term_trend.change_percent:+.2f}")
    for period in (analysis.short_term, analysis.medium_term, analysis.long_term):
        if period.data_points >= 2:
            table.add_row(
                f"Last {period.period_days} days",
                f"{_DIRECTION_STYLE[period.direction]} {period.change:+.2f} "
                f"({period.data_points} points)",
            )
    table.add_row("Volatility", f"{analysis.volatility:.2f}")
    table.add_row("Momentum", f"{analysis.momentum:+.2f}")
    table.add_row("Confidence", f"{analysis.confidence:.0f}%")
    if analysis.prediction is not None:
        week = analysis.prediction.next_week
        month = analysis.prediction.next_month
        table.add_row(
            "Next week",
            f"{week.percentage:.2f}% ({week.range.min:.2f}-{week.range.max:.2f})",
        )
        table.add_row(
            "Next month",
            f"{month.percentage:.2f}% ({month.range.min:.2f}-{month.range.max:.2f})",
        )
    console.print(table)


@app.command()
def stats(
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Show statistics for the whole history store."""
    store = _open_store(config_file, storage_path)
    try:
        statistics = store.get_statistics(scope=_scope(timeout))
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    if statistics.total_entries == 0:
        console.print("[yellow]History store is empty.[/yellow]")
        raise typer.Exit(code=0)

    table = Table(title="History Statistics")
    table.add_column("Branch", style="cyan")
    table.add_column("Entries", justify="right")
    for name, count in sorted(statistics.branches.items()):
        table.add_row(name, str(count))
    console.print(table)

    console.print(f"\n[bold]Total entries:[/bold] {statistics.total_entries}")
    console.print(f"[bold]Storage size:[/bold] {statistics.storage_size} bytes")
    if statistics.oldest_entry and statistics.newest_entry:
        console.print(
            f"[bold]Range:[/bold] {statistics.oldest_entry.isoformat()} "
            f"to {statistics.newest_entry.isoformat()}"
        )
    for project, count in sorted(statistics.projects.items()):
        console.print(f"  [dim]project[/dim] {project}: {count}")


@app.command()
def cleanup(
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Only clean this branch (all if not specified)."),
    ] = None,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Remove records outside the retention policy."""
    store = _open_store(config_file, storage_path)
    try:
        result = store.cleanup(branch, scope=_scope(timeout))
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"[green]Removed {result.removed} record(s), kept {result.kept}.[/green]")
    if result.skipped:
        console.print(f"[yellow]Skipped {result.skipped} unreadable unit(s).[/yellow]")


def _display_comparison(result: ComparisonResult) -> None:
    if result.baseline_available:
        console.print(
            f"Coverage: {result.base_coverage.percentage:.2f}% → "
            f"{result.head_coverage.percentage:.2f}% ({result.difference:+.2f})"
        )
    else:
        console.print(
            f"Coverage: {result.head_coverage.percentage:.2f}% "
            "[dim](no baseline available)[/dim]"
        )
    console.print(
        f"Trend: {_DIRECTION_STYLE[result.trend.direction]} "
        f"({result.trend.magnitude.value}, {result.trend.momentum.value})"
    )

    significant = [c for c in result.file_changes if c.is_significant]
    if not significant:
        console.print("[green]No significant file changes.[/green]")
        return

    table = Table(title="Significant File Changes")
    table.add_column("File", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Base", justify="right")
    table.add_column("Head", justify="right")
    table.add_column("Change", justify="right")
    for change in significant:
        color = "red" if change.is_regression else "green"
        table.add_row(
            change.filename,
            change.status.value,
            f"{change.base_coverage:.1f}%",
            f"{change.head_coverage:.1f}%",
            f"[{color}]{change.difference:+.1f}[/{color}]",
        )
    console.print(table)

    if result.diff_summary is not None:
        ds = result.diff_summary
        console.print(
            f"\nChanged files: {ds.total_files} "
            f"({ds.source_files} source, {ds.test_files} test, {ds.other_files} other), "
            f"+{ds.total_additions}/-{ds.total_deletions}"
        )


@app.command()
def compare(  # noqa: PLR0913 - Typer requires CLI args as function parameters
    head_file: Annotated[
        Path,
        typer.Argument(help="Head coverage snapshot JSON file.", exists=True),
    ],
    base_file: Annotated[
        Path | None,
        typer.Option(
            "--base",
            help="Base snapshot JSON file. Without it, the latest record of --base-branch is used.",
            exists=True,
        ),
    ] = None,
    base_branch: Annotated[
        str | None,
        typer.Option("--base-branch", help="Branch whose history provides the baseline."),
    ] = None,
    diff_file: Annotated[
        Path | None,
        typer.Option("--diff", help="JSON list of per-file line diffs.", exists=True),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the comparison result as JSON."),
    ] = None,
    fail_on_regression: Annotated[
        bool,
        typer.Option("--fail-on-regression", help="Exit with code 1 if coverage dropped."),
    ] = False,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
) -> None:
    """Compare head coverage against a baseline.

    Example:
        covtrend compare head.json --base base.json --diff diff.json --output result.json
    """
    file_config = _load_file_config(config_file)
    engine = ComparisonEngine(ConfigLoader.resolve_comparison_config(file_config))

    try:
        head = load_snapshot(head_file)
        if base_file is not None:
            base: CoverageSnapshot | None = load_snapshot(base_file)
        else:
            history_config = ConfigLoader.resolve_history_config(
                file_config, cli_storage_path=storage_path
            )
            store = HistoryStore(history_config)
            try:
                base = store.get_latest_entry(base_branch or history_config.default_branch)
            except NotFoundError:
                base = None
        diffs = load_file_diffs(diff_file) if diff_file is not None else None
        result = engine.compare(base, head, diffs)
        if output is not None:
            save_comparison(result, output)
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    _display_comparison(result)
    if output is not None:
        console.print(f"[green]Comparison written to {output}[/green]")

    if fail_on_regression and result.trend.direction == TrendDirection.DOWN:
        console.print(f"[red]Coverage regressed by {abs(result.difference):.2f} points[/red]")
        raise typer.Exit(code=1)


@app.command()
def sync(  # noqa: PLR0913 - Typer requires CLI args as function parameters
    artifacts_dir: Annotated[
        Path,
        typer.Option("--artifacts-dir", "-a", help="Directory holding shared history artifacts."),
    ],
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Branch name (defaults to config)."),
    ] = None,
    commit: Annotated[
        str | None,
        typer.Option("--commit", help="Commit SHA used in the artifact name."),
    ] = None,
    pr_number: Annotated[
        str | None,
        typer.Option("--pr", help="Pull request number used in the artifact name."),
    ] = None,
    max_runs: Annotated[
        int | None,
        typer.Option("--max-runs", help="Maximum records kept after merging.", min=1),
    ] = None,
    config_file: ConfigOption = None,
    storage_path: StoragePathOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Merge local history with shared artifacts and publish the result.

    Example:
        covtrend sync --artifacts-dir /mnt/ci-cache/coverage --branch main
    """
    file_config = _load_file_config(config_file)
    store = HistoryStore(
        ConfigLoader.resolve_history_config(file_config, cli_storage_path=storage_path)
    )
    sync_config = ConfigLoader.resolve_sync_config(file_config, cli_max_runs=max_runs)
    synchronizer = HistorySynchronizer(store, DirectoryTransport(artifacts_dir), sync_config)
    target_branch = branch or store.config.default_branch

    try:
        bundle = synchronizer.sync(target_branch, commit, pr_number, scope=_scope(timeout))
    except CovTrendError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"[green]Synchronized {bundle.metadata.record_count} record(s) for {target_branch}[/green]"
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
