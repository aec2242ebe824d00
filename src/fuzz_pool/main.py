"""CLI entrypoint for fuzz-pool."""

import logging
from pathlib import Path

import rich_click as click

from fuzz_pool import __version__
from fuzz_pool.controllers import (
    FuzzPoolCliController,
    PlanCommand,
    PrepareCommand,
    RunCommand,
    StatusCommand,
)
from fuzz_pool.corpus import CorpusPrepareError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = FuzzPoolCliController()
EXIT_CONFIG_ERROR = 2


class ConfigurationError(click.ClickException):
    """Invalid settings or an infeasible memory budget."""

    exit_code = EXIT_CONFIG_ERROR


@click.group()
@click.version_option(version=__version__, prog_name="fuzz-pool")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def fuzz_pool(log_level: str) -> None:
    """Resource-aware fuzz worker pool supervisor."""

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, log_level.upper()),
    )


def _budget_options(func):
    options = [
        click.option(
            "--total-memory-mb",
            type=click.IntRange(min=1),
            default=None,
            help="Memory handed to the environment. Detected when omitted.",
        ),
        click.option(
            "--os-overhead-mb",
            type=click.IntRange(min=0),
            default=None,
            help="Memory held back for the OS and daemons.",
        ),
        click.option(
            "--swap-fraction",
            type=click.FloatRange(min=0.0, max=1.0, max_open=True),
            default=None,
            help="Fraction of usable memory reserved for compressed swap.",
        ),
        click.option(
            "--rss-limit-mb",
            type=click.IntRange(min=1),
            default=None,
            help="Per-worker RSS self-limit passed to the engine.",
        ),
        click.option(
            "--safety-margin-mb",
            type=click.IntRange(min=0),
            default=None,
            help="Headroom kept between usable memory and the pool ceiling.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@fuzz_pool.command("plan")
@_budget_options
def plan(  # noqa: PLR0913
    total_memory_mb: int | None,
    os_overhead_mb: int | None,
    swap_fraction: float | None,
    rss_limit_mb: int | None,
    safety_margin_mb: int | None,
) -> None:
    """Compute worker count and memory ceiling for a budget."""

    try:
        lines = CONTROLLER.plan(
            PlanCommand(
                total_memory_mb=total_memory_mb,
                os_overhead_mb=os_overhead_mb,
                swap_fraction=swap_fraction,
                rss_limit_mb=rss_limit_mb,
                safety_margin_mb=safety_margin_mb,
            ),
        )
    except ValueError as error:
        raise ConfigurationError(str(error)) from error
    _emit_lines(lines)


@fuzz_pool.command("prepare")
@click.option("--corpus-dir", type=click.Path(path_type=Path), default=None, help="Corpus dir.")
@click.option("--logs-dir", type=click.Path(path_type=Path), default=None, help="Logs dir.")
def prepare(corpus_dir: Path | None, logs_dir: Path | None) -> None:
    """Create shared corpus and log directories."""

    try:
        lines = CONTROLLER.prepare(PrepareCommand(corpus_dir=corpus_dir, logs_dir=logs_dir))
    except ValueError as error:
        raise ConfigurationError(str(error)) from error
    except CorpusPrepareError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@fuzz_pool.command("run")
@click.option(
    "--binary",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="libFuzzer binary to run in every worker.",
)
@click.option("--corpus-dir", type=click.Path(path_type=Path), default=None, help="Corpus dir.")
@click.option("--logs-dir", type=click.Path(path_type=Path), default=None, help="Logs dir.")
@click.option(
    "--max-restarts",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after this many pool restarts (0 = restart forever).",
)
@_budget_options
def run(  # noqa: PLR0913
    binary: Path | None,
    corpus_dir: Path | None,
    logs_dir: Path | None,
    max_restarts: int | None,
    total_memory_mb: int | None,
    os_overhead_mb: int | None,
    swap_fraction: float | None,
    rss_limit_mb: int | None,
    safety_margin_mb: int | None,
) -> None:
    """Launch the worker pool and restart it whenever a worker exits."""

    try:
        result = CONTROLLER.run(
            RunCommand(
                binary=binary,
                plan=PlanCommand(
                    total_memory_mb=total_memory_mb,
                    os_overhead_mb=os_overhead_mb,
                    swap_fraction=swap_fraction,
                    rss_limit_mb=rss_limit_mb,
                    safety_margin_mb=safety_margin_mb,
                ),
                corpus_dir=corpus_dir,
                logs_dir=logs_dir,
                max_restarts=max_restarts,
            ),
        )
    except ValueError as error:
        raise ConfigurationError(str(error)) from error
    _emit_lines(result.lines)
    if result.exit_code:
        raise SystemExit(result.exit_code)


@fuzz_pool.command("status")
@click.option("--logs-dir", type=click.Path(path_type=Path), default=None, help="Logs dir.")
def status(logs_dir: Path | None) -> None:
    """Show readiness and per-worker log files."""

    _emit_lines(CONTROLLER.status(StatusCommand(logs_dir=logs_dir)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    fuzz_pool()
