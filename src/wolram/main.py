"""CLI entrypoint for wolram."""

import logging
from pathlib import Path

import rich_click as click

from wolram import __version__
from wolram.orchestrator.controllers import (
    DemoCommand,
    RunJobCommand,
    StatusCommand,
    TodoCommand,
    WolramCliController,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WolramCliController()
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="wolram")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to a `wolram.toml` file.",
)
@click.pass_context
def wolram(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Governed lifecycle for AI-assisted coding jobs.

    Each job runs `INIT -> DEFINE_AGENT -> PROCESS -> END` with bounded retries,
    cost-aware model routing and an audit record. Without an API key jobs run
    against a deterministic stub backend.
    """

    _configure_logging(verbose=verbose)
    ctx.obj = {"config_path": config_path}


@wolram.command("run")
@click.argument("description", required=False)
@click.option(
    "--file",
    "job_file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Job file: JSON with `description` (and optional retry limits) or plain text.",
)
@click.option(
    "--model",
    type=click.Choice(["haiku", "sonnet", "opus"], case_sensitive=False),
    default=None,
    help="Force the capability tier instead of routing.",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Retry budget for the PROCESS stage.",
)
@click.option(
    "--audit-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory for `<job_id>.json` audit records.",
)
@click.option("--no-git", is_flag=True, help="Do not commit the result.")
@click.option("--no-llm-routing", is_flag=True, help="Route with keyword scoring only.")
@click.pass_context
def run_job(  # noqa: PLR0913
    ctx: click.Context,
    description: str | None,
    job_file: Path | None,
    model: str | None,
    max_retries: int | None,
    audit_dir: Path | None,
    no_git: bool,
    no_llm_routing: bool,
) -> None:
    """Run one job through the lifecycle and print its audit summary."""

    if description is None and job_file is None:
        raise click.UsageError("Provide a job DESCRIPTION or --file.")
    try:
        result = CONTROLLER.run_job(
            RunJobCommand(
                description=description,
                file=job_file,
                model=model,
                max_retries=max_retries,
                audit_dir=audit_dir,
                no_git=no_git,
                no_llm_routing=no_llm_routing,
                config_path=_config_path(ctx),
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(result.lines)
    if not result.succeeded:
        raise click.ClickException("Job failed.")


@wolram.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show effective configuration and git recording status."""

    try:
        lines = CONTROLLER.status(StatusCommand(config_path=_config_path(ctx)))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@wolram.command("todo")
@click.argument("prompt")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
)
@click.pass_context
def todo(ctx: click.Context, prompt: str, output_format: str) -> None:
    """Break a request into ordered TODO items."""

    if not prompt.strip():
        raise click.UsageError("PROMPT must not be empty.")
    try:
        lines = CONTROLLER.todo(
            TodoCommand(
                prompt=prompt,
                config_path=_config_path(ctx),
                output_format=output_format,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@wolram.command("demo")
@click.option(
    "--transient-failures",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Simulated network failures before the stub answers.",
)
def demo(transient_failures: int) -> None:
    """Walk a sample job through the lifecycle offline."""

    _emit_lines(CONTROLLER.demo(DemoCommand(transient_failures=transient_failures)))


def _config_path(ctx: click.Context) -> Path | None:
    return (ctx.obj or {}).get("config_path")


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        force=True,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    wolram()
