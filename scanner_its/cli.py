"""CLI entry point — command definitions using Click.

Commands:
    init          Generate a template config file
    list          List the available scenarios
    run           Run one or more scenarios and emit their outcomes as JSON
    help-check    Check that the scanner prints its usage banner
"""

import functools
import json
import logging
import sys
from typing import Any

import click

from scanner_its import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all commands
# ---------------------------------------------------------------------------

def _load_config(ctx: click.Context):
    """Load the configuration. Exits on error."""
    from scanner_its.config import load
    from scanner_its.errors import ConfigError

    obj = ctx.obj
    try:
        config = load(obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    if obj["verbose"]:
        click.echo(f"[verbose] Using SonarQube at {config.url}", err=True)
    return config


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _handle_harness_errors(func):
    """Decorator that catches harness exceptions and exits cleanly."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from scanner_its.client import AuthenticationError, NetworkError, SonarClientError
        from scanner_its.errors import (
            AnalysisFailed,
            AssertionFailure,
            ConfigError,
            ExternalBuildFailure,
            OperationTimeout,
            SessionStateError,
        )

        try:
            return func(*args, **kwargs)
        except ConfigError as exc:
            click.echo(f"Configuration error: {exc}", err=True)
            sys.exit(1)
        except SessionStateError as exc:
            click.echo(f"Session error: {exc}", err=True)
            sys.exit(1)
        except AuthenticationError as exc:
            click.echo(f"Authentication error: {exc}", err=True)
            sys.exit(1)
        except NetworkError as exc:
            click.echo(f"Network error: {exc}", err=True)
            sys.exit(1)
        except SonarClientError as exc:
            click.echo(f"SonarQube error: {exc}", err=True)
            sys.exit(1)
        except AnalysisFailed as exc:
            click.echo(f"Analysis failed ({exc.reason}): {exc}", err=True)
            sys.exit(1)
        except ExternalBuildFailure as exc:
            click.echo(f"Build failed: {exc}", err=True)
            sys.exit(1)
        except OperationTimeout as exc:
            click.echo(f"Timeout: {exc}", err=True)
            sys.exit(1)
        except AssertionFailure as exc:
            click.echo(f"Verification failed: {exc}", err=True)
            sys.exit(2)

    return wrapper


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default="its-config.yaml", show_default=True,
              help="Path to the configuration file.")
@click.option("--output", "output_path", default=None,
              help="Write JSON output to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="scanner-its")
@click.pass_context
def cli(ctx: click.Context, config_path: str, output_path: str | None,
        pretty: bool, verbose: bool) -> None:
    """Scanner for MSBuild integration tests — drive begin/build/end and verify results."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default="its-config.yaml", show_default=True,
              help="Path where the template config file will be written.")
def init_command(output_path: str) -> None:
    """Generate a template its-config.yaml file."""
    from scanner_its.config import generate_template
    from scanner_its.errors import ConfigError
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit it with your server URL, token, scanner and MSBuild paths.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

@cli.command("list")
def list_command() -> None:
    """List the available scenarios."""
    from scanner_its.scenarios import SCENARIOS

    width = max(len(name) for name in SCENARIOS)
    for name, scenario in SCENARIOS.items():
        click.echo(f"{name:<{width}}  {scenario.description}")


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

@cli.command("run")
@click.argument("names", nargs=-1)
@click.option("--unique-keys", is_flag=True, default=False,
              help="Suffix the project key per run instead of resetting the shared key.")
@click.option("--workspace", default=None,
              help="Directory fixtures are staged into (default: a new temp dir).")
@click.option("--logs", "include_logs", is_flag=True, default=False,
              help="Include captured scanner and build logs in the output.")
@click.pass_context
@_handle_harness_errors
def run_command(ctx: click.Context, names: tuple[str, ...], unique_keys: bool,
                workspace: str | None, include_logs: bool) -> None:
    """Run scenarios NAMES (all scenarios when omitted)."""
    from scanner_its.errors import ConfigError
    from scanner_its.scenarios import SCENARIOS, ScenarioRunner

    unknown = [n for n in names if n not in SCENARIOS]
    if unknown:
        raise ConfigError(
            f"Unknown scenario(s): {', '.join(unknown)}. Available: {', '.join(SCENARIOS)}"
        )

    config = _load_config(ctx)
    runner = ScenarioRunner(config, workspace=workspace)

    outcomes = []
    for name in names or tuple(SCENARIOS):
        if ctx.obj["verbose"]:
            click.echo(f"[verbose] Running scenario '{name}'", err=True)
        outcome = runner.run(SCENARIOS[name], unique_key=unique_keys)
        outcomes.append(outcome.to_dict(include_logs=include_logs))

    _emit_json({"scenarios": outcomes, "passed": len(outcomes)}, ctx)


# ---------------------------------------------------------------------------
# help-check
# ---------------------------------------------------------------------------

@cli.command("help-check")
@click.pass_context
@_handle_harness_errors
def help_check_command(ctx: click.Context) -> None:
    """Run the scanner with /? and check that it prints its usage banner."""
    from scanner_its.scenarios import SCENARIOS, ScenarioRunner

    config = _load_config(ctx)
    outcome = ScenarioRunner(config).run(SCENARIOS["help"])
    click.echo(f"Scanner usage banner found ({outcome.state}).")
