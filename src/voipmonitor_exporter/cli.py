"""Command line interface for the VoIPmonitor exporter.

Usage:
    voipmonitor-exporter serve             # Serve metrics for Prometheus
    voipmonitor-exporter collect [--json]  # Run one collection cycle and print it
    voipmonitor-exporter roster            # Show the polled components
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path

import click
from dotenv import load_dotenv

from voipmonitor_exporter import __version__
from voipmonitor_exporter.config import ExporterConfig, load_config
from voipmonitor_exporter.errors import ConfigError
from voipmonitor_exporter.metrics.collector import CollectionCycle
from voipmonitor_exporter.server import run_server

logger = logging.getLogger(__name__)


class CLIContext:
    """Shared state for CLI commands."""

    def __init__(
        self,
        config_path: str | None = None,
        env_file: str = ".env",
        verbose: bool = False,
    ):
        self.config_path = Path(config_path) if config_path else None
        self.env_file = env_file
        self.verbose = verbose
        self._config: ExporterConfig | None = None

    @property
    def config(self) -> ExporterConfig:
        """Load and validate configuration on first use."""
        if self._config is None:
            if not load_dotenv(self.env_file):
                logger.info(
                    f"Error loading {self.env_file} file, assume env variables are set."
                )
            try:
                config = load_config(self.config_path)
                config.validate()
            except ConfigError as e:
                raise click.ClickException(str(e)) from e
            self._config = config
        return self._config


pass_context = click.make_pass_decorator(CLIContext)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to voipmonitor.toml",
)
@click.option(
    "--env-file",
    default=".env",
    show_default=True,
    help="Dotenv file with VOIPMONITOR_* variables",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable debug logging",
)
@click.version_option(version=__version__, prog_name="voipmonitor-exporter")
@click.pass_context
def cli(ctx: click.Context, config: str | None, env_file: str, verbose: bool) -> None:
    """Prometheus exporter for VoIPmonitor call statistics."""
    _configure_logging(verbose)
    ctx.obj = CLIContext(config_path=config, env_file=env_file, verbose=verbose)


# =============================================================================
# Serve Command
# =============================================================================


@cli.command()
@click.option(
    "--web.listen-address",
    "listen_address",
    default=None,
    help="Address to listen on for telemetry [default: :9141]",
)
@click.option(
    "--web.telemetry-path",
    "telemetry_path",
    default=None,
    help="Path under which to expose metrics [default: /metrics]",
)
@pass_context
def serve(ctx: CLIContext, listen_address: str | None, telemetry_path: str | None) -> None:
    """Serve metrics until interrupted."""
    config = ctx.config
    web = config.web
    if listen_address:
        web = replace(web, listen_address=listen_address)
    if telemetry_path:
        path = telemetry_path if telemetry_path.startswith("/") else f"/{telemetry_path}"
        web = replace(web, telemetry_path=path)
    config = replace(config, web=web)

    try:
        asyncio.run(run_server(config))
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        click.echo("Stopped.")


# =============================================================================
# Collect Command
# =============================================================================


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@pass_context
def collect(ctx: CLIContext, as_json: bool) -> None:
    """Run one collection cycle and print the observations."""
    result = asyncio.run(CollectionCycle(ctx.config).run())

    if as_json:
        click.echo(json.dumps({
            "up": result.ok,
            "error": str(result.error) if result.error else None,
            "failed_components": sorted(result.failures),
            "observations": [o.to_dict() for o in result.observations],
        }, indent=2))
    elif result.ok:
        click.echo(f"{'Component':<24} {'Code':<6} {'Response':<32} {'Calls':>10}")
        click.echo("-" * 75)
        for o in sorted(
            result.observations, key=lambda o: (o.component, o.response_code)
        ):
            click.echo(
                f"{o.component:<24} {o.response_code:<6} "
                f"{o.response_label:<32} {o.count:>10g}"
            )
        for component in sorted(result.failures):
            click.secho(f"✗ {component}: {result.failures[component]}", fg="yellow")
    else:
        click.secho(f"✗ Authentication failed: {result.error}", fg="red")

    if not result.ok:
        click.get_current_context().exit(1)


# =============================================================================
# Roster Command
# =============================================================================


@cli.command()
@pass_context
def roster(ctx: CLIContext) -> None:
    """Show the components polled every cycle."""
    click.echo(f"{'Component':<24} {'Sensor ID':<10}")
    click.echo("-" * 35)
    for name, sensor_id in sorted(ctx.config.roster.items()):
        click.echo(f"{name:<24} {sensor_id:<10}")


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
