"""distriproxy CLI - Command line interface."""

from __future__ import annotations

import asyncio
import ssl
from typing import Any

import click
import structlog
from click.core import ParameterSource
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from distriproxy import __version__
from distriproxy.core.config import DEFAULT_CONFIG_FILE, ProxyConfig, ServerSettings
from distriproxy.core.exceptions import ConfigError, DistriproxyError, ExitCode
from distriproxy.core.logging import configure_logging
from distriproxy.routing.table import RouteTable
from distriproxy.server.app import ProxyServer
from distriproxy.server.lifecycle import ShutdownOutcome
from distriproxy.server.listener import AcquiredListener, acquire_listener
from distriproxy.server.tls import create_ssl_context

console = Console()
logger = structlog.get_logger()

TLS_OPTIONS = ("enable_tls", "certificate", "key")


@click.group(invoke_without_command=True)
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(dir_okay=False),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="Path to YAML or TOML config file",
)
@click.option(
    "--enable-tls/--disable-tls",
    default=False,
    help="Run a TLS service (requires key and cert paths)",
)
@click.option("--certificate", metavar="FILENAME", help="Load TLS certificate from FILENAME")
@click.option("--key", metavar="FILENAME", help="Load TLS key from FILENAME")
@click.option(
    "--bind", "-b",
    default=None,
    help="Listen address when no socket is inherited (default: :8080)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.version_option(__version__, prog_name="distriproxy")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str,
    enable_tls: bool,
    certificate: str | None,
    key: str | None,
    bind: str | None,
    log_level: str | None,
):
    """distriproxy - one entry point for many package mirrors.

    Requests for /<prefix>/<path> are served from the upstream configured
    for <prefix>. Without a subcommand the proxy is started.
    """
    try:
        settings = _load_settings(bind=bind, log_level=log_level)
    except ConfigError as e:
        _report(e)
        ctx.exit(e.exit_code)
    configure_logging(settings.log_level, json=settings.log_json)

    # cli flags overwrite config file entries
    overrides = {
        name: ctx.params[name]
        for name in TLS_OPTIONS
        if ctx.get_parameter_source(name) is ParameterSource.COMMANDLINE
    }

    try:
        config = ProxyConfig.from_file(config_file).with_tls_overrides(
            enable=overrides.get("enable_tls"),
            certificate_file=overrides.get("certificate"),
            key_file=overrides.get("key"),
        )
        routes = config.route_table()
    except ConfigError as e:
        _report(e)
        ctx.exit(e.exit_code)

    ctx.obj = {"settings": settings, "config": config, "routes": routes}
    if ctx.invoked_subcommand is None:
        ctx.exit(_serve(settings, config, routes))


@main.command()
@click.pass_context
def routes(ctx: click.Context):
    """Show the configured path prefixes and their upstreams."""
    table = Table(title="Routes")
    table.add_column("Prefix", style="cyan")
    table.add_column("Upstream", style="green")
    for route in ctx.obj["routes"]:
        table.add_row(route.prefix, route.origin)
    console.print(table)


def _load_settings(**overrides: Any) -> ServerSettings:
    values = {name: value for name, value in overrides.items() if value is not None}
    try:
        return ServerSettings(**values)
    except ValidationError as e:
        details = [
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigError("Invalid server settings", details) from e


def _report(error: DistriproxyError) -> None:
    if not structlog.is_configured():
        configure_logging()
    for detail in getattr(error, "details", []):
        logger.error(detail)
    logger.error(f"{error}, exiting")


def _serve(settings: ServerSettings, config: ProxyConfig, routes: RouteTable) -> int:
    """Start the proxy and block until it has shut down.

    Returns:
        The process exit code.
    """
    try:
        ssl_context = create_ssl_context(config.tls_settings())
        listener = acquire_listener(settings.bind)
    except DistriproxyError as e:
        _report(e)
        return e.exit_code

    try:
        outcome = asyncio.run(_run_server(settings, routes, listener, ssl_context))
    except DistriproxyError as e:
        _report(e)
        return e.exit_code
    except OSError as e:
        logger.error("serve returned error", error=str(e))
        return ExitCode.FAILURE

    if outcome is ShutdownOutcome.CLEAN:
        return ExitCode.OK
    return ExitCode.FAILURE


async def _run_server(
    settings: ServerSettings,
    routes: RouteTable,
    listener: AcquiredListener,
    ssl_context: ssl.SSLContext | None,
) -> ShutdownOutcome:
    server = ProxyServer(settings, routes, ssl_context=ssl_context)
    return await server.serve(listener)


if __name__ == "__main__":
    main()
