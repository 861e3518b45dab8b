"""CLI entrypoint for the mock EMREX provider."""

from __future__ import annotations

import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import typer

if __package__ in {None, ""}:
    package_root = Path(__file__).resolve().parents[1]
    if str(package_root) not in sys.path:
        sys.path.insert(0, str(package_root))
    __package__ = "mock_provider"

from .behavior import BehaviorConfig, BehaviorMode, BehaviorTable
from .logging_utils import configure_logging, resolve_log_format
from .server import ProviderServer, ProviderSettings, ProviderSimulator

app = typer.Typer(help="Run the behavior-configurable mock EMREX provider.")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host."),
    port: Optional[int] = typer.Option(None, help="Bind port (default: MOCK_EMREX_PORT or 9081)."),
    endpoint_url: Optional[str] = typer.Option(
        None,
        help="Public redirect URL advertised on /certificates (default: MOCK_EMREX_ENDPOINT).",
    ),
    behavior: BehaviorMode = typer.Option(BehaviorMode.SUCCESS, help="Initial behavior mode."),
    delay: int = typer.Option(0, min=0, help="Initial response delay in milliseconds."),
    log_level: str = typer.Option("INFO", help="Log level."),
    log_format: Optional[str] = typer.Option(None, help="Log format: console, plain or json."),
) -> None:
    """Serve the control API and the /emrex redirect endpoint until interrupted."""

    logger = configure_logging(log_level, resolve_log_format(log_format))
    settings = ProviderSettings.from_env(host=host, port=port, endpoint_url=endpoint_url)
    simulator = ProviderSimulator(
        BehaviorTable(BehaviorConfig(mode=behavior, delay_ms=delay)),
        callback_timeout=settings.callback_timeout,
    )

    stop_requested = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_requested.set())

    with ProviderServer(settings, simulator) as server:
        typer.secho(f"[mock-provider] listening on {server.url}", fg=typer.colors.GREEN)
        typer.echo(f"    redirect: {server.endpoint_url}")
        typer.echo(f"    control:  {server.url}/test/behavior, {server.url}/test/config")
        try:
            while not stop_requested.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("interrupted")


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
