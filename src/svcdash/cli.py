import logging
from typing import Optional

import typer

from . import __version__
from .config import ConfigError, load_settings
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


app = typer.Typer(
    name="svcdash",
    add_completion=False,
    help=(
        "Terminal dashboard for systemd units: browse, follow logs, read unit files,\n"
        "start/stop/restart/enable/disable.\n\n"
        "Configuration comes from SVCDASH_* environment variables\n"
        "(SVCDASH_SCOPE=system|user, SVCDASH_BACKEND=dbus|systemctl, SVCDASH_DEV_KEYWORDS, ...).\n"
        "Controlling system units needs root or a matching polkit rule."
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: Optional[bool]) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.command()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        is_eager=True,
        callback=_version_callback,
    ),
):
    """Open the dashboard. Quit with q or Ctrl+C."""
    try:
        settings = load_settings()
    except ConfigError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2)

    log_path = setup_logging(settings)
    logger.info("svcdash %s starting (scope=%s, backend=%s, log=%s)", __version__, settings.scope, settings.backend, log_path)

    # Lazy import to avoid importing Textual for --help/--version
    from .dash.app import run_dash

    try:
        run_dash(settings)
    except Exception as e:
        # The terminal surface could not be set up; nothing else is fatal
        logger.exception("dashboard failed to start")
        typer.echo(f"Failed to start dashboard: {e}", err=True)
        raise typer.Exit(code=1)


def run() -> None:
    app()
