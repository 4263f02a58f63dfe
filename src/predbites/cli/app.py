"""Root CLI app - entry point and command registration."""

from pathlib import Path

import typer

from predbites.config import configure_logging, get_settings

app = typer.Typer(
    name="bites",
    help="Prediction Bites - pari-mutuel sports predictions staked in MEDALS.",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-C", help="Config directory (default: ./config or package config)"
    ),
    profile: str | None = typer.Option(
        None, "--profile", "-p", help="Config profile (e.g. dev) to overlay on default.toml"
    ),
) -> None:
    """Configure logging and store options in context."""
    settings = get_settings(profile, config_dir)
    configure_logging(settings)
    ctx.obj = {"settings": settings, "config_dir": config_dir, "profile": profile}


# Subcommands registered from other modules
from predbites.cli import api_cmd, predictions, tui_cmd  # noqa: E402

app.add_typer(predictions.app, name="predictions")
app.add_typer(api_cmd.app, name="api")
app.add_typer(tui_cmd.app, name="tui")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
