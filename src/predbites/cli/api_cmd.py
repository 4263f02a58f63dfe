"""API server command."""

import typer

from predbites.api.main import run_api

app = typer.Typer(help="Start the prediction API server")


@app.callback(invoke_without_command=True)
def api(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    if ctx.invoked_subcommand is not None:
        return
    run_api(host=host, port=port, profile=ctx.obj["profile"])


if __name__ == "__main__":
    app()
