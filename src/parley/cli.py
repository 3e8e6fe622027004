import click


@click.group()
def main() -> None:
    """Parley - streaming tool-calling assistant service."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from PARLEY_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from PARLEY_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the HTTP server."""
    import uvicorn

    from parley.settings import get_settings

    settings = get_settings()

    uvicorn.run(
        "parley.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
