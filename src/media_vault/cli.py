import asyncio
import logging
import sys

from typing import Optional

import typer

if sys.platform == "win32":
    # Принудительно устанавливаем политику, которая использует SelectorEventLoop.
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from media_vault import create_media_client
from media_vault.exceptions import BackendError, InitError
from media_vault.logging import configure
from media_vault.models import StorageType
from media_vault.utils.cli_utils import get_rich_console, status_table

app = typer.Typer(help="CLI for media-vault management.")
logger = logging.getLogger(__name__)
console = get_rich_console()


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL")):
    configure(log_level)


@app.command()
def init():
    """
    Bootstraps the metadata schema and makes sure the storage bucket exists.
    """
    console.rule("[bold cyan]Service Initialization[/bold cyan]")

    async def _init():
        client = create_media_client()
        try:
            with console.status("Bootstrapping metadata schema...", spinner="dots"):
                try:
                    default_id = await client.ensure_ready()
                except InitError as e:
                    console.log(f"[bold red]✖[/bold red] Database initialization FAILED: {e}")
                    raise typer.Exit(code=1)
            if client.driver.is_ephemeral:
                console.log("[yellow]![/yellow] No DSN configured, using the in-memory metadata store")
            console.log(f"[bold green]✔[/bold green] Schema ready, default category id {default_id}.")

            bucket = client.backends.get(StorageType.bucket)
            if bucket is None:
                console.log("[yellow]![/yellow] Bucket storage is not configured, skipping.")
                return
            with console.status("Initializing storage bucket...", spinner="dots"):
                try:
                    await bucket.check_connection()
                except BackendError as e:
                    console.log(f"[bold red]✖[/bold red] Bucket initialization FAILED: {e}")
                    raise typer.Exit(code=1)
            console.log(f"[bold green]✔[/bold green] Bucket '{bucket.bucket}' is ready.")
        finally:
            await client.aclose()

    asyncio.run(_init())
    console.print("\n[bold green]✅ All services initialized successfully![/bold green]")


@app.command()
def check():
    """Checks connectivity to the database and every configured storage."""
    console.rule("[bold cyan]Connection Check[/bold cyan]")

    async def _check():
        client = create_media_client()
        try:
            return await client.check_connections()
        finally:
            await client.aclose()

    statuses = asyncio.run(_check())
    console.print(status_table(statuses))
    if any(s.startswith("failed") for s in statuses.values()):
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
):
    """Runs the HTTP router with uvicorn."""
    import uvicorn

    console.print(f"[bold cyan]Serving media-vault on http://{host}:{port}[/bold cyan]")
    uvicorn.run("media_vault.server.main:create_app", factory=True, host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
