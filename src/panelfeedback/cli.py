from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import List, Optional

import httpx
import typer
from dotenv import load_dotenv

from panelfeedback.core.config import Settings
from panelfeedback.core.registry import PortRegistry

app = typer.Typer(add_completion=False)

def _load_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()

def _setup_logging(settings: Settings) -> None:
    from panelfeedback.core.logging_config import setup_logging

    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)

def _service_url(settings: Settings) -> str:
    """Base URL of the running service; exits with code 1 when none is advertised."""
    port = PortRegistry(settings.port_file, settings.default_port).read()
    if port is None:
        typer.echo("Panel Feedback service is not running (no port registry file).")
        raise typer.Exit(code=1)
    return f"http://{settings.host}:{port}"

def _post(settings: Settings, path: str, payload: Optional[dict] = None) -> dict:
    url = _service_url(settings) + path
    try:
        with httpx.Client(timeout=settings.http_timeout) as client:
            resp = client.post(url, json=payload or {})
    except httpx.ConnectError:
        typer.echo(f"Panel Feedback service is not reachable at {url}.")
        raise typer.Exit(code=1)
    data = resp.json()
    if resp.status_code >= 400:
        typer.secho(f"Error: {data.get('error', resp.text)}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data

def _image_data_uri(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{payload}"

@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (loopback by default)"),
    port: int = typer.Option(0, help="Bind port; 0 lets the OS choose"),
) -> None:
    """Run the Coordination Service with the built-in panel collaborator."""
    settings = _load_settings()
    if host:
        settings.host = host
    _setup_logging(settings)

    from panelfeedback.service.server import CoordinationServer

    CoordinationServer(settings, port=port).run()

@app.command()
def stdio() -> None:
    """Run the MCP stdio front (what the AI client launches)."""
    from panelfeedback.front.stdio import main

    main()

@app.command()
def status() -> None:
    """Show where the service is listening and how many requests it holds."""
    settings = _load_settings()
    url = _service_url(settings)
    try:
        with httpx.Client(timeout=settings.http_timeout) as client:
            data = client.get(f"{url}/health").json()
    except httpx.HTTPError:
        typer.echo(f"Port registry points at {url}, but nothing answers there (stale record?).")
        raise typer.Exit(code=1)
    typer.echo(f"✅ Panel Feedback {data.get('version', '')} at {url}")
    typer.echo(f"   pending={data.get('pending', 0)} completed={data.get('completed', 0)} error={data.get('error', 0)}")

@app.command()
def respond(
    text: str = typer.Argument(..., help="Feedback text"),
    image: List[Path] = typer.Option([], "--image", "-i", exists=True, dir_okay=False, help="Image to attach"),
) -> None:
    """Answer the request currently shown on the panel."""
    settings = _load_settings()
    _post(settings, "/panel/respond", {"text": text, "images": [_image_data_uri(p) for p in image]})
    typer.echo("Feedback sent.")

@app.command()
def end() -> None:
    """End the conversation for the request currently shown on the panel."""
    settings = _load_settings()
    _post(settings, "/panel/end")
    typer.echo("Conversation ended.")

@app.command()
def clear() -> None:
    """Drop every pending request from the ledger."""
    settings = _load_settings()
    data = _post(settings, "/control/clear")
    typer.echo(f"Cleared {data.get('cleared', 0)} pending request(s).")

@app.command()
def version() -> None:
    from panelfeedback import __version__

    typer.echo(__version__)

if __name__ == "__main__":
    app()
