#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import dataclasses
from pathlib import Path
from typing import Optional, Tuple

import aioconsole
import typer
from rich.console import Console
from rich.table import Table

from wscommon.config import ClientConfig, proxy_from_env
from wscommon.errors import ConnectFailed, InvalidEndpoint, NotConnected, WebSocketClientError
from wscommon.log import configure_root_logging, get_logger
from wscommon.utils import parse_hostport
from wsclient.core.Handshake import compute_accept
from wsclient.ws_client import WebSocketClient

app = typer.Typer(help="WebSocket client console")
console = Console()
logger = get_logger(__name__)


def _resolve_proxy(proxy: Optional[str]) -> Optional[Tuple[str, int]]:
    if proxy is None:
        try:
            return proxy_from_env()
        except ValueError as e:
            raise typer.BadParameter(str(e))
    parsed = parse_hostport(proxy)
    if parsed is None:
        raise typer.BadParameter(f"expected host:port, got {proxy!r}", param_hint="--proxy")
    return parsed


def _load_config(path: Optional[Path]) -> ClientConfig:
    try:
        base = ClientConfig.from_yaml(path) if path else None
        return ClientConfig.from_env(base)
    except (OSError, ValueError, TypeError) as e:
        raise typer.BadParameter(str(e), param_hint="--config")


def _status_table(client: WebSocketClient) -> Table:
    table = Table(title="Connection")
    table.add_column("Field")
    table.add_column("Value")
    for name, value in dataclasses.asdict(client.get_status()).items():
        table.add_row(name, str(getattr(value, "value", value)))
    return table


@app.command()
def connect(
    uri: str = typer.Argument(..., help="ws:// or wss:// URI of the server"),
    proxy: Optional[str] = typer.Option(None, help="HTTP proxy as host:port (default: $WSCLIENT_PROXY)"),
    config: Optional[Path] = typer.Option(None, help="YAML file with client timings"),
    log_level: str = typer.Option("INFO", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Connect, print incoming messages and send each typed line."""
    configure_root_logging(log_level)
    cfg = _load_config(config)
    logger.debug("Client config: %s", cfg)
    proxy_host, proxy_port = _resolve_proxy(proxy) or (None, 0)

    def on_message(text: str) -> None:
        console.print(f"[bold cyan]<<[/] {text}")

    try:
        client = WebSocketClient(uri, proxy_host, proxy_port, on_message, config=cfg)
    except InvalidEndpoint as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(2)

    async def main_loop() -> int:
        try:
            await client.connect()
        except WebSocketClientError as e:
            console.print(f"[red]Connection failed[/]: {e}")
            return 1
        console.print(f"[bold green]Connected[/] to {client.endpoint} via {client.get_status().proxy}")

        try:
            while True:
                line = (await aioconsole.ainput(": ")).strip()
                if not line:
                    continue
                if line in {"/quit", "/exit"}:
                    break
                if line == "/help":
                    console.print("/status, /quit; anything else is sent as a text message")
                    continue
                if line == "/status":
                    console.print(_status_table(client))
                    continue
                try:
                    await client.send(line)
                except NotConnected:
                    console.print("[yellow]Not connected; message dropped[/]")
                except ConnectFailed as e:
                    console.print(f"[red]Send failed[/]: {e}")
        except EOFError:
            pass
        finally:
            await client.close()
        return 0

    code = asyncio.run(main_loop())
    if code:
        raise typer.Exit(code)


@app.command()
def accept(key: str = typer.Argument(..., help="Sec-WebSocket-Key value")):
    """Print the Sec-WebSocket-Accept a server must answer for KEY."""
    console.print(compute_accept(key))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
