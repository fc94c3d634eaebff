from __future__ import annotations

import argparse
import socket
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import uvicorn
from rich.live import Live
from rich.table import Table
from websockets.exceptions import ConnectionClosed

from lanrelay.client.receiver import download_file, listen
from lanrelay.client.sender import resolve_inputs, send_batch

if TYPE_CHECKING:
    from rich.progress import TaskID

    from lanrelay.server.models import AcknowledgmentResult, BroadcastNotification

from lanrelay.config import RelaySettings
from lanrelay.log import (
    console,
    make_file_progress,
    make_overall_progress,
    setup_logging,
)
from lanrelay.server.app import create_app

DEFAULT_PORT = 3000


def parse_target(target: str) -> str:
    """Parse a target string into a base URL.

    Accepts formats like:
      - host              → http://host:3000
      - host:port         → http://host:port
      - http://host:port  → http://host:port  (passed through)
      - https://host:port → https://host:port (passed through)
    """
    # If the target already has a scheme, use it as-is.
    if target.startswith(("http://", "https://")):
        return target.rstrip("/")

    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            console.print(f"[red]Invalid port in target: {target}")
            sys.exit(1)
        return f"http://{host}:{port}"
    return f"http://{target}:{DEFAULT_PORT}"


def settings_from_args(args: argparse.Namespace) -> RelaySettings:
    """Environment settings with any explicit CLI flags applied on top."""
    settings = RelaySettings.from_env()
    if args.host is not None:
        settings.host = args.host
    if args.port is not None:
        settings.port = args.port
    if args.content_dir is not None:
        settings.content_dir = Path(args.content_dir)
    if args.base_url is not None:
        settings.base_url = args.base_url
    if args.max_payload_bytes is not None:
        settings.max_payload_bytes = args.max_payload_bytes
    if args.static_dir is not None:
        settings.static_dir = Path(args.static_dir)
    return settings


def cmd_serve(args: argparse.Namespace) -> None:
    settings = settings_from_args(args)
    setup_logging(settings.log_level)

    # Fail fast if the port is already in use.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((settings.host, settings.port))
        except OSError:
            console.print(
                f"[red]Port {settings.port} is already in use. "
                "Is another lanrelay server running?"
            )
            sys.exit(1)

    app = create_app(settings)
    console.print(
        f"[bold green]lanrelay[/] listening on "
        f"[cyan]{settings.host}:{settings.port}[/], peers connect to "
        f"[cyan]{app.state.base_url}[/] (files in {settings.content_dir})"
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="warning",
        # Frames past this size are refused before they are fully buffered.
        ws_max_size=settings.max_message_bytes,
    )


class SendProgressDisplay:
    """Rich-based implementation of BatchProgressCallback for the CLI."""

    def __init__(self, total_files: int) -> None:
        self.overall = make_overall_progress()
        self.files = make_file_progress()
        self.overall_task = self.overall.add_task("Sending", total=total_files)
        self.table = Table.grid()
        self.table.add_row(self.overall)
        self.table.add_row(self.files)
        self._task_ids: dict[int, TaskID] = {}

    def file_started(self, index: int, file_path: Path) -> None:
        task_id = self.files.add_task(file_path.name, total=100)
        self._task_ids[index] = task_id

    def file_progress(self, index: int, percent: float) -> None:
        self.files.update(self._task_ids[index], completed=percent)

    def file_done(self, index: int, result: AcknowledgmentResult) -> None:
        task_id = self._task_ids[index]
        desc = self.files.tasks[task_id].description
        colour = "green" if result.success else "red"
        self.files.update(task_id, description=f"[{colour}]{desc}")
        self.overall.advance(self.overall_task)

    def file_error(self, index: int, exc: Exception) -> None:
        task_id = self._task_ids[index]
        desc = self.files.tasks[task_id].description
        self.files.update(task_id, description=f"[red]{desc}")
        self.overall.advance(self.overall_task)


def cmd_send(args: argparse.Namespace) -> None:
    setup_logging()

    if len(args.targets) < 2:
        console.print("[red]Usage: lanrelay send <paths...> <target>")
        sys.exit(1)

    *raw_paths, target = args.targets
    base_url = parse_target(target)

    try:
        file_paths = resolve_inputs(raw_paths)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}")
        sys.exit(1)

    # Quick healthcheck before starting, which also reports the size ceiling.
    try:
        health = httpx.get(f"{base_url}/v1/health", timeout=5.0).json()
    except httpx.ConnectError:
        console.print(f"[red]Cannot connect to relay at {base_url}. Is it running?")
        sys.exit(1)
    except httpx.TimeoutException:
        console.print(f"[red]Relay at {base_url} did not respond in time.")
        sys.exit(1)

    timeout = args.timeout or health.get("ack_timeout") or 60.0
    limit = health.get("max_payload_bytes")
    if limit:
        too_large = [p for p in file_paths if p.stat().st_size > limit]
        for p in too_large:
            console.print(f"[yellow]Skipping {p.name}: larger than {limit} bytes")
        file_paths = [p for p in file_paths if p not in too_large]
        if not file_paths:
            sys.exit(1)

    console.print(
        f"Sending [bold]{len(file_paths)}[/] file(s) to "
        f"[cyan]{base_url}[/] (parallel={args.parallel})"
    )

    display = SendProgressDisplay(len(file_paths))

    with Live(display.table, console=console, refresh_per_second=10):
        results = send_batch(
            file_paths, base_url,
            parallel=args.parallel,
            timeout=timeout,
            progress=display,
        )

    ok = sum(1 for r in results if r.ok)
    fail = len(results) - ok
    if fail:
        console.print(f"\n[green]{ok} succeeded[/], [red]{fail} failed[/]")
        for r in results:
            if r.ok:
                continue
            err = r.error or (r.result.message if r.result else "unknown")
            console.print(f"  [red]- {r.filename}: {err}")
        sys.exit(1)
    console.print(f"\n[green]All {ok} file(s) sent successfully.")


def cmd_listen(args: argparse.Namespace) -> None:
    setup_logging()
    base_url = parse_target(args.target)
    download_dir = Path(args.download_dir) if args.download_dir else None

    def on_connected(connection_id: str) -> None:
        console.print(f"Connected to [cyan]{base_url}[/] as {connection_id}")

    def on_notify(notification: BroadcastNotification) -> None:
        console.print(
            f"[bold]{notification.name}[/] ({notification.size} bytes, "
            f"{notification.media_type}) → {notification.reference}"
        )
        if download_dir is None:
            return
        try:
            path = download_file(
                notification.reference, download_dir, name=notification.name
            )
        except httpx.HTTPError as exc:
            console.print(f"[red]Download of {notification.name} failed: {exc}")
            return
        console.print(f"  [green]saved to {path}")

    try:
        listen(base_url, on_notify, on_connected=on_connected)
    except KeyboardInterrupt:
        pass
    except ConnectionClosed:
        console.print("[yellow]Relay closed the connection.")
    except OSError as exc:
        console.print(f"[red]Cannot connect to relay at {base_url}: {exc}")
        sys.exit(1)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="lanrelay",
        description="Share files between devices on a local network",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # --- serve ---
    lp = sub.add_parser("serve", help="Start the relay")
    lp.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    lp.add_argument("--port", type=int, default=None, help="Listen port (default: 3000)")
    lp.add_argument(
        "--content-dir",
        default=None,
        help="Directory for received files (default: ./received)",
    )
    lp.add_argument(
        "--base-url",
        default=None,
        help="Address advertised to peers (default: discovered LAN address)",
    )
    lp.add_argument(
        "--max-payload-bytes",
        type=int,
        default=None,
        help="Largest accepted file in bytes (default: 104857600)",
    )
    lp.add_argument(
        "--static-dir",
        default=None,
        help="Web UI directory served at / (optional)",
    )
    lp.set_defaults(func=cmd_serve)

    # --- send ---
    sp = sub.add_parser("send", help="Send files to every peer through a relay")
    sp.add_argument(
        "targets",
        nargs="+",
        help="File/directory paths followed by relay host[:port]",
    )
    sp.add_argument(
        "--parallel",
        "-p",
        type=int,
        default=4,
        help="Concurrent sends (default: 4)",
    )
    sp.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each acknowledgment (default: relay setting)",
    )
    sp.set_defaults(func=cmd_send)

    # --- listen ---
    rp = sub.add_parser("listen", help="Print, and optionally download, files sent by peers")
    rp.add_argument("target", help="Relay host[:port]")
    rp.add_argument(
        "--download-dir",
        "-d",
        default=None,
        help="Download every announced file into this directory",
    )
    rp.set_defaults(func=cmd_listen)

    args = parser.parse_args()
    args.func(args)
