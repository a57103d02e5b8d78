"""Chowder client CLI.

Usage:
    chowder-client chat                   # Interactive chat with the gateway
    chowder-client chat -m "hello"        # Send one message and exit
    chowder-client sync                   # Read IDENTITY.md and USER.md
    chowder-client sync --json            # Same, as JSON
    chowder-client config                 # Show configuration

Configuration comes from ~/.chowder/config.yaml (or --config / $CHOWDER_CONFIG)
overlaid by CHOWDER_GATEWAY_URL, CHOWDER_TOKEN and CHOWDER_SESSION_KEY.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from .config import GatewayConfig, load_config
from .errors import ChowderError
from .notifications import Notification, NotificationType
from .session import GatewaySession, create_session

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 15.0


def _configure_logging(verbose: bool) -> None:
    """Send all logging to stderr so stdout carries only the conversation."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _mask(secret: str) -> str:
    if not secret:
        return ""
    return f"{secret[:4]}...({len(secret)} chars)"


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Log protocol traffic to stderr")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Chowder gateway client."""
    _configure_logging(verbose)
    try:
        ctx.obj = load_config(config_path)
    except (OSError, ValueError) as e:
        click.echo(f"Failed to load config: {e}", err=True)
        sys.exit(1)


def _require_configured(config: GatewayConfig) -> None:
    if not config.is_configured:
        click.echo("Gateway URL and token are not configured.", err=True)
        click.echo("Set CHOWDER_GATEWAY_URL and CHOWDER_TOKEN or edit ~/.chowder/config.yaml", err=True)
        sys.exit(1)


async def _wait_connected(session: GatewaySession, timeout: float = CONNECT_TIMEOUT) -> None:
    connected = asyncio.Event()

    def on_notification(notification: Notification) -> None:
        if notification.type == NotificationType.CONNECTED:
            connected.set()

    unsubscribe = session.subscribe(on_notification)
    try:
        if not session.is_connected:
            await session.connect()
            await asyncio.wait_for(connected.wait(), timeout)
    finally:
        unsubscribe()


# =============================================================================
# chat
# =============================================================================


@main.command()
@click.option("--message", "-m", help="Send one message, print the reply and exit")
@click.option("--no-sync", is_flag=True, help="Skip workspace sync after connecting")
@click.option("--no-cache", is_flag=True, help="Do not read or write the local cache")
@click.pass_obj
def chat(config: GatewayConfig, message: str | None, no_sync: bool, no_cache: bool) -> None:
    """Chat with the agent.

    Examples:

        chowder-client chat

        chowder-client chat -m "What's on my calendar?"
    """
    _require_configured(config)
    if no_sync:
        config = config.model_copy(update={"sync_workspace": False})

    try:
        asyncio.run(_run_chat(config, message, persist=not no_cache))
    except KeyboardInterrupt:
        click.echo("\nBye", err=True)
    except (ChowderError, TimeoutError) as e:
        click.echo(f"Error: {str(e) or 'timed out'}", err=True)
        sys.exit(1)


async def _run_chat(config: GatewayConfig, message: str | None, persist: bool) -> None:
    session = create_session(config, persist=persist)
    turn_done = asyncio.Event()
    last_label = ""

    def on_notification(notification: Notification) -> None:
        nonlocal last_label
        kind = notification.type
        if kind == NotificationType.TEXT_DELTA:
            click.echo(notification.text, nl=False)
        elif kind == NotificationType.ACTIVITY_UPDATED:
            label = notification.data.get("label", "")
            if label and label != last_label:
                click.echo(click.style(f"[{label}]", dim=True), err=True)
            last_label = label
        elif kind == NotificationType.TURN_FINISHED:
            click.echo("")
            turn_done.set()
        elif kind == NotificationType.ERROR:
            click.echo(click.style(f"Error: {notification.data.get('message')}", fg="red"), err=True)
            turn_done.set()
        elif kind == NotificationType.DISCONNECTED:
            click.echo(click.style("[disconnected]", dim=True), err=True)

    session.subscribe(on_notification)
    try:
        await _wait_connected(session)
        name = session.identity.name or "agent"
        click.echo(f"Connected to {config.gateway_url} ({name})", err=True)

        if message is not None:
            await _send_and_wait(session, message, turn_done)
            return

        loop = asyncio.get_running_loop()
        while True:
            click.echo("> ", nl=False, err=True)
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if text in ("/quit", "/exit"):
                break
            if text:
                await _send_and_wait(session, text, turn_done)
    finally:
        await session.close()


async def _send_and_wait(session: GatewaySession, text: str, turn_done: asyncio.Event) -> None:
    turn_done.clear()
    if not await session.send_message(text):
        click.echo("Message not sent (not connected or a turn is in progress)", err=True)
        return
    await turn_done.wait()


# =============================================================================
# sync
# =============================================================================


@main.command()
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--timeout", default=None, type=float, help="Seconds to wait for the agent")
@click.pass_obj
def sync(config: GatewayConfig, output_json: bool, timeout: float | None) -> None:
    """Read IDENTITY.md and USER.md from the gateway workspace.

    Examples:

        chowder-client sync

        chowder-client sync --json
    """
    _require_configured(config)
    # The read is driven explicitly below
    config = config.model_copy(update={"sync_workspace": False})
    wait = timeout if timeout is not None else config.sync_timeout

    try:
        session = asyncio.run(_run_sync(config, wait))
    except (ChowderError, TimeoutError) as e:
        click.echo(f"Error: {str(e) or 'timed out'}", err=True)
        sys.exit(1)

    if output_json:
        data = {"identity": session.identity.model_dump(), "user": session.profile.model_dump()}
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return

    click.echo(session.identity.to_markdown())
    click.echo(session.profile.to_markdown())


async def _run_sync(config: GatewayConfig, timeout: float) -> GatewaySession:
    session = create_session(config)
    try:
        await _wait_connected(session)
        if not await session.sync_workspace():
            raise ChowderError("Workspace sync could not be started")
        await asyncio.wait_for(session.sync.wait_idle(), timeout)
    finally:
        await session.close()
    return session


# =============================================================================
# config
# =============================================================================


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def show_config(config: GatewayConfig, output_json: bool) -> None:
    """Show current configuration.

    Examples:

        chowder-client config
        chowder-client config --json
    """
    data = config.model_dump(mode="json")
    data["auth_token"] = _mask(config.auth_token)
    data["storage_dir"] = str(config.resolved_storage_dir())
    data["configured"] = config.is_configured

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    width = max(len(key) for key in data)
    for key, value in data.items():
        click.echo(f"{key:<{width}}  {value}")


if __name__ == "__main__":
    main()
