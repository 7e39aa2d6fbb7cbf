"""
holepunch CLI - Command Line Interface

Main entry point for all CLI commands.
"""

import asyncio
import functools
import sys
from typing import Optional

import click

from holepunch.core.config import PunchConfig, load_config
from holepunch.errors import HolepunchError, SendFailure
from holepunch.node import PunchNode
from holepunch.utils.logger import setup_logging
from holepunch.utils.validation import PeerEndpoint, parse_target_minute


def fail(error: HolepunchError) -> None:
    """Print a classified failure and exit."""
    click.echo(click.style(f"Error [{error.kind}]: {error}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help=".env file with HOLEPUNCH_* settings")
@click.option("--log-file", is_flag=True, help="Also write logs to ./logs/holepunch.log")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, env_file, log_file):
    """UDP hole punching between two peers behind NAT"""
    import logging

    level = logging.DEBUG if debug else logging.INFO
    setup_logging(level=level, log_to_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


def _config(ctx, **overrides) -> PunchConfig:
    try:
        return load_config(ctx.obj.get("env_file"), **overrides)
    except HolepunchError as e:
        fail(e)


# =============================================================================
# Discover Command
# =============================================================================


@cli.command("discover")
@click.option("--stun-host", default=None, help="STUN server host")
@click.option("--stun-port", default=None, type=int, help="STUN server port")
@click.option("--timeout", default=None, type=float, help="Response timeout in seconds")
@click.option("--port", "bind_port", default=None, type=int, help="Local UDP port to bind")
@click.pass_context
def discover(ctx, stun_host, stun_port, timeout, bind_port):
    """Show the public IP and port of a local UDP socket"""
    config = _config(
        ctx,
        stun_host=stun_host,
        stun_port=stun_port,
        discovery_timeout=timeout,
        bind_port=bind_port,
    )

    async def run():
        node = PunchNode(config)
        await node.start()
        try:
            return node.local_address, await node.discover()
        finally:
            await node.stop()

    try:
        local, mapped = asyncio.run(run())
    except HolepunchError as e:
        fail(e)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
        return

    click.echo(f"Local socket:  {local[0]}:{local[1]}")
    click.echo(f"Public IP:     {mapped.ip}")
    click.echo(f"Public port:   {mapped.port}")


# =============================================================================
# Connect Command
# =============================================================================


async def _prompt(text: str, **kwargs) -> str:
    """click.prompt on a worker thread, off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(click.prompt, text, **kwargs))


async def _chat(session) -> None:
    """Send stdin lines to the peer until EOF."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        line = line.rstrip("\n")
        if not line:
            continue
        try:
            await session.send(line)
        except SendFailure:
            # already logged; keep chatting
            continue


@cli.command("connect")
@click.option("--peer-ip", default=None, help="Peer's public IP")
@click.option("--peer-port", default=None, help="Peer's public port")
@click.option("--at-minute", default=None, help="Fire at this minute of the hour (0-59)")
@click.option("--max-attempts", default=None, type=int, help="Punch datagrams to send")
@click.option("--interval", default=None, type=float, help="Seconds between punches")
@click.option("--port", "bind_port", default=None, type=int, help="Local UDP port to bind")
@click.option("--no-discover", is_flag=True, help="Skip STUN discovery")
@click.pass_context
def connect(ctx, peer_ip, peer_port, at_minute, max_attempts, interval, bind_port, no_discover):
    """Punch through to a peer, then chat over the direct path"""
    config = _config(
        ctx,
        max_attempts=max_attempts,
        punch_interval=interval,
        bind_port=bind_port,
    )

    # Reject bad command-line values before touching the network
    try:
        if peer_ip is not None and peer_port is not None:
            PeerEndpoint.parse(peer_ip, peer_port)
        parse_target_minute(at_minute)
    except HolepunchError as e:
        fail(e)

    async def run():
        node = PunchNode(config)
        await node.start()
        try:
            if not no_discover:
                mapped = await node.discover()
                click.echo(f"Your public IP: {mapped.ip} and public port: {mapped.port}")

            ip = peer_ip or await _prompt("Enter friend's public IP")
            port = peer_port or await _prompt("Enter friend's public port")
            minute = at_minute
            if minute is None and peer_ip is None:
                minute = await _prompt(
                    "Minute to start punching (blank for now)", default="", show_default=False,
                )
            peer = PeerEndpoint.parse(ip, port)
            target_minute = parse_target_minute(minute)

            click.echo(f"Starting UDP hole punching to {peer} ...")
            session = await node.connect(
                peer,
                target_minute=target_minute,
                on_progress=lambda remaining: click.echo(f"  {remaining:.0f}s until punch"),
                on_message=lambda text: click.echo(f"{peer}> {text}"),
            )
            click.echo("Hole punching successful. You can now chat!")
            await _chat(session)
        finally:
            await node.stop()

    try:
        asyncio.run(run())
    except HolepunchError as e:
        fail(e)
    except KeyboardInterrupt:
        click.echo("\nStopped.")


def main(argv: Optional[list] = None):
    cli(args=argv, obj={})


if __name__ == "__main__":
    main()
