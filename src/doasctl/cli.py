"""Command-line control of a DOAS ventilation unit.

Reads the unit's address and converter endpoint from a TOML config
file, connects, performs one command and exits.  ``watch`` keeps
polling until SIGINT or SIGTERM; ``gateway`` runs the serial bridge
described in the config's ``[gateway]`` section.

Example:
    Run from the command line::

        doasctl status
        doasctl -v set speed 50
        doasctl -c /etc/doasctl/upstairs.toml watch --interval 30
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading

from doasctl.config import load_config
from doasctl.connector import Connector
from doasctl.fan import Fan
from doasctl.gateway import SerialGateway
from doasctl.paths import resolve_config
from doasctl.registers import RegisterClient

log = logging.getLogger(__name__)

FIELDS = ("on", "direction", "speed")

_DIRECTION_NAMES = {"clockwise": 0, "counterclockwise": 1}
_ON_NAMES = {"on": True, "true": True, "1": True,
             "off": False, "false": False, "0": False}


def parse_value(field: str, text: str):
    """Parse a ``set`` argument for *field*.

    Raises:
        ValueError: If *text* is not a valid value for *field*.
    """
    text = text.strip().lower()
    if field == "on":
        if text not in _ON_NAMES:
            raise ValueError("on must be on/off, got '%s'" % text)
        return _ON_NAMES[text]
    if field == "direction":
        if text in _DIRECTION_NAMES:
            return _DIRECTION_NAMES[text]
        if text in ("0", "1"):
            return int(text)
        raise ValueError("direction must be 0/1 or clockwise/counterclockwise, got '%s'" % text)
    if field == "speed":
        try:
            percent = int(text)
        except ValueError:
            raise ValueError("speed must be an integer percentage, got '%s'" % text) from None
        if not (0 <= percent <= 100):
            raise ValueError("speed must be in range 0-100, got %d" % percent)
        return percent
    raise ValueError("unknown field: %s" % field)


def format_status(status: dict) -> str:
    """One line of ``field=value`` pairs; unanswered fields show ``?``."""
    return " ".join(
        "%s=%s" % (name, "?" if status[name] is None else status[name])
        for name in FIELDS
    )


async def run_command(args, fan: Fan, shutdown: asyncio.Event) -> int:
    """Execute the parsed command against *fan*; returns the exit status."""
    if args.command == "status":
        status = await fan.status()
        print(format_status(status))
        return 0 if None not in status.values() else 1

    if args.command == "get":
        result = await getattr(fan, "get_" + args.field)()
        if not result.resolved:
            print("no reply from unit", file=sys.stderr)
            return 1
        print(result.value)
        return 0

    if args.command == "set":
        result = await getattr(fan, "set_" + args.field)(args.value)
        if not result.resolved:
            print("no reply from unit", file=sys.stderr)
            return 1
        return 0

    # watch
    while not shutdown.is_set():
        print(format_status(await fan.status()), flush=True)
        try:
            await asyncio.wait_for(shutdown.wait(), args.interval)
        except asyncio.TimeoutError:
            pass
    return 0


async def run(args, cfg: dict) -> int:
    """Connect, run the command and close the connection."""
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown.set)

    connector = Connector(
        cfg["host"], cfg["port"], cfg["machine"],
        reconnect_on_close=cfg["reconnect_on_close"],
    )
    try:
        if not await connector.wait_connected(cfg["timeout"]):
            print(
                "cannot connect to %s:%d" % (cfg["host"], cfg["port"]),
                file=sys.stderr,
            )
            return 1
        fan = Fan(RegisterClient(connector), timeout=cfg["timeout"])
        return await run_command(args, fan, shutdown)
    finally:
        connector.close()


def run_gateway(cfg: dict, shutdown: threading.Event) -> None:
    """Run the serial bridge until *shutdown* is set."""
    gw_cfg = cfg["gateway"]
    gateway = SerialGateway(
        gw_cfg["serial"], gw_cfg["baudrate"],
        gw_cfg["listen_host"], gw_cfg["listen_port"],
    )
    try:
        shutdown.wait()
    finally:
        gateway.close()
        log.info("shutting down")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DOAS ventilation unit control")
    parser.add_argument(
        "-c", "--config",
        help="TOML config file (default: $DOASCTL_CONFIG, then doasctl.toml "
             "in ./, ~/.config/doasctl/, /etc/doasctl/)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="show power, direction and speed")

    get = commands.add_parser("get", help="read one value")
    get.add_argument("field", choices=FIELDS)

    set_ = commands.add_parser("set", help="write one value")
    set_.add_argument("field", choices=FIELDS)
    set_.add_argument("value")

    watch = commands.add_parser("watch", help="poll status until interrupted")
    watch.add_argument(
        "--interval", type=float, default=30.0, help="seconds between polls",
    )

    commands.add_parser("gateway", help="bridge TCP to a local serial port")
    return parser


def main(argv=None) -> int:
    """CLI entry point -- parse args, load config, run the command.

    Example:
        From the shell::

            doasctl -c doasctl.toml get speed
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=level,
    )

    try:
        path = resolve_config(args.config)
        log.debug("using config %s", path)
        cfg = load_config(path)
        if args.command == "set":
            args.value = parse_value(args.field, args.value)
        if args.command == "gateway" and "gateway" not in cfg:
            raise ValueError("gateway command requires a [gateway] section")
    except (ValueError, FileNotFoundError) as exc:
        print("doasctl: %s" % exc, file=sys.stderr)
        return 2

    if args.command == "gateway":
        shutdown = threading.Event()
        signal.signal(signal.SIGINT, lambda signum, frame: shutdown.set())
        signal.signal(signal.SIGTERM, lambda signum, frame: shutdown.set())
        run_gateway(cfg, shutdown)
        return 0

    log.info(
        "unit %d at %s:%d, command=%s",
        cfg["machine"], cfg["host"], cfg["port"], args.command,
    )
    return asyncio.run(run(args, cfg))


if __name__ == "__main__":
    sys.exit(main())
