"""
sonnenBatterie configuration commands, for operators.

Sends one configuration write (or schedule read) to the battery and exits.
Credentials and the default address come from the same environment / .env
as the daemon (SONNEN_HOST, SONNEN_AUTH_TOKEN, HTTP_TIMEOUT_S); ``--host``
overrides the address for a single call.

Usage:
    sonnen-edge-command schedule show
    sonnen-edge-command schedule set "01:00-05:00: 3000W" "13:00-15:00: 1500W"
    sonnen-edge-command schedule window 22:30 4 3000
    sonnen-edge-command schedule pause 17:00 21:00
    sonnen-edge-command schedule clear
    sonnen-edge-command mode 2
    sonnen-edge-command prognosis off
    sonnen-edge-command setpoint charge 1500 --host 192.168.1.77

Exit status: 0 on success, 1 when the battery rejects or cannot be reached,
2 for invalid arguments.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import TYPE_CHECKING

from sonnen_edge.src.client import CommandError
from sonnen_edge.src.time_of_use import TimeOfUseSchedule, entry_for_hours

if TYPE_CHECKING:
    from sonnen_edge.src.client import SonnenClient

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_USAGE = 2


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------


async def run_command(client: SonnenClient, address: str, args: argparse.Namespace) -> int:
    """Execute the parsed command against the battery at *address*.

    Returns:
        Process exit status.
    """
    try:
        if args.command == "schedule":
            return await _run_schedule(client, address, args)
        if args.command == "mode":
            await client.set_operating_mode(address, args.mode)
            print(f"Operating mode set to {args.mode}")
        elif args.command == "prognosis":
            await client.set_prognosis_charging(address, args.state == "on")
            print(f"Prognosis charging {args.state}")
        elif args.command == "setpoint":
            await client.set_setpoint(address, args.direction, args.watts)
            print(f"Setpoint {args.direction} {args.watts}W accepted")
    except ValueError as exc:
        print(f"Invalid argument: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except CommandError as exc:
        detail = f" ({exc.reason})" if exc.reason else ""
        print(f"Command failed: {exc}{detail}", file=sys.stderr)
        return EXIT_REJECTED
    return EXIT_OK


async def _run_schedule(client: SonnenClient, address: str, args: argparse.Namespace) -> int:
    action = args.action
    if action == "show":
        schedule = await client.get_schedule(address)
        print(str(schedule) if len(schedule) else "(no schedule)")
        return EXIT_OK

    if action == "set":
        schedule = TimeOfUseSchedule.from_string("\n".join(args.entries))
        await client.set_schedule(address, schedule)
    elif action == "window":
        entry = entry_for_hours(args.start, args.hours, args.max_power)
        schedule = TimeOfUseSchedule([entry])
        await client.set_schedule(address, schedule)
    elif action == "pause":
        await client.pause_schedule(address, args.start, args.stop)
        print(f"Grid charging paused {args.start}-{args.stop}")
        return EXIT_OK
    elif action == "clear":
        await client.clear_schedule(address)
        print("Schedule cleared")
        return EXIT_OK

    print(f"Schedule written:\n{schedule}")
    return EXIT_OK


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sonnen-edge-command",
        description="Send a configuration command to a sonnenBatterie",
    )
    p.add_argument("--host", help="Battery address (default: SONNEN_HOST)")
    sub = p.add_subparsers(dest="command", required=True)

    schedule = sub.add_parser("schedule", help="Time-of-use schedule")
    actions = schedule.add_subparsers(dest="action", required=True)
    actions.add_parser("show", help="Print the stored schedule")
    set_p = actions.add_parser("set", help="Replace the schedule")
    set_p.add_argument("entries", nargs="+", help='Entries like "01:00-05:00: 3000W"')
    window = actions.add_parser("window", help="Single window of N hours from START")
    window.add_argument("start", help="HH:MM")
    window.add_argument("hours", type=int)
    window.add_argument("max_power", type=int, help="Max grid charging power in W")
    pause = actions.add_parser("pause", help="Block grid charging between START and STOP")
    pause.add_argument("start", help="HH:MM")
    pause.add_argument("stop", help="HH:MM")
    actions.add_parser("clear", help="Remove all schedule entries")

    mode = sub.add_parser("mode", help="Set EM_OperatingMode")
    mode.add_argument("mode", help="Vendor mode value, e.g. 1 manual, 2 self-consumption")

    prognosis = sub.add_parser("prognosis", help="Toggle prognosis charging")
    prognosis.add_argument("state", choices=("on", "off"))

    setpoint = sub.add_parser("setpoint", help="Fixed charge/discharge power (manual mode)")
    setpoint.add_argument("direction", choices=("charge", "discharge"))
    setpoint.add_argument("watts", type=int)
    return p


async def async_main(argv: list[str] | None = None) -> int:
    from sonnen_edge.src.client import SonnenClient
    from sonnen_edge.src.config import SonnenSettings

    args = build_parser().parse_args(argv)
    settings = SonnenSettings()
    client = SonnenClient(
        settings.sonnen_auth_token,
        timeout_s=settings.http_timeout_s,
        discovery_url=settings.discovery_url,
        tz=settings.zone,
    )
    return await run_command(client, args.host or settings.sonnen_host, args)


def main() -> None:
    """Synchronous entrypoint."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
