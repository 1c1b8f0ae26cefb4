from __future__ import annotations

import argparse
import json
import random
from typing import Any, Optional

from . import __version__
from .daemon.ports import allocate
from .daemon.supervisor import list_workers
from .errors import PortAllocationError
from .kernel.settings import load_options


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def run_guess_a_number(server: Any) -> None:
    """The classic demo conversation; loops until the caller hangs up."""
    server.audio("Pick a number between 1 and 99.")
    num = random.randint(1, 99)
    while True:
        guess_raw = server.listen(grammar="NATURAL_NUMBER_THRU_99")
        try:
            guess = int(guess_raw)
        except ValueError:
            server.audio("Please say a number.")
            continue
        if guess < num:
            server.audio(f"No, {guess} is too low.  Try again.")
        elif guess > num:
            server.audio(f"No, {guess} is too high.  Try again.")
        else:
            server.audio(
                f"That's right, my number was {num}.  OK, let's play again.  "
                "I'm thinking of a different number."
            )
            num = random.randint(1, 99)


def cmd_demo(args: argparse.Namespace) -> int:
    from .voice import VoiceServer

    server = VoiceServer(avoid_firewall=bool(args.avoid_firewall) or None)
    run_guess_a_number(server)
    return 0


def cmd_ports(args: argparse.Namespace) -> int:
    opts = load_options()
    min_port = int(args.min_port if args.min_port is not None else opts.min_port)
    max_port = int(args.max_port if args.max_port is not None else opts.max_port)
    try:
        alloc = allocate(min_port, max_port)
    except (PortAllocationError, ValueError) as e:
        _print_json({"ok": False, "error": str(e)})
        return 2
    alloc.close()
    _print_json({"ok": True, "result": {"port": alloc.port, "used_fallback": alloc.used_fallback}})
    return 0


def cmd_workers(args: argparse.Namespace) -> int:
    workers = [{"port": port, "pid": pid, "alive": alive} for port, pid, alive in list_workers()]
    if not args.all:
        workers = [w for w in workers if w["alive"]]
    _print_json({"ok": True, "result": {"workers": workers}})
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="vxmlsession", description="VoiceXML single-conversation session bridge")
    parser.add_argument("--version", action="version", version=f"vxmlsession {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_demo = sub.add_parser("demo", help="Run the guess-a-number conversation (CGI or terminal)")
    p_demo.add_argument("--avoid-firewall", action="store_true", help="Route every turn through the front-end URL")
    p_demo.set_defaults(func=cmd_demo)

    p_ports = sub.add_parser("ports", help="Show which port a new worker would bind")
    p_ports.add_argument("--min", dest="min_port", type=int, default=None, help="Lowest port (default: settings)")
    p_ports.add_argument("--max", dest="max_port", type=int, default=None, help="Highest preferred port (default: settings)")
    p_ports.set_defaults(func=cmd_ports)

    p_workers = sub.add_parser("workers", help="List conversation workers")
    p_workers.add_argument("--all", action="store_true", help="Include pid files of workers that are gone")
    p_workers.set_defaults(func=cmd_workers)

    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
