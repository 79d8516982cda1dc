"""Command-line front end.

Usage::

    py-sched [-q] [-f|-s|-S|-r|-p|-a|-c|-i] [-v] [--dump] SCRIPT

The trace goes to stderr one event per line, like a kernel console; the
banner, process briefing, final state dump and log go to stdout.  The
helpers (``build_parser``, ``format_banner``) are pure and testable;
``main`` is the I/O entrypoint.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from py_sched import __version__
from py_sched.engine import Simulation
from py_sched.errors import InvariantError
from py_sched.logging import Logger, LogLevel
from py_sched.process.scheduler import PolicyKind, create_policy
from py_sched.script import ScriptError, describe, load_script
from py_sched.trace import format_event

_BANNER_WIDTH = 52

# flag -> policy, in the order the usage text lists them
_POLICY_FLAGS = {
    "-f": (PolicyKind.FIFO, "Use FIFO scheduler (default)"),
    "-s": (PolicyKind.SJF, "Use SJF scheduler"),
    "-S": (PolicyKind.SRTF, "Use SRTF scheduler"),
    "-r": (PolicyKind.RR, "Use Round-robin scheduler"),
    "-p": (PolicyKind.PRIORITY, "Use Priority scheduler"),
    "-a": (PolicyKind.AGING, "Use Priority scheduler with aging"),
    "-c": (PolicyKind.PCP, "Use Priority scheduler with PCP"),
    "-i": (PolicyKind.PIP, "Use Priority scheduler with PIP"),
}


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for ``py-sched``."""
    parser = argparse.ArgumentParser(
        prog="py-sched",
        description="Simulate single-CPU process scheduling with resource contention.",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Run quietly")
    group = parser.add_mutually_exclusive_group()
    for flag, (kind, text) in _POLICY_FLAGS.items():
        group.add_argument(flag, dest="policy", action="store_const", const=kind, help=text)
    parser.set_defaults(policy=PolicyKind.FIFO)
    parser.add_argument("-v", "--verbose", action="store_true", help="Print the simulation log")
    parser.add_argument("--dump", action="store_true", help="Print the final state dump")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("script", type=Path, help="Process script file")
    return parser


def format_banner(policy_name: str) -> str:
    """Return the start-up banner with the event legend."""
    border = "*" * _BANNER_WIDTH
    return "\n".join(
        [
            "",
            f"      Simulating {policy_name} scheduler",
            "",
            border,
            "   N: Forked",
            "   X: Finished",
            "   =: Blocked",
            "  +n: Acquire resource n",
            "  -n: Release resource n",
            "",
        ]
    )


def main(argv: list[str] | None = None) -> int:
    """Run one simulation from the command line.

    Returns:
        Process exit status: 0 on success, 1 if the script cannot be
        loaded or the run breaks an invariant.

    """
    args = build_parser().parse_args(argv)

    try:
        descriptors = load_script(args.script)
    except (OSError, ScriptError) as e:
        print(f"py-sched: {args.script}: {e}", file=sys.stderr)  # noqa: T201
        return 1

    policy = create_policy(args.policy)
    logger = Logger(min_level=LogLevel.DEBUG if args.verbose else LogLevel.INFO)
    try:
        sim = Simulation(descriptors=descriptors, policy=policy, logger=logger)
    except InvariantError as e:
        print(f"py-sched: {args.script}: {e}", file=sys.stderr)  # noqa: T201
        return 1

    if not args.quiet:
        print(format_banner(policy.name))  # noqa: T201
        for descriptor in descriptors:
            print(describe(descriptor))  # noqa: T201
        print()  # noqa: T201

    # the last step emits the final exits before reporting the end
    seen, running = 0, True
    while running:
        try:
            running = sim.step()
        except InvariantError as e:
            print(f"py-sched: {args.script}: {e}", file=sys.stderr)  # noqa: T201
            return 1
        events = sim.events
        for event in events[seen:]:
            print(format_event(event), file=sys.stderr)  # noqa: T201
        seen = len(events)

    if args.dump:
        print(sim.dump_status())  # noqa: T201
    if args.verbose:
        print("\n".join(logger.lines()))  # noqa: T201
    return 0
