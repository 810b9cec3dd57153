"""Command line presence node: scan, track RSSI entities and print a summary on exit."""

import argparse
import asyncio
import logging
from typing import List, Optional

from roomsense.config import Settings
from roomsense.entities.messages import EntityUpdate
from roomsense.node import PresenceNode

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roomsense",
        description="Track nearby Bluetooth devices as RSSI entities.",
    )
    parser.add_argument("--adapter", type=int, help="HCI index of the adapter to use (default: from environment or 0).")
    parser.add_argument("--scan-time-limit", type=float, help="Seconds before a Classic inquiry is killed.")
    parser.add_argument(
        "--classic",
        action="append",
        default=[],
        metavar="MAC",
        help="Bluetooth Classic address to poll; may be given more than once.",
    )
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds (default: run until Ctrl+C).")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser


def _log_update(message: EntityUpdate) -> None:
    for diff in message.diffs:
        logger.info("%s%s: %s → %s", message.entity.id, diff.path, diff.old_value, diff.new_value)


def build_node(args: argparse.Namespace) -> PresenceNode:
    settings = Settings.from_env()
    if args.adapter is not None:
        settings.low_energy_adapter_id = args.adapter
    if args.scan_time_limit is not None:
        settings.scan_time_limit = args.scan_time_limit
    return PresenceNode(settings, classic_addresses=args.classic)


async def run(node: PresenceNode, duration: Optional[float]) -> None:
    node.registry.subscribe(_log_update, EntityUpdate)
    await node.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await node.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    node = build_node(args)
    try:
        asyncio.run(run(node, args.duration))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    node.show_summary()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
