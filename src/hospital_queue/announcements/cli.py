"""
Command line entry point for announcement clip maintenance.

    hospital-queue-audio generate-all
    hospital-queue-audio generate A001 1
    hospital-queue-audio check A001 1
    hospital-queue-audio cleanup 30
"""

import argparse
import asyncio

from hospital_queue.announcements.resolver import AnnouncementResolver, build_resolver
from hospital_queue.broadcast.interface import RecordingBroadcaster
from hospital_queue.config import get_settings
from hospital_queue.shared.exceptions import ValidationError
from hospital_queue.shared.logging import get_logger, setup_logging

logger = get_logger("hospital_queue.announcements.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hospital-queue-audio",
        description="Generate and maintain Urdu announcement clips",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("generate-all", help="Generate clips for common ticket/counter pairs.")

    generate = commands.add_parser("generate", help="Generate one clip.")
    generate.add_argument("ticket")
    generate.add_argument("counter", type=int)
    generate.add_argument("--recall", action="store_true", help="Use the recall phrase.")

    commands.add_parser("list", help="List generated clips.")
    commands.add_parser("stats", help="Show clip statistics.")

    check = commands.add_parser("check", help="Check whether a clip exists.")
    check.add_argument("ticket")
    check.add_argument("counter", type=int)

    cleanup = commands.add_parser("cleanup", help="Delete clips older than DAYS.")
    cleanup.add_argument("days", type=int, nargs="?", default=30)
    return parser


async def _run(resolver: AnnouncementResolver, args: argparse.Namespace) -> int:
    try:
        if args.command == "generate-all":
            summary = await resolver.generate_common()
            print(f"Success: {summary['success']}  Failed: {summary['failed']}  Total: {summary['total']}")
            print(f"Audio directory: {resolver.audio_dir}")
            return 0 if summary["failed"] == 0 else 1

        if args.command == "generate":
            path = await resolver.generate(args.ticket, args.counter, args.recall)
            if path is None:
                print(f"Failed to generate clip for {args.ticket} at counter {args.counter}")
                return 1
            print(f"Generated {path}")
            return 0
    finally:
        await resolver.aclose()

    if args.command == "list":
        for item in resolver.list_audio_files():
            print(f"  {item['filename']} ({item['size'] / 1024:.1f} KB) - {item['modified'][:10]}")
        return 0

    if args.command == "stats":
        stats = resolver.audio_stats()
        print(f"Total files: {stats['totalFiles']}")
        print(f"Total size: {stats['totalSizeMB']:.2f} MB")
        return 0

    if args.command == "check":
        status = resolver.audio_status(args.ticket, args.counter)
        state = "EXISTS" if status["isValid"] else "MISSING"
        print(f"Audio file for {status['filename']}: {state}")
        return 0 if status["isValid"] else 1

    if args.command == "cleanup":
        deleted = resolver.cleanup_old_files(args.days)
        print(f"Cleanup completed: {deleted} files deleted")
        return 0

    return 2


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging()
    settings = get_settings()
    resolver = build_resolver(settings.audio, RecordingBroadcaster())
    logger.info("Audio command started", extra={"command": args.command})
    try:
        return asyncio.run(_run(resolver, args))
    except ValidationError as exc:
        print(exc.message)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
