# src/main.py — v1
"""CLI entry point — split, hash, pending, verify, cleanup commands.

Usage:
    partledger split <file> [--title TITLE] [--json]
    partledger hash <file>
    partledger pending
    partledger verify <series_id>
    partledger cleanup [--emergency]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from partledger.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        _setup_logging(args.verbose)
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="partledger",
        description=f"partledger v{__version__} — Multi-part ledger publishing",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- split ---
    p_split = subparsers.add_parser(
        "split", help="Preview how a file would be split into parts",
    )
    p_split.add_argument("file", type=Path, help="Path to a UTF-8 text file")
    p_split.add_argument("--title", default=None, help="Series title (default: file name)")
    p_split.add_argument("--json", action="store_true", help="Print the preview as JSON")
    p_split.set_defaults(func=_cmd_split)

    # --- hash ---
    p_hash = subparsers.add_parser(
        "hash", help="Print the hash triple of a file and of each of its parts",
    )
    p_hash.add_argument("file", type=Path, help="Path to a UTF-8 text file")
    p_hash.set_defaults(func=_cmd_hash)

    # --- pending ---
    p_pending = subparsers.add_parser(
        "pending", help="List series with unfinished posting state",
    )
    p_pending.set_defaults(func=_cmd_pending)

    # --- verify ---
    p_verify = subparsers.add_parser(
        "verify", help="Check posted parts of a persisted series on the ledger",
    )
    p_verify.add_argument("series_id", help="Series id (UUID)")
    p_verify.set_defaults(func=_cmd_verify)

    # --- cleanup ---
    p_cleanup = subparsers.add_parser(
        "cleanup", help="Apply retention rules to stored state",
    )
    p_cleanup.add_argument(
        "--emergency", action="store_true",
        help="Also drop in-progress and paused state past the emergency age",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    return parser


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        logger.error("File not found: %s", path)
        return None
    return path.read_text(encoding="utf-8")


async def _cmd_split(args: argparse.Namespace) -> int:
    """Show the split preview of a file."""
    from partledger.chunking.content_splitter import ContentSplitter, generate_split_preview
    from partledger.config.settings import Settings

    content = _read_text(args.file)
    if content is None:
        return 1

    settings = Settings()
    parts = ContentSplitter(settings).split(content, args.title or args.file.name)
    preview = generate_split_preview(parts, settings.safe_chunk_size_bytes)

    if args.json:
        print(json.dumps(preview, indent=2, ensure_ascii=False))
        return 0

    print(f"\nSplit preview for {args.file.name}:")
    print(f"  Parts:        {preview['total_parts']}")
    print(f"  Words:        {preview['total_words']}")
    print(f"  Size:         {preview['total_size_kb']} KB")
    print(f"  Margin:       {preview['safety_margin_kb']} KB")
    for part in preview["parts"]:
        print(
            f"  [{part['part_number']:>3}] {part['size_kb']:>7} KB "
            f"{part['word_count']:>7} words  ({part['boundary']})"
        )
    return 0


async def _cmd_hash(args: argparse.Namespace) -> int:
    """Print full and per-part hashes of a file."""
    from partledger.chunking.content_splitter import ContentSplitter
    from partledger.config.settings import Settings
    from partledger.hashing.dual_hash import hash_series

    content = _read_text(args.file)
    if content is None:
        return 1

    parts = ContentSplitter(Settings()).split(content, args.file.name)
    hashes = hash_series([p.content for p in parts])

    print(f"\nHashes for {args.file.name}:")
    for name, value in hashes.full.digests().items():
        print(f"  {name:<8} {value}")
    if len(parts) > 1:
        for part_hash in hashes.per_part:
            print(f"  part {part_hash.part_number:>3} sha256 {part_hash.sha256}")
    return 0


async def _cmd_pending(args: argparse.Namespace) -> int:
    """List incomplete series in the state store."""
    from partledger.config.settings import Settings
    from partledger.storage.store_factory import create_state_store

    store = create_state_store(Settings())
    try:
        snapshots = await store.list_incomplete()
    finally:
        store.close()

    if not snapshots:
        print("No pending series.")
        return 0

    print(f"\n{len(snapshots)} pending series:")
    for snap in sorted(snapshots, key=lambda s: s.saved_at):
        state = snap.state
        print(
            f"  {snap.series_id}  {snap.status:<11} part {min(state.current_part, state.total_parts)}"
            f"/{state.total_parts}  {snap.manifest.title!r}  saved {snap.saved_at:%Y-%m-%d %H:%M}"
        )
    return 0


async def _cmd_verify(args: argparse.Namespace) -> int:
    """Verify posted parts of a persisted series against the ledger."""
    from partledger.config.settings import Settings
    from partledger.pipeline.resume_verifier import ResumeVerifier
    from partledger.query.failover_client import FailoverQueryClient
    from partledger.storage.store_factory import create_state_store

    settings = Settings()
    store = create_state_store(settings)
    try:
        snapshot = await store.load_state(args.series_id)
    finally:
        store.close()
    if snapshot is None:
        logger.error("No persisted state for series %s", args.series_id)
        return 1

    async with FailoverQueryClient.from_settings(settings) as client:
        report = await ResumeVerifier(client).verify(snapshot.manifest)

    print(f"\nVerification of {args.series_id}:")
    print(f"  Verified: {report.verified}")
    print(f"  Failed:   {report.failed}")
    for part, reason in sorted(report.reasons.items()):
        print(f"    part {part}: {reason}")
    print(f"  Missing:  {report.missing}")
    return 0 if report.all_verified else 2


async def _cmd_cleanup(args: argparse.Namespace) -> int:
    """Run retention cleanup and report storage usage."""
    from partledger.config.settings import Settings
    from partledger.storage.retention import RetentionManager
    from partledger.storage.store_factory import create_state_store

    settings = Settings()
    store = create_state_store(settings)
    try:
        manager = RetentionManager(
            store,
            settings,
            log_path=settings.storage_root.expanduser() / "cleanup_log.json",
        )
        stats = await manager.cleanup_expired(emergency=args.emergency)
        quota = await manager.check_quota()
    finally:
        store.close()

    print(f"\nCleanup complete{' (emergency)' if stats.emergency else ''}:")
    print(f"  Parts deleted:  {stats.parts_deleted}")
    print(f"  States deleted: {stats.states_deleted}")
    print(f"  Freed:          {stats.bytes_freed / 1024:.1f} KB")
    print(f"  Usage:          {quota.usage_ratio * 100:.1f}% ({quota.level})")
    return 0


def _setup_logging(verbose: bool) -> None:
    """Apply the logging settings, with DEBUG level when verbose."""
    from partledger.config.settings import load_settings
    from partledger.logging.logger import setup_logging_from_settings

    settings = load_settings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_logging_from_settings(settings)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
