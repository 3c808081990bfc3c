"""Command-line tools for inspecting and maintaining a gitpress repository."""

import argparse
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from . import __version__
from .config import load_config
from .config_loader import ensure_config
from .errors import GitPressError
from .logger import setup_logging
from .versioning.engine import VersioningEngine
from .versioning.messages import parse_action_tags

logger = logging.getLogger(__name__)


def _cmd_init(engine: VersioningEngine, args: argparse.Namespace) -> int:
    config_path = ensure_config()
    print(f"Repository: {engine.backend.repo_dir}")
    print(f"Config:     {config_path}")
    print(f"Commits:    {engine.backend.commit_count()}")
    return 0


def _cmd_log(engine: VersioningEngine, args: argparse.Namespace) -> int:
    records = engine.history(args.limit)
    if not records:
        print("No commits yet.")
        return 0
    for record in records:
        print(f"{record.commit_id[:12]}  {record.headline}")
        if args.actions:
            for tag in parse_action_tags(record.message):
                print(f"              {tag}")
    return 0


def _cmd_show(engine: VersioningEngine, args: argparse.Namespace) -> int:
    for path in engine.backend.changed_paths(args.commit):
        print(path)
    return 0


def _cmd_revert(engine: VersioningEngine, args: argparse.Namespace) -> int:
    new_id = engine.revert(args.commit)
    print(f"Reverted {args.commit[:12]} as {new_id[:12]}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitpress",
        description="gitpress - git history for CMS database content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the repository and a starter config
  gitpress init

  # Show the last 10 commits with their actions
  gitpress log -n 10 --actions

  # Undo one commit
  gitpress revert 1a2b3c4d
        """,
    )
    parser.add_argument(
        "--repository",
        help="Repository root (takes precedence over GITPRESS_REPOSITORY and config files)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"gitpress version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    init_p = sub.add_parser("init", help="Create the repository and a starter config")
    init_p.set_defaults(handler=_cmd_init)

    log_p = sub.add_parser("log", help="List commits, newest first")
    log_p.add_argument("-n", "--limit", type=int, default=None)
    log_p.add_argument(
        "--actions", action="store_true", help="Also print VP-Action trailers"
    )
    log_p.set_defaults(handler=_cmd_log)

    show_p = sub.add_parser("show", help="List the files a commit touched")
    show_p.add_argument("commit")
    show_p.set_defaults(handler=_cmd_show)

    revert_p = sub.add_parser("revert", help="Revert a commit")
    revert_p.add_argument("commit")
    revert_p.set_defaults(handler=_cmd_revert)

    return parser


def run(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``gitpress`` console script."""
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        config = load_config({"repository": args.repository})
        setup_logging(
            mode="cli",
            debug=args.debug,
            log_file=config.logging.file,
            level=config.logging.level,
        )
        engine = VersioningEngine(config)
        return args.handler(engine, args)
    except (GitPressError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
