"""
restic-browser - Main Entry Point

This module provides the CLI interface and wires up all components to
browse a restic repository as a read-only directory tree.
"""

import argparse
import logging
import shutil
import sys
from datetime import datetime

from .config import AppConfig, load_config
from .errors import CommandFailure, LaunchFailure, PathResolutionError, ResticError
from .filesystem import ResticFileSystem
from .logger import setup_logging
from .process import ProcessRunner
from .restic_client import ResticRepository
from .tempfiles import TempFileManager

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to configuration file")
    common.add_argument("--repo", help="Path to the restic repository")
    common.add_argument("--password-file", help="File holding the repository password")
    common.add_argument("--restic-binary", help="restic executable (default: restic)")
    common.add_argument("--verbose", action="store_true", help="Enable debug logging")

    parser = argparse.ArgumentParser(
        description="restic-browser - Browse restic snapshots as a read-only tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  restic-browser snapshots --repo /srv/restic --password-file ~/.restic-pass
  restic-browser ls "2023-04-15T23:39:39.095734241+02:00 (52f058e0)/home" --config browser.ini
  restic-browser cat "2023-04-15T23:39:39.095734241+02:00 (52f058e0)/etc/hosts" > hosts
  restic-browser test --config browser.ini
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("snapshots", parents=[common], help="List snapshot directories")

    ls_parser = subparsers.add_parser("ls", parents=[common], help="List a virtual directory")
    ls_parser.add_argument("path", nargs="?", default="", help="Virtual path (default: root)")
    ls_parser.add_argument(
        "-l", "--long", action="store_true", help="Show type, size and modification time"
    )

    stat_parser = subparsers.add_parser("stat", parents=[common], help="Show metadata of a path")
    stat_parser.add_argument("path", help="Virtual path")

    cat_parser = subparsers.add_parser("cat", parents=[common], help="Write a file to stdout")
    cat_parser.add_argument("path", help="Virtual path of a file")

    subparsers.add_parser("test", parents=[common], help="Check that the repository is usable")

    return parser.parse_args(argv)


def build_filesystem(config: AppConfig, temp_manager: TempFileManager) -> ResticFileSystem:
    """Create the repository client and filesystem adapter for a configuration."""
    repository = ResticRepository(
        config.repository.path,
        config.repository.password,
        runner=ProcessRunner(),
        cache_config=config.cache,
        binary=config.repository.binary,
    )
    return ResticFileSystem(repository, config.cache, temp_manager=temp_manager)


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _join(path: str, name: str) -> str:
    path = path.strip("/")
    return f"{path}/{name}" if path else name


def cmd_snapshots(fs: ResticFileSystem, args) -> int:
    """Handle the snapshots command."""
    labels = fs.opendir("")
    if not labels:
        print("No snapshots in repository.")
        return 0
    for label in labels:
        print(label)
    return 0


def cmd_ls(fs: ResticFileSystem, args) -> int:
    """
    Handle the ls command.

    With --long each entry is stat'ed as well; those lookups are answered
    from the cache filled by the listing itself.
    """
    for name in fs.opendir(args.path):
        if not args.long:
            print(name)
            continue
        child = _join(args.path, name)
        info = fs.stat(child)
        print(
            f"{fs.filetype(child):<7} {info['size']:>12} {_format_time(info['mtime'])}  {name}"
        )
    return 0


def cmd_stat(fs: ResticFileSystem, args) -> int:
    """Handle the stat command."""
    info = fs.stat(args.path)
    print(f"Path:  {args.path}")
    print(f"Type:  {fs.filetype(args.path)}")
    print(f"Size:  {info['size']}")
    print(f"Mtime: {_format_time(info['mtime'])}")
    print(f"Atime: {_format_time(info['atime'])}")
    return 0


def cmd_cat(fs: ResticFileSystem, args) -> int:
    """Handle the cat command: dump a snapshot file to stdout."""
    if not fs.is_file(args.path):
        print(f"[ERROR] Not a file: {args.path}", file=sys.stderr)
        return 1

    handle = fs.fopen(args.path, "rb")
    if handle is False:
        print(f"[ERROR] Cannot open {args.path}", file=sys.stderr)
        return 1
    with handle:
        shutil.copyfileobj(handle, sys.stdout.buffer)
    sys.stdout.flush()
    return 0


def cmd_test(fs: ResticFileSystem, args) -> int:
    """Handle the test command."""
    if fs.test():
        print(f"[OK] Repository {fs.repository.path} is readable")
        return 0
    print(f"[ERROR] Repository {fs.repository.path} is not readable", file=sys.stderr)
    print("        See the log for details.", file=sys.stderr)
    return 1


COMMANDS = {
    "snapshots": cmd_snapshots,
    "ls": cmd_ls,
    "stat": cmd_stat,
    "cat": cmd_cat,
    "test": cmd_test,
}


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    if args.command not in COMMANDS:
        print("Usage: restic-browser <command> [options]")
        print()
        print("Commands:")
        print("  snapshots  List snapshot directories")
        print("  ls         List a virtual directory")
        print("  stat       Show metadata of a path")
        print("  cat        Write a file to stdout")
        print("  test       Check that the repository is usable")
        print()
        print("Run 'restic-browser <command> --help' for more information.")
        return 1

    try:
        config = load_config(
            config_path=args.config,
            repo=args.repo,
            password_file=args.password_file,
            binary=args.restic_binary,
            debug=args.verbose,
        )
    except ValueError as e:
        print(f"[ERROR] Configuration error: {e}", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    from . import __version__

    logger.info("Starting restic-browser v%s (%s)", __version__, args.command)

    temp_manager = TempFileManager(config.storage.temp_dir)
    try:
        fs = build_filesystem(config, temp_manager)
        return COMMANDS[args.command](fs, args)
    except PathResolutionError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        print(
            '        Paths must start with a snapshot label like "<time> (<id>)".',
            file=sys.stderr,
        )
        return 1
    except LaunchFailure as e:
        logger.error("Could not start restic: %s", e)
        print(f"[ERROR] Could not start restic: {e.reason}", file=sys.stderr)
        return 1
    except CommandFailure as e:
        print(f"[ERROR] restic failed with exit code {e.returncode}", file=sys.stderr)
        if e.stderr.strip():
            print(f"        {e.stderr.strip()}", file=sys.stderr)
        return 1
    except ResticError as e:
        logger.exception("restic-browser error: %s", e)
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    finally:
        temp_manager.clean()


if __name__ == "__main__":
    sys.exit(main() or 0)
