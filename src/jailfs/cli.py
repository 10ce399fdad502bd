"""Console entrypoint for jailfs.

Runs single filesystem operations against a jailed base directory, mostly
useful to poke at a sandbox from a shell or to tail its change events.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from jailfs import __version__
from jailfs.backend import LocalVFS
from jailfs.config import LogLevel, Settings, load_settings
from jailfs.errors import VFSError
from jailfs.logging import configure_logger
from jailfs.paths import default_config_path
from jailfs.types import EntryType, WatchEvent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jailfs",
        description="Run filesystem operations confined to a base directory",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version and exit.",
    )
    parser.add_argument("--base", dest="base_dir", help="Base directory acting as the jail root")
    parser.add_argument("--config-path", dest="config_path", help="Path to config.toml")
    parser.add_argument(
        "--log-level",
        choices=[e.value for e in LogLevel],
        dest="log_level",
        help="Log level override",
    )
    parser.add_argument("--debug", action="store_true", help="Shortcut for --log-level debug")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ls_parser = subparsers.add_parser("ls", help="List a directory")
    ls_parser.add_argument("path", nargs="?", default="/")
    ls_parser.add_argument("--types", action="store_true", help="Show entry types")

    for name, help_text in (
        ("cat", "Print file contents"),
        ("stat", "Show type and size"),
        ("realpath", "Resolve a path through its symlinks"),
        ("readlink", "Show a symlink target"),
        ("mkdir", "Create one directory level"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("path")

    rm_parser = subparsers.add_parser("rm", help="Remove a file or directory")
    rm_parser.add_argument("path")
    rm_parser.add_argument("-r", "--recursive", action="store_true", help="Remove directories recursively")

    watch_parser = subparsers.add_parser("watch", help="Print change events matching a glob")
    watch_parser.add_argument("glob")
    watch_parser.add_argument("--timeout", type=float, default=None, help="Stop after this many seconds")

    config_parser = subparsers.add_parser("config", help="Config helpers")
    config_sub = config_parser.add_subparsers(dest="config_cmd", required=True)
    config_sub.add_parser("path", help="Print config path")
    config_sub.add_parser("print", help="Print resolved settings")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = _collect_overrides(args)
    settings = load_settings(cli_overrides=overrides, config_path=args.config_path)
    configure_logger(settings.log_level)

    if args.command == "config":
        return _run_config(settings, args)

    try:
        return asyncio.run(_run_command(settings, args))
    except VFSError as exc:
        print(f"error: {exc.code.value}: {exc}", file=sys.stderr)
        return 1


async def _run_command(settings: Settings, args: argparse.Namespace) -> int:
    async with LocalVFS(settings=settings) as vfs:
        handler = _COMMANDS[args.command]
        return await handler(vfs, args)


async def _cmd_ls(vfs: LocalVFS, args: argparse.Namespace) -> int:
    if args.types:
        for entry in sorted(await vfs.read_dirent(args.path), key=lambda e: e.name):
            print(f"{entry.type.value}\t{entry.name}")
    else:
        for name in sorted(await vfs.read_dir(args.path)):
            print(name)
    return 0


async def _cmd_cat(vfs: LocalVFS, args: argparse.Namespace) -> int:
    async with vfs.read_file_stream(args.path) as stream:
        async for chunk in stream:
            sys.stdout.buffer.write(chunk)
    sys.stdout.buffer.flush()
    return 0


async def _cmd_stat(vfs: LocalVFS, args: argparse.Namespace) -> int:
    info = await vfs.stat(args.path)
    print(json.dumps({"type": info.type.value, "size": info.size}))
    return 0


async def _cmd_realpath(vfs: LocalVFS, args: argparse.Namespace) -> int:
    print(await vfs.real_path(args.path))
    return 0


async def _cmd_readlink(vfs: LocalVFS, args: argparse.Namespace) -> int:
    print(await vfs.read_symlink(args.path))
    return 0


async def _cmd_mkdir(vfs: LocalVFS, args: argparse.Namespace) -> int:
    await vfs.mkdir(args.path)
    return 0


async def _cmd_rm(vfs: LocalVFS, args: argparse.Namespace) -> int:
    info = await vfs.lstat(args.path)
    if info.type is EntryType.DIR:
        await vfs.remove_dir(args.path, recursive=args.recursive)
    else:
        await vfs.remove_file(args.path)
    return 0


async def _cmd_watch(vfs: LocalVFS, args: argparse.Namespace) -> int:
    loop = asyncio.get_running_loop()
    failed: asyncio.Future[VFSError] = loop.create_future()

    def _on_event(event: WatchEvent) -> None:
        print(f"{event.type.value}\t{event.path}", flush=True)

    def _settle(error: VFSError) -> None:
        if not failed.done():
            failed.set_result(error)

    def _on_error(error: VFSError) -> None:
        loop.call_soon_threadsafe(_settle, error)

    unsubscribe = await vfs.watch(args.glob, _on_event, _on_error)
    try:
        error = await asyncio.wait_for(asyncio.shield(failed), timeout=args.timeout)
    except TimeoutError:
        return 0
    finally:
        await unsubscribe()
    raise error


_COMMANDS: dict[str, Callable[[LocalVFS, argparse.Namespace], Awaitable[int]]] = {
    "ls": _cmd_ls,
    "cat": _cmd_cat,
    "stat": _cmd_stat,
    "realpath": _cmd_realpath,
    "readlink": _cmd_readlink,
    "mkdir": _cmd_mkdir,
    "rm": _cmd_rm,
    "watch": _cmd_watch,
}


def _run_config(settings: Settings, args: argparse.Namespace) -> int:
    if args.config_cmd == "path":
        print(args.config_path or default_config_path())
        return 0
    if args.config_cmd == "print":
        print(settings.model_dump_json(indent=2))
        return 0
    return 1


def _collect_overrides(args: argparse.Namespace) -> dict[str, Any]:
    log_level = args.log_level or (LogLevel.DEBUG.value if args.debug else None)
    return {
        "base_dir": args.base_dir,
        "log_level": log_level,
    }


if __name__ == "__main__":
    sys.exit(main())
