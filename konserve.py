"""Command-line entry point: back up, inspect, restore, manage templates, serve the API."""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from api import __version__ as APP_VERSION
from backup.api import BackupService, OperationHandle, OperationOutcome
from backup.create import normalize_selection
from backup.errors import BackupError
from backup.reader import ArchiveView, SelectionTreeNode
from core.logging_utils import configure_json_logging
from core.paths import resolve_working_dir
from core.settings import load_settings

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8757
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]

LOGGER = logging.getLogger("konserve.cli")


def _resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip()
    if not host:
        host = DEFAULT_HOST
    norm = host.lower()
    if norm == "localhost":
        return "127.0.0.1"
    if norm.startswith("::ffff:"):
        norm = norm.split("::ffff:")[-1]
    if norm == "::1":
        return "127.0.0.1"
    if norm.startswith("127."):
        return host if host.startswith("127.") else "127.0.0.1"
    raise ValueError(
        f"Refusing to bind API server to non-loopback host '{candidate}'. Konserve only serves on localhost."
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="konserve",
        description="Pack files and folders into a portable archive and restore them later.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Create an archive from files and folders.")
    backup.add_argument("paths", nargs="*", help="Files or folders to include.")
    backup.add_argument("--dest", "-d", required=True, help="Output folder or .tar path.")
    backup.add_argument("--template", "-t", help="Add the paths stored in a template file.")

    inspect = sub.add_parser("inspect", help="Show recorded locations and contents of an archive.")
    inspect.add_argument("archive")

    restore = sub.add_parser("restore", help="Restore an archive to its recorded locations.")
    restore.add_argument("archive")
    restore.add_argument(
        "--only",
        action="append",
        default=None,
        help="Restore only this tree path (repeatable), e.g. Projects/src.",
    )
    restore.add_argument("--home", default=None, help="Home directory to restore profile paths under.")

    template = sub.add_parser("template", help="Save or load path templates.")
    template_sub = template.add_subparsers(dest="template_command", required=True)
    template_save = template_sub.add_parser("save", help="Write a template file.")
    template_save.add_argument("file")
    template_save.add_argument("paths", nargs="+")
    template_load = template_sub.add_parser("load", help="Check which template paths exist here.")
    template_load.add_argument("file")

    serve = sub.add_parser("serve", help="Start the local HTTP API.")
    serve.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    serve.add_argument("--api-key", dest="api_key", default=None, help="Require this API key for this session")
    serve.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Additional allowed CORS origin (repeatable).",
    )
    return parser.parse_args(argv)


def _follow(handle: OperationHandle, interval: float, label: str) -> OperationOutcome:
    """Poll *handle* like the desktop front-end does until its outcome arrives."""

    last = -1
    while True:
        outcome = handle.poll()
        value = handle.progress.get()
        if value != last and value <= 100:
            print(f"\r{label}... {value}%", end="", file=sys.stderr, flush=True)
            last = value
        if outcome is not None:
            if last >= 0:
                print(file=sys.stderr)
            return outcome
        time.sleep(interval)


def _print_tree(node: SelectionTreeNode, depth: int = 0) -> None:
    for name in sorted(node.children):
        child = node.children[name]
        suffix = "" if child.is_file else "/"
        print(f"{'  ' * depth}{name}{suffix}")
        _print_tree(child, depth + 1)


def _run_backup(service: BackupService, args: argparse.Namespace) -> int:
    paths: List[str] = list(args.paths)
    if args.template:
        loaded = service.load_template(args.template)
        for skipped in loaded.skipped:
            LOGGER.warning("Template path skipped: %s", skipped)
            print(f"skipped (missing here): {skipped}", file=sys.stderr)
        paths.extend(loaded.valid)
    handle = service.start_backup(normalize_selection(paths), args.dest)
    outcome = _follow(handle, service.poll_interval, "Backing up")
    print(outcome.message)
    return 0 if outcome.ok else 1


def _run_inspect(service: BackupService, args: argparse.Namespace) -> int:
    handle = service.open_archive_for_restore(args.archive)
    outcome = handle.wait()
    if not outcome.ok:
        print(outcome.message, file=sys.stderr)
        return 1
    view: ArchiveView = outcome.value
    for name, original in sorted(view.key_map.items()):
        print(f"{name} -> {original}")
    print()
    _print_tree(view.tree)
    return 0


def _run_restore(service: BackupService, args: argparse.Namespace) -> int:
    handle = service.start_restore(args.archive, args.only, home=args.home)
    outcome = _follow(handle, service.poll_interval, "Restoring")
    print(outcome.message)
    if outcome.ok:
        for name in outcome.value.get("unresolved", []):
            print(f"  skipped (no recorded location): {name}")
    return 0 if outcome.ok else 1


def _run_template(service: BackupService, args: argparse.Namespace) -> int:
    if args.template_command == "save":
        target = service.save_template([str(Path(p).absolute()) for p in args.paths], args.file)
        print(f"Template saved: {target}")
        return 0
    loaded = service.load_template(args.file)
    for path in loaded.valid:
        print(path)
    if loaded.skipped:
        print(f"Loaded with {len(loaded.skipped)} paths skipped", file=sys.stderr)
    return 0


def _run_serve(service: BackupService, settings: dict, args: argparse.Namespace) -> int:
    import uvicorn

    from api.server import APIServerConfig, create_app

    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}
    host = _resolve_bind_host(args.host or api_settings.get("host") or DEFAULT_HOST)
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT
    api_key = args.api_key if args.api_key else api_settings.get("api_key")
    cors = list(args.cors) if args.cors else list(api_settings.get("cors_origins") or DEFAULT_CORS)

    if not api_key:
        LOGGER.warning("API key is not configured; any local process can drive backups and restores.")

    app = create_app(APIServerConfig(service=service, api_key=api_key, cors_origins=cors, app_version=APP_VERSION))
    print(f"API listening on http://{host}:{port}", flush=True)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info", access_log=False))
    return 0 if server.run() else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = parse_args(argv)
    working_dir = resolve_working_dir()
    settings = load_settings(working_dir)
    configure_json_logging(working_dir=working_dir)
    service = BackupService(working_dir=working_dir, settings=settings)

    try:
        if args.command == "backup":
            return _run_backup(service, args)
        if args.command == "inspect":
            return _run_inspect(service, args)
        if args.command == "restore":
            return _run_restore(service, args)
        if args.command == "template":
            return _run_template(service, args)
        return _run_serve(service, settings, args)
    except ValueError as exc:
        logging.error("%s", exc)
        return 2
    except BackupError as exc:
        logging.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
