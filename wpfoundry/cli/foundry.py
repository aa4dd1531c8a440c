"""
WP Foundry CLI: operate the helper locally or talk to a remote one.

Usage examples:
    python -m wpfoundry.cli.foundry serve --port 8787
    python -m wpfoundry.cli.foundry show-secret
    python -m wpfoundry.cli.foundry exec "plugin list --format=json"
    python -m wpfoundry.cli.foundry run "foundry backup-theme twentytwentyfour" --url http://host:8787
    python -m wpfoundry.cli.foundry download <token> -o backup.zip --url http://host:8787
"""

import argparse
import json
import os
import sys
from pathlib import Path

from foundry.base.config import get_config, setup_logging
from foundry.errors import FoundryError


def _print_event(event_type: str, data: dict) -> None:
    if event_type == "command_output":
        print(data.get("line", ""))
    elif event_type == "command_data":
        print(data.get("raw") or json.dumps(data.get("data")))
    elif event_type == "command_progress":
        print(f"... {data.get('lines', 0)} lines, {data.get('elapsed', 0)}s", file=sys.stderr)
    elif event_type == "command_complete":
        print(f"[done] exit {data.get('exit_code', 0)} after {data.get('elapsed', 0)}s", file=sys.stderr)
    elif event_type == "command_error":
        print(f"[error] {data.get('code')}: {data.get('message')}", file=sys.stderr)


def run_serve(args):
    """Start the HTTP API."""
    from foundry.server.api import serve
    serve(port=args.port, host=args.host)
    return 0


def run_show_secret(args):
    """Print the shared secret, creating it if needed."""
    from foundry.security.signing import get_shared_secret
    print(get_shared_secret().get())
    return 0


def run_rotate_secret(args):
    """Replace the shared secret. Outstanding signatures stop verifying."""
    from foundry.security.signing import get_shared_secret
    try:
        print(get_shared_secret().regenerate())
    except RuntimeError as exc:
        print(f"Cannot rotate: {exc}", file=sys.stderr)
        return 1
    return 0


def run_exec(args):
    """Execute a command on this host and print its events."""
    from foundry.commands.dispatcher import get_dispatcher
    from foundry.engine.sink import CallbackSink

    def _on_event(event):
        if args.sse:
            sys.stdout.write(event.to_sse())
            sys.stdout.flush()
        else:
            _print_event(event.type.value, event.data)

    try:
        emitter = get_dispatcher().run(" ".join(args.words), CallbackSink(_on_event))
    except FoundryError as exc:
        print(f"[rejected] {exc.code.value}: {exc.message}", file=sys.stderr)
        return 2
    return 0 if emitter.succeeded else 1


def _client(args):
    from foundry.client import FoundryClient
    secret = args.secret or os.getenv("FOUNDRY_SHARED_SECRET")
    if not secret:
        raise SystemExit("A shared secret is required (--secret or FOUNDRY_SHARED_SECRET)")
    operator = None
    if args.user:
        operator = (args.user, args.password or os.getenv("FOUNDRY_OPERATOR_PASSWORD", ""))
    return FoundryClient(args.url, secret, operator=operator)


def run_remote(args):
    """Send a signed command to a remote helper and stream the result."""
    status = 0
    try:
        for event in _client(args).run(" ".join(args.words)):
            _print_event(event["type"], event.get("data") or {})
            if event["type"] == "command_error":
                status = 1
    except FoundryError as exc:
        print(f"[rejected] {exc.code.value}: {exc.message}", file=sys.stderr)
        return 2
    return status


def run_download(args):
    """Fetch a staged archive by token."""
    destination = Path(args.output or f"{args.token}.zip")
    try:
        _client(args).download(args.token, destination)
    except FoundryError as exc:
        print(f"[rejected] {exc.code.value}: {exc.message}", file=sys.stderr)
        return 2
    print(destination)
    return 0


def run_upload(args):
    """Stage a zip on the remote helper for `foundry install-upload`."""
    try:
        info = _client(args).upload(Path(args.file))
    except FoundryError as exc:
        print(f"[rejected] {exc.code.value}: {exc.message}", file=sys.stderr)
        return 2
    print(json.dumps(info, indent=2))
    return 0


def _add_remote_options(parser):
    parser.add_argument("--url", default=os.getenv("FOUNDRY_URL", "http://127.0.0.1:8787"), help="Helper base URL")
    parser.add_argument("--secret", help="Shared secret (default: FOUNDRY_SHARED_SECRET)")
    parser.add_argument("--user", help="Operator login or email for the capability check")
    parser.add_argument("--password", help="Operator application password")


def build_parser():
    parser = argparse.ArgumentParser(description="WP Foundry helper")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")
    serve_parser.set_defaults(func=run_serve)

    show_parser = subparsers.add_parser("show-secret", help="Print the shared secret")
    show_parser.set_defaults(func=run_show_secret)

    rotate_parser = subparsers.add_parser("rotate-secret", help="Generate a new shared secret")
    rotate_parser.set_defaults(func=run_rotate_secret)

    exec_parser = subparsers.add_parser("exec", help="Run a command locally")
    exec_parser.add_argument("words", nargs="+", help="Command, e.g. 'plugin list'")
    exec_parser.add_argument("--sse", action="store_true", help="Print raw event-stream frames")
    exec_parser.set_defaults(func=run_exec)

    run_parser = subparsers.add_parser("run", help="Run a command on a remote helper")
    run_parser.add_argument("words", nargs="+", help="Command, e.g. 'foundry backup-db'")
    _add_remote_options(run_parser)
    run_parser.set_defaults(func=run_remote)

    download_parser = subparsers.add_parser("download", help="Download a staged archive")
    download_parser.add_argument("token", help="Download token")
    download_parser.add_argument("-o", "--output", help="Destination file")
    _add_remote_options(download_parser)
    download_parser.set_defaults(func=run_download)

    upload_parser = subparsers.add_parser("upload", help="Upload a zip for installation")
    upload_parser.add_argument("file", help="Zip file")
    _add_remote_options(upload_parser)
    upload_parser.set_defaults(func=run_upload)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    setup_logging(get_config())
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
