"""Command line access to a Krushi backend session.

Examples:
    python scripts/session_cli.py login --email farmer@example.com
    python scripts/session_cli.py whoami
    python scripts/session_cli.py get /fields
    python scripts/session_cli.py emit-activity page_view --detail page=/dashboard
    python scripts/session_cli.py logout

The credential is kept in ``--credentials-file`` between invocations.
"""
from __future__ import annotations
import argparse
import asyncio
import dataclasses
import getpass
import json
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from krushi_client.client_factory import KrushiClient, build_client
from krushi_client.config.settings import ClientConfig, load_settings, resolve_api_root
from krushi_client.core.api.exceptions import ApiError
from krushi_client.core.errors import describe_api_error
from krushi_client.telemetry import Severity

DEFAULT_CREDENTIALS_FILE = str(Path.home() / ".krushi" / "credentials.json")


def _parse_details(pairs: list[str]) -> dict:
    details = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {pair!r}")
        details[key] = value
    return details


def _config_from_args(args: argparse.Namespace) -> ClientConfig:
    cfg = load_settings()
    overrides = {"credentials_file": args.credentials_file or cfg.credentials_file or DEFAULT_CREDENTIALS_FILE}
    if args.api_url:
        overrides["api_root"] = resolve_api_root(cfg.environment, args.api_url)
    return dataclasses.replace(cfg, **overrides)


async def _run(args: argparse.Namespace, bundle: KrushiClient) -> int:
    await bundle.start()
    try:
        if args.cmd == "login":
            password = args.password or bundle.config.login_password
            if not password:
                password = getpass.getpass("Password: ")
            credential = await bundle.session.login(args.email, password)
            print(f"[session] Logged in as {credential.user_id} ({credential.user_role})")
        elif args.cmd == "logout":
            if not bundle.session.is_authenticated():
                print("[session] Not logged in")
            else:
                await bundle.session.logout()
                print("[session] Logged out")
        elif args.cmd == "whoami":
            user = bundle.session.current_user()
            if user is None:
                print("[session] Not logged in")
                return 1
            print(json.dumps(user, indent=2, ensure_ascii=False))
        elif args.cmd == "get":
            resp = await bundle.api.get(args.path)
            print(json.dumps(resp.body, indent=2, ensure_ascii=False))
        elif args.cmd == "health":
            ok = await bundle.session.test_connection()
            print(f"[session] Backend {'reachable' if ok else 'unreachable'} at {bundle.config.api_root}")
            return 0 if ok else 1
        elif args.cmd == "emit-activity":
            entry_id = bundle.activity.log(args.type, args.severity, _parse_details(args.detail))
            delivered = await bundle.uploader.flush()
            print(f"[session] Activity {entry_id} {'delivered' if delivered else 'queued'}")
    finally:
        await bundle.aclose()
    return 0


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Krushi session helper")
    parser.add_argument("--api-url", default=os.environ.get("KRUSHI_API_URL"))
    parser.add_argument("--credentials-file", default=os.environ.get("KRUSHI_CREDENTIALS_FILE"))

    sub = parser.add_subparsers(dest="cmd")

    sl = sub.add_parser("login")
    sl.add_argument("--email", required=True)
    sl.add_argument("--password", help="Defaults to /run/secrets/krushi_password or KRUSHI_PASSWORD")

    sub.add_parser("logout")
    sub.add_parser("whoami")
    sub.add_parser("health")

    sg = sub.add_parser("get")
    sg.add_argument("path")

    se = sub.add_parser("emit-activity")
    se.add_argument("type")
    se.add_argument("--severity", default=Severity.LOW.value, choices=[s.value for s in Severity])
    se.add_argument("--detail", action="append", default=[], help="key=value, repeatable")

    args = parser.parse_args()

    if not args.cmd:
        parser.print_help()
        return

    try:
        bundle = build_client(_config_from_args(args))
    except ValueError as e:
        print(f"[session] Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        code = asyncio.run(_run(args, bundle))
    except ApiError as e:
        description = describe_api_error(e)
        print(f"[{args.cmd}] Error: {description.message} ({description.type})", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
