"""Address book administration command-line tool."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import yaml

from py_mabctl import __version__
from py_mabctl.config import Config, load_config
from py_mabctl.controller import Controller
from py_mabctl.debug import redact_settings
from py_mabctl.errors import MabError
from py_mabctl.internal import HrefError, HTTPError
from py_mabctl.models import ConfigDump

logger = logging.getLogger("py_mabctl.cmd")

Handler = Callable[[Controller, argparse.Namespace], Awaitable["Result"]]


class Result:
    """Outcome of a command: data to print and whether anything was found."""

    def __init__(self, data: Any, lines: list[str] | None = None, found: bool = True):
        self.data = data
        self.lines = lines if lines is not None else []
        self.found = found

    def to_dict(self) -> Any:
        return self.data.to_dict() if hasattr(self.data, "to_dict") else self.data


async def cmd_users(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.get_users()
    return Result(response, [f"{u.username}\t{u.displayname}" for u in response.users])


async def cmd_user(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.get_users()
    users = [u for u in response.users if u.username == args.username]
    if not users:
        return Result({"success": False, "message": f"not found: {args.username}"}, [], found=False)
    user = users[0]
    return Result(
        {"username": user.username, "displayname": user.displayname, "uri": user.uri},
        [f"{user.username}\t{user.displayname}"],
    )


async def cmd_mkuser(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.add_user(args.username, args.display or "", args.password or "")
    return Result(response, [response.message])


async def cmd_rmuser(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.delete_user(args.username)
    return Result(response, [response.message])


async def cmd_books(ctrl: Controller, args: argparse.Namespace) -> Result:
    if args.username and not args.admin:
        response = await ctrl.get_books(args.username)
    else:
        response = await ctrl.get_books_admin(args.username)
    return Result(
        response, [f"{b.username}\t{b.bookname}\t{b.contacts}\t{b.uri}" for b in response.books]
    )


async def cmd_mkbook(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.add_book(args.username, args.bookname, args.description or "")
    return Result(response, [response.message])


async def cmd_rmbook(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.delete_book(args.username, args.bookname)
    return Result(response, [response.message])


async def cmd_addresses(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.addresses(args.username, args.bookname)
    return Result(response, [a.email for a in response.addresses])


async def cmd_add(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.add_address(args.username, args.bookname, args.email, args.name or "")
    return Result(response, [response.message])


async def cmd_delete(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.delete_address(args.username, args.bookname, args.email)
    return Result(response, [response.message])


async def cmd_query(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.query_address(args.username, args.bookname, args.email)
    return Result(response, [a.email for a in response.addresses], found=bool(response.addresses))


async def cmd_scan(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.scan_address(args.username, args.email)
    return Result(response, [b.bookname for b in response.books], found=bool(response.books))


async def cmd_passwd(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.get_password(args.username)
    return Result(response, [response.password] if response.success else [], found=response.success)


def _read_input(filename: str) -> str:
    if not filename or filename == "-":
        return sys.stdin.read()
    with open(filename) as f:
        return f.read()


async def cmd_accounts(ctrl: Controller, args: argparse.Namespace) -> Result:
    if args.reset:
        accounts = json.loads(_read_input(args.reset))
        if not isinstance(accounts, dict):
            raise ValueError("accounts must be a JSON object of username: password")
        response = await ctrl.set_accounts(accounts)
    else:
        response = await ctrl.get_accounts()
    return Result(response, [f"{u}\t{p}" for u, p in response.accounts.items()])


async def cmd_dump(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.dump(args.user or args.username)
    # The dump itself is the output, in both output modes
    return Result(response.dump, [response.dump.to_json()])


async def cmd_restore(ctrl: Controller, args: argparse.Namespace) -> Result:
    dump = ConfigDump.from_json(_read_input(args.filename))
    if args.force:
        if args.user:
            await ctrl.delete_user(args.user)
        else:
            await ctrl.clear()
    response = await ctrl.restore(dump, args.user)
    return Result(response, [response.message])


async def cmd_clear(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.clear()
    return Result(response, [response.message])


async def cmd_status(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.status()
    return Result(response, [f"{k}: {v}" for k, v in response.status.items()])


async def cmd_uptime(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.uptime()
    return Result(response, [response.message])


async def cmd_init(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.initialize()
    return Result(response, [response.message])


async def cmd_reset(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.reset()
    return Result(response, [response.message])


async def cmd_shutdown(ctrl: Controller, args: argparse.Namespace) -> Result:
    response = await ctrl.shutdown()
    return Result(response, [response.message])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mabctl",
        description="Address book administration for a CardDAV server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List users and their books
  mabctl users
  mabctl books alice@example.org

  # Add an address to a book
  mabctl add alice@example.org work bob@example.org --name "Bob Smith"

  # Back up and restore everything
  mabctl dump > backup.json
  mabctl restore --force backup.json
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="config file (default: ~/.mabctl, ./.mabctl, /etc/mabctl/config)")
    parser.add_argument("--insecure", action="store_true", default=None, help="skip server certificate verification")
    parser.add_argument("-v", "--verbose", action="store_true", help="log progress messages")
    parser.add_argument("-q", "--quiet", action="store_true", help="suppress output")
    parser.add_argument("-t", "--terse", action="store_true", help="plain text output")
    parser.add_argument("-j", "--json", action="store_true", help="JSON output (default)")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug logging (logs request/response bodies with formatted XML)",
    )
    parser.add_argument("--cert", help="client certificate file")
    parser.add_argument("--key", help="client certificate key file")
    parser.add_argument("--dav-url", help="CardDAV URL")
    parser.add_argument(
        "--discover", action="store_true", default=None, help="discover the CardDAV URL from the account domain"
    )
    parser.add_argument("--admin-url", help="admin API URL")
    parser.add_argument("--admin-username", help="admin API username")
    parser.add_argument("--admin-password", help="admin API password")
    parser.add_argument("--api-key", help="admin API key")
    parser.add_argument("--passwd", help="account passwd file (default: use the admin API)")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    def add(name: str, handler: Handler | None, help: str, aliases: list[str] | None = None) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help, aliases=aliases or [])
        p.set_defaults(handler=handler)
        return p

    add("users", cmd_users, "list users")

    p = add("user", cmd_user, "show one user (exit 1 if missing)")
    p.add_argument("username")

    p = add("mkuser", cmd_mkuser, "create a user")
    p.add_argument("username")
    p.add_argument("-d", "--display", help="display name (default: username)")
    p.add_argument("-p", "--password", help="password (default: generated)")

    p = add("rmuser", cmd_rmuser, "delete a user")
    p.add_argument("username")

    p = add("books", cmd_books, "list address books")
    p.add_argument("username", nargs="?")
    p.add_argument("--admin", action="store_true", help="list through the admin API instead of CardDAV")

    p = add("mkbook", cmd_mkbook, "create an address book")
    p.add_argument("username")
    p.add_argument("bookname")
    p.add_argument("-d", "--description", help="description (default: book name)")

    p = add("rmbook", cmd_rmbook, "delete an address book")
    p.add_argument("username")
    p.add_argument("bookname")

    p = add("addresses", cmd_addresses, "list the addresses in a book", aliases=["ls"])
    p.add_argument("username")
    p.add_argument("bookname")

    p = add("add", cmd_add, "add an address to a book")
    p.add_argument("username")
    p.add_argument("bookname")
    p.add_argument("email")
    p.add_argument("-n", "--name", help="display name")

    p = add("delete", cmd_delete, "delete an address from a book")
    p.add_argument("username")
    p.add_argument("bookname")
    p.add_argument("email")

    p = add("query", cmd_query, "find an address in a book (exit 1 if missing)")
    p.add_argument("username")
    p.add_argument("bookname")
    p.add_argument("email")

    p = add("scan", cmd_scan, "list the books containing an address (exit 1 if none)")
    p.add_argument("username")
    p.add_argument("email")

    p = add("passwd", cmd_passwd, "show a user's CardDAV password")
    p.add_argument("username")

    p = add("accounts", cmd_accounts, "list user accounts")
    p.add_argument("-r", "--reset", metavar="FILE", help="replace accounts from a JSON object file (- reads stdin)")

    p = add("dump", cmd_dump, "dump users, books and addresses as JSON")
    p.add_argument("username", nargs="?")
    p.add_argument("--user", help="dump only this user")

    p = add("restore", cmd_restore, "DESTRUCTIVE restore from a dump file")
    p.add_argument("filename", nargs="?", default="-", help="dump file (- reads stdin)")
    p.add_argument("--user", help="restore only this user")
    p.add_argument("--force", action="store_true", help="delete existing users first")

    add("clear", cmd_clear, "DESTRUCTIVE delete all users and accounts")
    add("status", cmd_status, "show server status")
    add("uptime", cmd_uptime, "show server uptime")
    add("init", cmd_init, "initialize the server")
    add("reset", cmd_reset, "DESTRUCTIVE reset the server")
    add("shutdown", cmd_shutdown, "request server shutdown")
    add("config", None, "show the resolved configuration")

    return parser


def config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Config values given as command-line flags."""
    return {
        "insecure": args.insecure,
        "cert": args.cert,
        "key": args.key,
        "dav_url": args.dav_url,
        "discover": args.discover,
        "admin_url": args.admin_url,
        "admin_username": args.admin_username,
        "admin_password": args.admin_password,
        "api_key": args.api_key,
        "passwd": args.passwd,
        "verbose": True if args.debug else None,
    }


def print_result(result: Result, args: argparse.Namespace) -> None:
    if args.quiet:
        return
    if args.terse and not args.json:
        for line in result.lines:
            print(line)
        return
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


async def run(config: Config, args: argparse.Namespace) -> int:
    async with Controller(config) as ctrl:
        result = await args.handler(ctrl, args)
    print_result(result, args)
    return 0 if result.found else 1


def main(argv: list[str] | None = None) -> None:
    """Main entry point for mabctl."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        from py_mabctl.debug import setup_debug_logging
        setup_debug_logging()
    elif args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args.config, config_overrides(args))
        if args.handler is None:
            print(yaml.safe_dump(redact_settings(config.as_dict()), sort_keys=False), end="")
            sys.exit(0)
        sys.exit(asyncio.run(run(config, args)))
    except (MabError, HTTPError, HrefError, httpx.HTTPError, ValueError, OSError) as e:
        logger.debug("command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
