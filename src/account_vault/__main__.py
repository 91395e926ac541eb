# Main Entry Point - Developer Command Line
#
# Thin wrapper over VaultManager for inspecting and editing a vault without
# the GUI. Every command loads the vault, acts, and closes it (final flush).

import argparse
import getpass
import sys
from typing import List, Optional

from . import __version__
from .config import Settings
from .errors import AuthenticationFailed, VaultError
from .vault.models import AccountRecord
from .vault.store import SortField
from .vault.vault_manager import VaultManager


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="account-vault",
        description="Account Vault - local encrypted account credential store",
    )
    parser.add_argument(
        "--home",
        default=None,
        help="Vault directory (default: $ACCOUNT_VAULT_HOME or ~/.account_vault)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Account Vault v{__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List accounts in vault order")

    add = sub.add_parser("add", help="Add an account")
    add.add_argument("login")
    add.add_argument("password")
    add.add_argument("--nickname", default="")
    add.add_argument("--steam-id", type=int, default=None)
    add.add_argument("--note", default=None)

    for name, text in (("remove", "Remove an account"),
                       ("pin", "Pin an account to the top"),
                       ("unpin", "Unpin an account")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("login")

    search = sub.add_parser("search", help="Search accounts by nickname")
    search.add_argument("query", nargs="?", default="")

    sort = sub.add_parser("sort", help="Sort unpinned accounts")
    sort.add_argument("field", choices=[f.value for f in SortField])
    sort.add_argument("--desc", action="store_true")

    sub.add_parser("set-passphrase", help="Protect the vault with a passphrase")
    sub.add_parser("clear-passphrase", help="Return to the device-bound key")
    return parser


def _open_vault(settings: Settings) -> VaultManager:
    manager = VaultManager(settings)
    try:
        manager.load()
    except AuthenticationFailed:
        passphrase = getpass.getpass("Vault passphrase: ")
        manager.unlock(passphrase)
    return manager


def _format_record(index: int, record: AccountRecord) -> str:
    pin = "*" if record.pinned else " "
    ident = record.steam_id if record.steam_id is not None else "-"
    guard = " [2FA]" if record.has_authenticator else ""
    return f"{index:>3} {pin} {record.nickname:<24} {record.login:<24} {ident}{guard}"


def _require(manager: VaultManager, login: str) -> AccountRecord:
    index = manager.store.find(lambda r: r.login == login)
    if index is None:
        raise VaultError(f"No account with login '{login}'")
    return manager.store[index]


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for Account Vault.
    """
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env(home=args.home)

    try:
        with _open_vault(settings) as manager:
            store = manager.store

            if args.command == "list":
                for i, record in enumerate(store):
                    print(_format_record(i, record))

            elif args.command == "add":
                record = AccountRecord(
                    login=args.login,
                    password=args.password,
                    nickname=args.nickname,
                    steam_id=args.steam_id,
                    note=args.note,
                )
                index = manager.add_account(record)
                print(f"Added '{record.login}' at {index}")

            elif args.command == "remove":
                index = manager.remove_account(_require(manager, args.login))
                print(f"Removed '{args.login}' from {index}")

            elif args.command in ("pin", "unpin"):
                record = _require(manager, args.login)
                if (args.command == "pin") != record.pinned:
                    manager.toggle_pin(record)
                print(f"{args.command.capitalize()}ned '{args.login}' "
                      f"(now at {store.index_of(record)})")

            elif args.command == "search":
                records = store.snapshot()
                for i in manager.search(args.query):
                    print(_format_record(i, records[i]))

            elif args.command == "sort":
                store.sort_unpinned(args.field, descending=args.desc)
                manager.save_database()
                for i, record in enumerate(store):
                    print(_format_record(i, record))

            elif args.command == "set-passphrase":
                first = getpass.getpass("New passphrase: ")
                second = getpass.getpass("Repeat passphrase: ")
                if not first or first != second:
                    print("Passphrases are empty or do not match", file=sys.stderr)
                    return 1
                manager.set_passphrase(first)
                print("Vault re-encrypted with passphrase")

            elif args.command == "clear-passphrase":
                manager.set_passphrase(None)
                print("Vault re-encrypted with device key")

    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
