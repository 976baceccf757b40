"""
Create a shop staff account from the command line.

Prompts for an email and password, registers the account in the configured
document store and gives it the mechanic role. If the account already
exists, only the role is granted.

Usage:
    python -m security.create_account
    python -m security.create_account --email admin@mechanic.com --name "Georgi"
"""

import argparse
import getpass
import sys

from core.config import get_config
from core.document_store import DocumentStore
from core.errors import ShopError
from security.auth import AccountStore
from security.permissions import ROLE_MECHANIC
from tools.shop.clients import ClientStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a mechanic account")
    parser.add_argument("--email", help="Account email (prompted if omitted)")
    parser.add_argument("--name", default="", help="Display name")
    parser.add_argument("--db", help="Document store path (default from config)")
    args = parser.parse_args(argv)

    config = get_config()
    store = DocumentStore(args.db or config.storage.db_path)
    accounts = AccountStore(
        store,
        ClientStore(store),
        min_password_length=config.auth.min_password_length,
        bcrypt_rounds=config.auth.bcrypt_rounds,
    )

    print("Auto Service: Create Mechanic Account")
    print("=" * 40)

    email = args.email or input("Email: ").strip()
    try:
        if accounts.get_account(email) is None:
            password = getpass.getpass("Password: ")
            confirm = getpass.getpass("Confirm password: ")
            accounts.register(email, password, display_name=args.name, confirm_password=confirm)
        account = accounts.grant_role(email, ROLE_MECHANIC)
    except ShopError as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.close()

    print(f"\n{account.email} is now a {account.role}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
