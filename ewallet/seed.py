#!/usr/bin/env python3
"""Seed script for the E-Wallet ledger

Creates two demo accounts and replays a few sample movements through the
ledger engine, so balances and history agree:
- john_doe opens with 1000 and jane_smith with 500
- john_doe deposits 200
- john_doe transfers 50 to jane_smith
- jane_smith withdraws 30

Accounts that already exist are left alone, and the sample movements are
only replayed when both accounts were created by this run.

Run with: python -m ewallet.seed
"""

import sys
from decimal import Decimal
from typing import Dict, List, Tuple

from .config import get_config
from .errors import DuplicateUsername, LedgerError
from .logging_config import setup_logging
from .system import WalletSystem


SAMPLE_ACCOUNTS: List[Tuple[str, Decimal]] = [
    ("john_doe", Decimal("1000")),
    ("jane_smith", Decimal("500")),
]


def create_accounts(system: WalletSystem) -> Dict[str, str]:
    """Create the sample accounts; returns username -> id for new ones"""
    created = {}
    for username, opening_balance in SAMPLE_ACCOUNTS:
        try:
            account = system.account_store.create_account(username, opening_balance)
        except DuplicateUsername:
            print(f"Account {username} already exists, skipping")
            continue
        created[username] = account.id
        print(f"Created account {username} with balance {opening_balance}")
    return created


def replay_movements(system: WalletSystem, account_ids: Dict[str, str]) -> int:
    """Run the sample deposit, transfer and withdrawal; returns how many ran"""
    john_id = account_ids["john_doe"]
    jane_id = account_ids["jane_smith"]

    system.ledger.deposit(john_id, Decimal("200"), description="Initial deposit")
    system.ledger.transfer(john_id, "jane_smith", Decimal("50"))
    system.ledger.withdraw(jane_id, Decimal("30"), description="ATM withdrawal")
    return 3


def seed(system: WalletSystem) -> Dict[str, str]:
    """Seed the given system; returns username -> id of created accounts"""
    created = create_accounts(system)

    if len(created) == len(SAMPLE_ACCOUNTS):
        count = replay_movements(system, created)
        print(f"Replayed {count} sample transactions")
    else:
        print("Sample accounts were already present, no transactions replayed")

    return created


def main() -> int:
    """Seed the configured database"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("E-Wallet Ledger - Seed Data")
    print("=" * 40)

    system = WalletSystem(config)
    try:
        seed(system)
        for account in system.account_store.list_accounts():
            print(f"   {account.username}: {account.balance}")
    except LedgerError as e:
        print(f"Error during seeding: {e.message}")
        return 1
    finally:
        system.close()

    print("=" * 40)
    print(f"Seeded {config.database_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
