"""
E-Wallet Ledger

Wallet balances, deposits, withdrawals and peer transfers with atomic
balance mutation, Decimal amounts and an immutable transaction log.
"""

__version__ = "1.0.0"
