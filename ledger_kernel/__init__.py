"""
Ledger Kernel

The accounting core: chart of accounts, double-entry posting, trial
balance, fiscal period control and the bank reconciliation data model.
Services flush; callers own the transaction.
"""

__version__ = "0.1.0"
