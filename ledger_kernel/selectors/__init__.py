"""Read-only query layer: trial balance, account activity and bank items."""

from ledger_kernel.selectors.bank_selector import BankSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.trial_balance import TrialBalanceCalculator

__all__ = ["BankSelector", "LedgerSelector", "TrialBalanceCalculator"]
