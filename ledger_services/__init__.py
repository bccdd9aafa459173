"""
ledger_services -- Package init and public API.

Responsibility:
    Orchestration composed from kernel services and pure engines.
    ``LedgerCore`` is the public facade: it owns transaction boundaries and
    returns ``OperationResult`` values.  The other services here run inside
    a caller-supplied session and never commit.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)
"""

from ledger_services.bank_statement_matcher import BankStatementMatcher
from ledger_services.ledger_core import LedgerCore
from ledger_services.reconciliation_session import ReconciliationSession
from ledger_services.year_end_closer import YearEndCloser

__all__ = [
    "BankStatementMatcher",
    "LedgerCore",
    "ReconciliationSession",
    "YearEndCloser",
]
