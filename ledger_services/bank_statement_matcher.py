"""
ledger_services.bank_statement_matcher
======================================

Responsibility:
    Loads the unreconciled bank transactions of a bank account and the
    unreconciled posted lines on its GL account, converts them to frozen
    engine inputs and asks ``BankMatchingEngine`` for ranked proposals.

Architecture:
    Services layer.  Read-only: it never writes, locks or flushes.  Applying
    proposals is ReconciliationSession's job.

Failure modes:
    - BankAccountNotFoundError for an unknown bank account.
    - ValidationError for a negative window.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_engines.matching import BankItem, BankMatchingEngine, LedgerItem, MatchSuggestions
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.selectors.bank_selector import BankSelector
from ledger_kernel.services.bank_account_service import BankAccountService

logger = get_logger("services.bank_statement_matcher")

DEFAULT_MATCH_WINDOW_DAYS = 3


class BankStatementMatcher:
    """
    Suggests bank-to-ledger matches.

    Contract:
        Pure with respect to the database: two calls over the same data
        return equal suggestions.
    """

    def __init__(self, session: Session, default_window_days: int = DEFAULT_MATCH_WINDOW_DAYS):
        self._session = session
        self._default_window_days = default_window_days
        self._banks = BankAccountService(session)
        self._selector = BankSelector(session)
        self._engine = BankMatchingEngine()

    def suggest_matches(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        window_days: int | None = None,
        as_of_date: date | None = None,
    ) -> MatchSuggestions:
        """
        Propose one-to-one matches for a bank account.

        ``as_of_date`` limits both sides to items dated on or before it
        (a statement date); ``window_days`` defaults to the configured
        match window.
        """
        window = self._default_window_days if window_days is None else window_days
        if isinstance(window, bool) or not isinstance(window, int) or window < 0:
            raise ValidationError(f"window_days must be a non-negative integer, got {window!r}", field="window_days")

        bank_account = self._banks.load_bank_account(tenant_id, bank_account_id)

        bank_items = [
            BankItem(
                id=row.id,
                transaction_date=row.transaction_date,
                amount=row.amount,
                reference=row.reference,
            )
            for row in self._selector.unreconciled_transactions(bank_account.id, as_of_date)
        ]
        ledger_items = [
            LedgerItem(
                id=row.id,
                entry_date=row.entry_date,
                amount=row.signed_amount,
                entry_seq=row.entry_seq,
                line_seq=row.line_seq,
                entry_number=row.entry_number,
                reference=row.reference,
            )
            for row in self._selector.unreconciled_gl_lines(tenant_id, bank_account.gl_account_id, as_of_date)
        ]

        suggestions = self._engine.suggest(
            bank_items=bank_items,
            ledger_items=ledger_items,
            window_days=window,
        )
        logger.info(
            "match_suggestions_ready",
            extra={
                "bank_account_id": str(bank_account.id),
                "proposal_count": len(suggestions.proposals),
                "contested_count": len(suggestions.contested),
            },
        )
        return suggestions
