"""
ledger_engines.matching -- bank statement to general ledger matching engine.

Responsibility:
    Pairs unreconciled bank transactions with unreconciled ledger lines on
    the bank's GL account.  Produces ranked, one-to-one match proposals and
    reports every ambiguity (alternatives and contested transactions).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Loaded and persisted by
    ``ledger_services.bank_statement_matcher``.

Invariants enforced:
    - Replay safety: identical inputs produce identical outputs; no clock,
      no randomness, a total order on candidate pairs.
    - A candidate pair needs exactly equal signed amounts (Decimal) and a
      date difference within the window.
    - Assignment is one-to-one: no bank transaction and no ledger line
      appears in more than one proposal.
    - Nothing is dropped: every input item is either proposed, contested
      or listed as unmatched.

Ranking (lowest key wins):
    1. exact reference match (case-insensitive, trimmed) before amount/date
    2. smaller absolute date difference
    3. earlier ledger posting order (entry sequence, then line sequence)
    4. earlier bank transaction date, then id

Failure modes:
    - ValueError for a negative window.
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.matching")


class MatchTier(str, Enum):
    """Strength of a proposed match."""

    EXACT_REFERENCE = "exact_reference"
    AMOUNT_DATE_ONLY = "amount_date_only"


@dataclass(frozen=True)
class BankItem:
    """An unreconciled bank statement line."""

    id: UUID
    transaction_date: date
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class LedgerItem:
    """An unreconciled GL line, amount signed debit-positive."""

    id: UUID
    entry_date: date
    amount: Decimal
    entry_seq: int
    line_seq: int
    entry_number: str = ""
    reference: str | None = None


@dataclass(frozen=True)
class CandidatePair:
    bank: BankItem
    ledger: LedgerItem
    tier: MatchTier
    date_delta_days: int

    @property
    def rank_key(self) -> tuple:
        return (
            0 if self.tier == MatchTier.EXACT_REFERENCE else 1,
            self.date_delta_days,
            self.ledger.entry_seq,
            self.ledger.line_seq,
            self.bank.transaction_date,
            str(self.bank.id),
        )


@dataclass(frozen=True)
class MatchProposal:
    """One suggested (bank transaction, ledger line) pairing."""

    bank_transaction_id: UUID
    ledger_line_id: UUID
    amount: Decimal
    tier: MatchTier
    date_delta_days: int
    alternative_ledger_line_ids: tuple[UUID, ...] = ()
    alternative_bank_transaction_ids: tuple[UUID, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.alternative_ledger_line_ids or self.alternative_bank_transaction_ids)


@dataclass(frozen=True)
class ContestedItem:
    """A bank transaction whose every candidate line went to a better-ranked pair."""

    bank_transaction_id: UUID
    candidate_ledger_line_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class MatchSuggestions:
    """
    Engine output.

    ``unmatched_bank_transaction_ids`` lists every bank transaction without
    a proposal, contested ones included; ``contested`` explains which of
    those had candidates.
    """

    proposals: tuple[MatchProposal, ...]
    contested: tuple[ContestedItem, ...]
    unmatched_bank_transaction_ids: tuple[UUID, ...]
    unmatched_ledger_line_ids: tuple[UUID, ...]
    window_days: int

    def proposal_for(self, bank_transaction_id: UUID) -> MatchProposal | None:
        for proposal in self.proposals:
            if proposal.bank_transaction_id == bank_transaction_id:
                return proposal
        return None


def _normalize_reference(reference: str | None) -> str:
    return (reference or "").strip().lower()


class BankMatchingEngine:
    """
    Deterministic bank matching.

    Contract:
        Pure -- no I/O, no database access.  Callers pass every input.
    Non-goals:
        - Partial (one-to-many) matches and amount tolerances.
        - Persisting anything; ReconciliationSession applies matches.
    """

    @traced_engine("bank_matching", "1.0", fingerprint_fields=("bank_items", "ledger_items", "window_days"))
    def suggest(
        self,
        *,
        bank_items: Sequence[BankItem],
        ledger_items: Sequence[LedgerItem],
        window_days: int,
    ) -> MatchSuggestions:
        if window_days < 0:
            raise ValueError(f"window_days must be >= 0, got {window_days}")

        t0 = time.monotonic()
        logger.info("match_search_started", extra={
            "bank_item_count": len(bank_items),
            "ledger_item_count": len(ledger_items),
            "window_days": window_days,
        })

        pairs = self.candidate_pairs(bank_items, ledger_items, window_days)

        taken_bank: set[UUID] = set()
        taken_ledger: set[UUID] = set()
        chosen: list[CandidatePair] = []
        for pair in pairs:
            if pair.bank.id in taken_bank or pair.ledger.id in taken_ledger:
                continue
            taken_bank.add(pair.bank.id)
            taken_ledger.add(pair.ledger.id)
            chosen.append(pair)

        ledger_by_bank: dict[UUID, list[UUID]] = defaultdict(list)
        bank_by_ledger: dict[UUID, list[UUID]] = defaultdict(list)
        for pair in pairs:
            ledger_by_bank[pair.bank.id].append(pair.ledger.id)
            bank_by_ledger[pair.ledger.id].append(pair.bank.id)

        proposals = tuple(
            MatchProposal(
                bank_transaction_id=pair.bank.id,
                ledger_line_id=pair.ledger.id,
                amount=pair.bank.amount,
                tier=pair.tier,
                date_delta_days=pair.date_delta_days,
                alternative_ledger_line_ids=tuple(
                    lid for lid in ledger_by_bank[pair.bank.id] if lid != pair.ledger.id
                ),
                alternative_bank_transaction_ids=tuple(
                    bid for bid in bank_by_ledger[pair.ledger.id] if bid != pair.bank.id
                ),
            )
            for pair in chosen
        )

        unmatched_bank = tuple(b.id for b in bank_items if b.id not in taken_bank)
        contested = tuple(
            ContestedItem(bank_transaction_id=bid, candidate_ledger_line_ids=tuple(ledger_by_bank[bid]))
            for bid in unmatched_bank
            if ledger_by_bank.get(bid)
        )
        unmatched_ledger = tuple(item.id for item in ledger_items if item.id not in taken_ledger)

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("match_search_completed", extra={
            "candidate_pairs": len(pairs),
            "proposal_count": len(proposals),
            "contested_count": len(contested),
            "unmatched_bank_count": len(unmatched_bank),
            "unmatched_ledger_count": len(unmatched_ledger),
            "duration_ms": duration_ms,
        })

        return MatchSuggestions(
            proposals=proposals,
            contested=contested,
            unmatched_bank_transaction_ids=unmatched_bank,
            unmatched_ledger_line_ids=unmatched_ledger,
            window_days=window_days,
        )

    def candidate_pairs(
        self,
        bank_items: Sequence[BankItem],
        ledger_items: Sequence[LedgerItem],
        window_days: int,
    ) -> list[CandidatePair]:
        """Every eligible pair, sorted by rank."""
        ledger_by_amount: dict[Decimal, list[LedgerItem]] = defaultdict(list)
        for item in ledger_items:
            ledger_by_amount[item.amount].append(item)

        pairs: list[CandidatePair] = []
        for bank in bank_items:
            bank_ref = _normalize_reference(bank.reference)
            for ledger in ledger_by_amount.get(bank.amount, ()):
                delta = abs((bank.transaction_date - ledger.entry_date).days)
                if delta > window_days:
                    continue
                exact = bool(bank_ref) and bank_ref == _normalize_reference(ledger.reference)
                pairs.append(
                    CandidatePair(
                        bank=bank,
                        ledger=ledger,
                        tier=MatchTier.EXACT_REFERENCE if exact else MatchTier.AMOUNT_DATE_ONLY,
                        date_delta_days=delta,
                    )
                )
        pairs.sort(key=lambda p: p.rank_key)
        return pairs
