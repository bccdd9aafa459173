"""
Pure calculation engines.

Engines take frozen value objects, perform no I/O and never read the clock;
identical inputs produce identical outputs.  Services load data, call an
engine and persist whatever the caller decides to keep.
"""

from ledger_engines.matching import (
    BankItem,
    BankMatchingEngine,
    ContestedItem,
    LedgerItem,
    MatchProposal,
    MatchSuggestions,
    MatchTier,
)

__all__ = [
    "BankItem",
    "BankMatchingEngine",
    "ContestedItem",
    "LedgerItem",
    "MatchProposal",
    "MatchSuggestions",
    "MatchTier",
]
