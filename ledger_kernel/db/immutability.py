"""
ORM-level immutability enforcement.

Posted journal entries can only be corrected by a reversing entry, never by
editing.  SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events
before any SQL reaches the database; the listeners here inspect attribute
history and raise ``ImmutabilityViolationError`` so the flush (and the
caller's transaction) aborts.

Entity            | When immutable                        | Mutable fields
------------------|---------------------------------------|-------------------------------
JournalEntry      | status == POSTED (before this flush)  | updated_at
LedgerLine        | parent entry POSTED                   | is_reconciled, reconciliation_id
BankTransaction   | reconciliation COMPLETED              | none
Reconciliation    | status COMPLETED or CANCELLED         | updated_at

The DRAFT -> POSTED transition itself is allowed: it IS the posting.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at"})
_LINE_RECONCILIATION_FIELDS = frozenset({"is_reconciled", "reconciliation_id"})


def _changed_fields(target, allowed: frozenset[str]) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in allowed and attr.history.has_changes()
    ]


def _blocked(entity_type: str, entity_id, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(entity_type=entity_type, entity_id=str(entity_id), reason=reason)


def _check_journal_entry_update(mapper, connection, target):
    from ledger_kernel.models.journal import JournalEntryStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        was_posted = status_history.deleted[0] == JournalEntryStatus.POSTED
    else:
        was_posted = not status_history.added and target.status == JournalEntryStatus.POSTED

    if not was_posted:
        return

    # Relationship collections (lines) are guarded by the line listeners
    changed = [f for f in _changed_fields(target, _METADATA_FIELDS) if f != "lines"]
    if changed:
        raise _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"cannot modify field '{changed[0]}' on a posted journal entry",
        )


def _check_journal_entry_delete(mapper, connection, target):
    from ledger_kernel.models.journal import JournalEntryStatus

    if target.status == JournalEntryStatus.POSTED:
        raise _blocked("JournalEntry", target.id, "DELETE", "posted journal entries cannot be deleted")


def _line_parent_posted(connection, target) -> bool:
    from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus

    status = connection.execute(
        select(JournalEntry.status).where(JournalEntry.id == target.journal_entry_id)
    ).scalar_one_or_none()
    return status == JournalEntryStatus.POSTED


def _check_ledger_line_update(mapper, connection, target):
    if not _line_parent_posted(connection, target):
        return
    changed = _changed_fields(target, _METADATA_FIELDS | _LINE_RECONCILIATION_FIELDS)
    changed = [f for f in changed if f not in ("entry", "account", "cost_center")]
    if changed:
        raise _blocked(
            "LedgerLine",
            target.id,
            "UPDATE",
            f"cannot modify field '{changed[0]}' on a posted ledger line",
        )


def _check_ledger_line_delete(mapper, connection, target):
    if _line_parent_posted(connection, target):
        raise _blocked("LedgerLine", target.id, "DELETE", "posted ledger lines cannot be deleted")


def _reconciliation_frozen(connection, reconciliation_id) -> bool:
    from ledger_kernel.models.bank import Reconciliation, ReconciliationStatus

    if reconciliation_id is None:
        return False
    status = connection.execute(
        select(Reconciliation.status).where(Reconciliation.id == reconciliation_id)
    ).scalar_one_or_none()
    return status == ReconciliationStatus.COMPLETED


def _check_bank_transaction_update(mapper, connection, target):
    history = get_history(target, "reconciliation_id")
    previous = history.deleted[0] if history.deleted else target.reconciliation_id
    if _reconciliation_frozen(connection, previous) and _changed_fields(target, _METADATA_FIELDS):
        raise _blocked(
            "BankTransaction",
            target.id,
            "UPDATE",
            "transaction belongs to a completed reconciliation",
        )


def _check_bank_transaction_delete(mapper, connection, target):
    if target.is_reconciled:
        raise _blocked("BankTransaction", target.id, "DELETE", "reconciled transactions cannot be deleted")


def _check_reconciliation_update(mapper, connection, target):
    from ledger_kernel.models.bank import ReconciliationStatus

    history = get_history(target, "status")
    previous = history.deleted[0] if history.deleted else target.status
    if previous in (ReconciliationStatus.COMPLETED, ReconciliationStatus.CANCELLED):
        if _changed_fields(target, _METADATA_FIELDS):
            raise _blocked(
                "Reconciliation",
                target.id,
                "UPDATE",
                f"reconciliation is {previous.value}",
            )


def _check_reconciliation_delete(mapper, connection, target):
    raise _blocked("Reconciliation", target.id, "DELETE", "reconciliations are never deleted")


_LISTENERS = (
    ("JournalEntry", "before_update", _check_journal_entry_update),
    ("JournalEntry", "before_delete", _check_journal_entry_delete),
    ("LedgerLine", "before_update", _check_ledger_line_update),
    ("LedgerLine", "before_delete", _check_ledger_line_delete),
    ("BankTransaction", "before_update", _check_bank_transaction_update),
    ("BankTransaction", "before_delete", _check_bank_transaction_delete),
    ("Reconciliation", "before_update", _check_reconciliation_update),
    ("Reconciliation", "before_delete", _check_reconciliation_delete),
)


def _models() -> dict:
    from ledger_kernel.models.bank import BankTransaction, Reconciliation
    from ledger_kernel.models.journal import JournalEntry, LedgerLine

    return {
        "JournalEntry": JournalEntry,
        "LedgerLine": LedgerLine,
        "BankTransaction": BankTransaction,
        "Reconciliation": Reconciliation,
    }


def register_immutability_listeners() -> None:
    """Register the immutability listeners (idempotent)."""
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove the immutability listeners.

    Only for tests that must write past the guards to prove a later check.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
