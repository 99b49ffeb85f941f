import datetime
import logging
from typing import Callable, List, Optional, Sequence

import db
from config import get_settings
from errors import ConflictError, ValidationError
from logic import split
from models import (
    BalanceScope, Category, ExpenseType, LedgerEntry, PaymentEvent, Share, ShareStatus,
    SplitStrategy,
)

logger = logging.getLogger(__name__)


def now() -> str:
    return datetime.datetime.now().isoformat()


def emit(notify: Optional[Callable], events: Sequence[PaymentEvent]):
    """Hand events to the caller's hook once the change is committed."""
    if notify is None:
        return
    for event in events:
        try:
            notify(event)
        except Exception:
            logger.exception("Event hook failed for %s to participant %s", event.type, event.recipient)


def register_participant(name: str, upi_id: Optional[str] = None, db_file: Optional[str] = None) -> int:
    if not name or not name.strip():
        raise ValidationError("Participant name is required")
    with db.transaction(db_file) as conn:
        return db.add_participant(conn, name.strip(), upi_id.strip() if upi_id else None)


def create_group(name: str, description: str = "", db_file: Optional[str] = None) -> int:
    if not name or not name.strip():
        raise ValidationError("Group name is required")
    with db.transaction(db_file) as conn:
        return db.create_group(conn, name.strip(), description.strip(), now())


def record_expense(payer: int, amount: int, strategy, participants: Sequence, *,
                   description: str = "", group_id: Optional[int] = None, category=Category.OTHER,
                   notes: str = "", currency: Optional[str] = None, db_file: Optional[str] = None,
                   notify: Optional[Callable] = None) -> LedgerEntry:
    """Split ``amount`` (minor units) and store it as one ledger entry.

    With no participants, or only the payer, the entry is a personal expense:
    the payer holds the whole amount and it is already paid.
    """
    try:
        strategy = SplitStrategy(strategy)
        category = Category(category)
    except ValueError as e:
        raise ValidationError(str(e)) from None
    personal = strategy is SplitStrategy.NONE or len(participants) <= 1

    if personal:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        shares = [Share(payer, amount, status=ShareStatus.PAID)]
        strategy = SplitStrategy.NONE
    else:
        shares = split(amount, strategy, participants)
        # nothing is owed on the payer's own share or on a zero share
        for s in shares:
            if s.participant == payer or s.final_share == 0:
                s.status = ShareStatus.PAID

    if group_id is not None:
        expense_type = ExpenseType.GROUP
    elif personal:
        expense_type = ExpenseType.PERSONAL
    else:
        expense_type = ExpenseType.INSTANT

    entry = LedgerEntry(id=None, payer=payer, total=amount, strategy=strategy, shares=shares, created_at=now(),
                        description=description.strip() or "Expense", group_id=group_id, category=category,
                        notes=notes, currency=currency or get_settings().currency, expense_type=expense_type)
    with db.transaction(db_file) as conn:
        for pid in {payer, *(s.participant for s in shares)}:
            db.get_participant(conn, pid)
        entry.id = db.insert_expense(conn, entry)
        payer_name = db.get_participant(conn, payer).name
    logger.info("Expense %s recorded: %s split %s ways by %s", entry.id, entry.total, len(shares), strategy.value)

    emit(notify, [PaymentEvent("expense_added", s.participant, payer,
                               f"{payer_name} added an expense: {entry.description}", expense_id=entry.id,
                               amount=s.final_share)
                  for s in shares if s.participant != payer])
    return entry


def delete_expense(expense_id: int, actor: int, db_file: Optional[str] = None):
    with db.transaction(db_file) as conn:
        entry = db.get_expense(conn, expense_id)
        if entry.payer != actor:
            raise ConflictError("Only the payer can delete this expense")
        if db.expense_has_active_payment(conn, expense_id):
            raise ConflictError(f"Expense {expense_id} is linked to a payment in progress")
        db.delete_expense(conn, expense_id)
    logger.info("Expense %s deleted by %s", expense_id, actor)


def send_reminder(expense_id: int, actor: int, debtor: int, *, db_file: Optional[str] = None,
                  notify: Optional[Callable] = None) -> PaymentEvent:
    """Nudge ``debtor`` about their unpaid share; only the payer may send it."""
    with db.reading(db_file) as conn:
        entry = db.get_expense(conn, expense_id)
        if entry.payer != actor:
            raise ConflictError("You can only send reminders for expenses you paid")
        share = entry.share_of(debtor)
        if debtor == actor or share is None or share.status is ShareStatus.PAID:
            raise ValidationError(f"Participant {debtor} has nothing outstanding on expense {expense_id}")
        payer_name = db.get_participant(conn, actor).name

    event = PaymentEvent("payment_reminder", debtor, actor, f"{payer_name} sent you a reminder for {entry.description}",
                         expense_id=expense_id, amount=share.final_share)
    logger.info("Reminder for expense %s sent by %s to %s", expense_id, actor, debtor)
    emit(notify, [event])
    return event


def get_expense(expense_id: int, db_file: Optional[str] = None) -> LedgerEntry:
    with db.reading(db_file) as conn:
        return db.get_expense(conn, expense_id)


def list_expenses(scope: Optional[BalanceScope] = None, db_file: Optional[str] = None) -> List[LedgerEntry]:
    scope = scope or BalanceScope()
    with db.reading(db_file) as conn:
        if scope.pair is not None:
            entries = db.get_expenses_between(conn, *scope.pair)
            if scope.group_id is not None:
                entries = [e for e in entries if e.group_id == scope.group_id]
            return entries
        return db.get_expenses(conn, group_id=scope.group_id, participant=scope.participant)


def pending_shares(participant: int, db_file: Optional[str] = None) -> List[LedgerEntry]:
    """Entries paid by someone else where ``participant`` still owes a share."""
    entries = list_expenses(BalanceScope(participant=participant), db_file)
    out = []
    for e in entries:
        share = e.share_of(participant)
        if e.payer != participant and share is not None and share.status is not ShareStatus.PAID:
            out.append(e)
    return out
