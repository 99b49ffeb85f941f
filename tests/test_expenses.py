import pytest

import db
import expenses
import payments
from errors import ConflictError, NotFoundError, ValidationError
from logic import net_balances
from models import (
    BalanceScope, Category, ExpenseType, PaymentMethod, ShareKey, ShareRef, ShareStatus, SplitStrategy,
)


def test_record_equal_expense(db_file, people, event_log):
    a, b, c = people["alice"], people["bob"], people["carol"]
    entry = expenses.record_expense(a, 1000, SplitStrategy.EQUAL, [a, b, c], description="Dinner",
                                    category=Category.FOOD, db_file=db_file, notify=event_log.notify)
    stored = expenses.get_expense(entry.id, db_file=db_file)
    assert [s.final_share for s in stored.shares] == [334, 333, 333]
    assert [s.status for s in stored.shares] == [ShareStatus.PAID, ShareStatus.PENDING, ShareStatus.PENDING]
    assert stored.expense_type is ExpenseType.INSTANT
    assert stored.category is Category.FOOD
    assert stored.currency == "INR"
    assert sum(s.final_share for s in stored.shares) == stored.total
    assert event_log.types == ["expense_added", "expense_added"]
    assert {e.recipient for e in event_log} == {b, c}


def test_payer_outside_split(db_file, people):
    a, b, c = people["alice"], people["bob"], people["carol"]
    entry = expenses.record_expense(a, 900, "custom", [{"user": b, "amount": "4.00"}, {"user": c, "amount": "5.00"}],
                                    db_file=db_file)
    stored = expenses.get_expense(entry.id, db_file=db_file)
    assert [(s.participant, s.final_share, s.declared_amount) for s in stored.shares] == [(b, 400, 400), (c, 500, 500)]
    assert net_balances([stored]) == {a: 900, b: -400, c: -500}


@pytest.mark.parametrize("participants", [[], ["self"], ["bob"]])
def test_zero_or_one_participant_is_personal(db_file, people, participants):
    a = people["alice"]
    ids = [a if p == "self" else people[p] for p in participants]
    entry = expenses.record_expense(a, 500, SplitStrategy.EQUAL, ids, db_file=db_file)
    stored = expenses.get_expense(entry.id, db_file=db_file)
    assert stored.strategy is SplitStrategy.NONE
    assert stored.expense_type is ExpenseType.PERSONAL
    assert [(s.participant, s.final_share, s.status) for s in stored.shares] == [(a, 500, ShareStatus.PAID)]
    assert net_balances([stored]) == {a: 0}


def test_group_expense(db_file, people):
    a, b = people["alice"], people["bob"]
    gid = expenses.create_group("Goa trip", db_file=db_file)
    expenses.record_expense(a, 200, SplitStrategy.EQUAL, [a, b], group_id=gid, db_file=db_file)
    expenses.record_expense(b, 100, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    in_group = expenses.list_expenses(BalanceScope(group_id=gid), db_file=db_file)
    assert len(in_group) == 1
    assert in_group[0].expense_type is ExpenseType.GROUP
    assert len(expenses.list_expenses(db_file=db_file)) == 2


def test_invalid_split_persists_nothing(db_file, people):
    a, b = people["alice"], people["bob"]
    with pytest.raises(ValidationError):
        expenses.record_expense(a, 1000, SplitStrategy.PERCENTAGE,
                                [{"user": a, "percentage": 50}, {"user": b, "percentage": 49.99}], db_file=db_file)
    assert expenses.list_expenses(db_file=db_file) == []


def test_unknown_participant_rolls_back(db_file, people):
    a = people["alice"]
    with pytest.raises(NotFoundError):
        expenses.record_expense(a, 1000, SplitStrategy.EQUAL, [a, 999], db_file=db_file)
    assert expenses.list_expenses(db_file=db_file) == []


def test_non_positive_personal_amount(db_file, people):
    with pytest.raises(ValidationError):
        expenses.record_expense(people["alice"], 0, SplitStrategy.NONE, [], db_file=db_file)


def test_pending_shares(db_file, people):
    a, b, c = people["alice"], people["bob"], people["carol"]
    owed = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b, c], db_file=db_file)
    expenses.record_expense(b, 300, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    assert [e.id for e in expenses.pending_shares(c, db_file=db_file)] == [owed.id]
    assert len(expenses.pending_shares(a, db_file=db_file)) == 1


def test_delete_expense_only_by_payer(db_file, people):
    a, b = people["alice"], people["bob"]
    entry = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    with pytest.raises(ConflictError):
        expenses.delete_expense(entry.id, b, db_file=db_file)
    expenses.delete_expense(entry.id, a, db_file=db_file)
    with pytest.raises(NotFoundError):
        expenses.get_expense(entry.id, db_file=db_file)
    with db.reading(db_file) as conn:
        assert conn.execute("SELECT COUNT(*) FROM shares").fetchone()[0] == 0


def test_delete_blocked_while_payment_in_progress(db_file, people):
    a, b = people["alice"], people["bob"]
    entry = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    payment = payments.create_payment(b, a, ShareRef(entry.id), PaymentMethod.CASH, db_file=db_file)
    with pytest.raises(ConflictError):
        expenses.delete_expense(entry.id, a, db_file=db_file)
    payments.cancel_payment(payment.id, b, db_file=db_file)
    expenses.delete_expense(entry.id, a, db_file=db_file)


def test_register_participant_requires_name(db_file):
    with pytest.raises(ValidationError):
        expenses.register_participant("  ", db_file=db_file)


def test_zero_share_is_settled_at_record_time(db_file, people):
    a, b = people["alice"], people["bob"]
    entry = expenses.record_expense(a, 1, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    stored = expenses.get_expense(entry.id, db_file=db_file)
    assert [(s.final_share, s.status) for s in stored.shares] == [(1, ShareStatus.PAID), (0, ShareStatus.PAID)]
    assert expenses.pending_shares(b, db_file=db_file) == []
    assert net_balances([stored], outstanding_only=True) == {a: 0, b: 0}


def test_zero_share_owed_by_non_payer_is_settled(db_file, people):
    a, b, c = people["alice"], people["bob"], people["carol"]
    entry = expenses.record_expense(a, 1, SplitStrategy.EQUAL, [b, c], db_file=db_file)
    stored = expenses.get_expense(entry.id, db_file=db_file)
    assert [(s.participant, s.final_share, s.status) for s in stored.shares] == \
        [(b, 1, ShareStatus.PENDING), (c, 0, ShareStatus.PAID)]
    assert [e.id for e in expenses.pending_shares(b, db_file=db_file)] == [entry.id]
    assert expenses.pending_shares(c, db_file=db_file) == []


def test_unknown_strategy_is_a_validation_error(db_file, people):
    a, b = people["alice"], people["bob"]
    with pytest.raises(ValidationError):
        expenses.record_expense(a, 100, "shares", [a, b], db_file=db_file)
    with pytest.raises(ValidationError):
        expenses.record_expense(a, 100, SplitStrategy.EQUAL, [a, b], category="Groceries", db_file=db_file)


def test_payer_sends_reminder(db_file, people, event_log):
    a, b = people["alice"], people["bob"]
    entry = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b], description="Cab", db_file=db_file)
    event = expenses.send_reminder(entry.id, a, b, db_file=db_file, notify=event_log.notify)
    assert event_log == [event]
    assert event.type == "payment_reminder"
    assert (event.recipient, event.sender, event.expense_id, event.amount) == (b, a, entry.id, 150)
    assert event.message == "Alice sent you a reminder for Cab"


def test_only_payer_can_send_reminder(db_file, people, event_log):
    a, b, c = people["alice"], people["bob"], people["carol"]
    entry = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b, c], db_file=db_file)
    with pytest.raises(ConflictError):
        expenses.send_reminder(entry.id, b, c, db_file=db_file, notify=event_log.notify)
    with pytest.raises(NotFoundError):
        expenses.send_reminder(entry.id + 1, a, b, db_file=db_file, notify=event_log.notify)
    assert event_log == []


def test_no_reminder_for_settled_share(db_file, people, event_log):
    a, b = people["alice"], people["bob"]
    entry = expenses.record_expense(a, 300, SplitStrategy.EQUAL, [a, b], db_file=db_file)
    with db.transaction(db_file) as conn:
        db.advance_share(conn, ShareKey(entry.id, b), [ShareStatus.PENDING], ShareStatus.PAID)
    for debtor in (a, b, people["carol"]):
        with pytest.raises(ValidationError):
            expenses.send_reminder(entry.id, a, debtor, db_file=db_file, notify=event_log.notify)
    assert event_log == []
