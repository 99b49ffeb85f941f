"""Payment lifecycle: created -> pending -> confirmed | rejected, or cancelled.

Every transition is one database transaction that re-reads the payment,
checks who is acting, and swaps the status only if it still holds the
expected value. Share status written back by a transition commits or rolls
back together with the payment.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import db
from config import get_settings
from errors import ConflictError, ValidationError
from expenses import emit, now
from logic import is_valid_upi_id, pair_outstanding
from models import (
    ACTIVE_PAYMENT_STATUSES, ExplicitAmount, PairNet, Payment, PaymentEvent, PaymentMethod,
    PaymentStatus, Resolution, ShareKey, ShareRef, ShareStatus,
)
from money import format_money, to_display

logger = logging.getLogger(__name__)

CASH_REFERENCE = "cash_paid"
DEFAULT_REJECTION = "Payment verification failed"


def _resolve(conn, payer: int, payee, resolution: Resolution) -> Tuple[int, List[ShareKey], str, str]:
    if isinstance(resolution, ShareRef):
        entry = db.get_expense(conn, resolution.expense_id)
        if entry.payer != payee.id:
            raise ValidationError("Payee mismatch: this payee didn't pay this expense")
        share = entry.share_of(payer)
        if share is None or share.status is ShareStatus.PAID:
            raise ValidationError("No unpaid share found for this expense")
        return share.final_share, [ShareKey(entry.id, payer)], "splitwise", \
            f"{entry.description} - Expense Settlement"
    if isinstance(resolution, PairNet):
        net, keys = pair_outstanding(db.get_expenses_between(conn, payer, payee.id), payer, payee.id)
        if net <= 0:
            raise ValidationError("No outstanding debt to this payee")
        return net, keys, "friendwise", f"Clear All Pending Debts with {payee.name}"
    if isinstance(resolution, ExplicitAmount):
        amount = resolution.amount
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Payment amount must be a whole number of minor units")
        return amount, [], "friendwise", f"Payment to {payee.name}"
    raise ValidationError(f"Unknown payment resolution: {resolution!r}")


def upi_intent(upi_id: str, payee_name: str, amount: int, note: str, currency: str) -> str:
    return (f"upi://pay?pa={upi_id}&pn={quote(payee_name)}&am={to_display(amount)}"
            f"&cu={currency}&tn={quote(note)}")


def create_payment(payer: int, payee: int, resolution: Resolution, method, *,
                   db_file: Optional[str] = None, notify: Optional[Callable] = None) -> Payment:
    if payer == payee:
        raise ValidationError("You cannot pay yourself")
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError('Method must be "upi" or "cash"') from None
    settings = get_settings()

    with db.transaction(db_file) as conn:
        payer_p = db.get_participant(conn, payer)
        payee_p = db.get_participant(conn, payee)
        if method is PaymentMethod.UPI and not is_valid_upi_id(payee_p.upi_id, settings.upi_min_length):
            raise ValidationError(f"To make the payment, {payee_p.name} must first set up their UPI ID")

        amount, keys, source, title = _resolve(conn, payer, payee_p, resolution)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        linked = db.active_links(conn, keys)
        if linked:
            raise ConflictError(f"This expense is already linked to another active payment ({linked[0]})")

        note = f"{settings.app_name} - {title}"
        stamp = now()
        payment = Payment(id=None, payer=payer, payee=payee, amount=amount, method=method,
                          status=PaymentStatus.CREATED, source=source, created_at=stamp, updated_at=stamp,
                          shares=keys, note=note)
        if method is PaymentMethod.UPI:
            payment.upi_intent = upi_intent(payee_p.upi_id.strip(), payee_p.name, amount, note, settings.currency)
        payment.id = db.insert_payment(conn, payment)

    logger.info("Payment %s created: %s -> %s, %s via %s (%d shares)",
                payment.id, payer, payee, amount, method.value, len(keys))
    emit(notify, [PaymentEvent("payment_initiated", payee, payer,
                               f"{payer_p.name} initiated a payment of {format_money(amount)}",
                               payment_id=payment.id, amount=amount)])
    return payment


def submit_proof(payment_id: int, payer: int, transaction_ref: Optional[str] = None, *,
                 db_file: Optional[str] = None, notify: Optional[Callable] = None) -> Payment:
    ref = transaction_ref.strip() if transaction_ref else None
    with db.transaction(db_file) as conn:
        payment = db.get_payment(conn, payment_id)
        if payment.payer != payer:
            raise ConflictError("You are not authorized to update this payment")
        if payment.status.is_terminal:
            raise ConflictError(f"Cannot submit proof for payment with status: {payment.status.value}")
        if payment.method is PaymentMethod.UPI and not ref:
            raise ValidationError("Transaction ID is required for UPI payments")
        ref = ref or CASH_REFERENCE
        db.swap_payment_status(conn, payment_id, ACTIVE_PAYMENT_STATUSES, PaymentStatus.PENDING, now(),
                               transaction_ref=ref)
        for key in payment.shares:
            db.advance_share(conn, key, [ShareStatus.PENDING], ShareStatus.ACCEPTED)
            if db.get_share_status(conn, key) is ShareStatus.ACCEPTED:
                db.mark_link_accepted(conn, payment_id, key)
        payment = db.get_payment(conn, payment_id)
        payer_name = db.get_participant(conn, payer).name

    logger.info("Payment %s proof submitted (%s)", payment_id, ref)
    emit(notify, [PaymentEvent("payment_submitted", payment.payee, payer,
                               f"{payer_name} has completed the payment of {format_money(payment.amount)}. "
                               "Please verify.", payment_id=payment_id, amount=payment.amount)])
    return payment


def confirm_payment(payment_id: int, payee: int, verified: bool, reason: Optional[str] = None, *,
                    db_file: Optional[str] = None, notify: Optional[Callable] = None) -> Payment:
    with db.transaction(db_file) as conn:
        payment = db.get_payment(conn, payment_id)
        if payment.payee != payee:
            raise ConflictError("Only the payee can confirm this payment")
        stamp = now()
        if verified:
            db.swap_payment_status(conn, payment_id, [PaymentStatus.PENDING], PaymentStatus.CONFIRMED, stamp,
                                   confirmed_at=stamp)
            paid = sum(db.advance_share(conn, key, [ShareStatus.PENDING, ShareStatus.ACCEPTED], ShareStatus.PAID)
                       for key in payment.shares)
        else:
            reason = (reason or "").strip() or DEFAULT_REJECTION
            db.swap_payment_status(conn, payment_id, [PaymentStatus.PENDING], PaymentStatus.REJECTED, stamp,
                                   rejection_reason=reason)
            paid = 0
        payment = db.get_payment(conn, payment_id)
        payee_name = db.get_participant(conn, payee).name

    if verified:
        logger.info("Payment %s confirmed, %d shares marked paid", payment_id, paid)
        event = PaymentEvent("payment_confirmed", payment.payer, payee,
                             f"{payee_name} confirmed your payment of {format_money(payment.amount)}",
                             payment_id=payment_id, amount=payment.amount)
    else:
        logger.info("Payment %s rejected: %s", payment_id, reason)
        event = PaymentEvent("payment_rejected", payment.payer, payee,
                             f"{payee_name} rejected your payment: {reason}", payment_id=payment_id,
                             amount=payment.amount)
    emit(notify, [event])
    return payment


def cancel_payment(payment_id: int, payer: int, *, db_file: Optional[str] = None,
                   notify: Optional[Callable] = None) -> Payment:
    with db.transaction(db_file) as conn:
        payment = db.get_payment(conn, payment_id)
        if payment.payer != payer:
            raise ConflictError("Only the payer can cancel this payment")
        if payment.status.is_terminal:
            raise ConflictError(f"Cannot cancel payment with status: {payment.status.value}")
        db.swap_payment_status(conn, payment_id, ACTIVE_PAYMENT_STATUSES, PaymentStatus.CANCELLED, now())
        reverted = sum(db.advance_share(conn, key, [ShareStatus.ACCEPTED], ShareStatus.PENDING)
                       for key in db.accepted_links(conn, payment_id))
        payment = db.get_payment(conn, payment_id)

    logger.info("Payment %s cancelled, %d shares back to pending", payment_id, reverted)
    emit(notify, [PaymentEvent("payment_cancelled", payment.payee, payer, "A payment was cancelled",
                               payment_id=payment_id, amount=payment.amount)])
    return payment


# --- Read side ---

def get_payment(payment_id: int, viewer: int, db_file: Optional[str] = None) -> Payment:
    with db.reading(db_file) as conn:
        payment = db.get_payment(conn, payment_id)
    if viewer not in (payment.payer, payment.payee):
        raise ConflictError("Unauthorized")
    return payment


def pending_to_pay(payer: int, db_file: Optional[str] = None) -> List[Payment]:
    with db.reading(db_file) as conn:
        return db.find_payments(conn, payer=payer, statuses=ACTIVE_PAYMENT_STATUSES)


def pending_to_confirm(payee: int, db_file: Optional[str] = None) -> List[Payment]:
    with db.reading(db_file) as conn:
        return db.find_payments(conn, payee=payee, statuses=[PaymentStatus.PENDING])


def payment_history(participant: int, status=None, limit: int = 20, skip: int = 0,
                    db_file: Optional[str] = None) -> Tuple[int, List[Payment]]:
    statuses = [PaymentStatus(status)] if status else None
    with db.reading(db_file) as conn:
        total = db.count_payments(conn, party=participant, statuses=statuses)
        return total, db.find_payments(conn, party=participant, statuses=statuses, limit=limit, skip=skip)


def payment_stats(participant: int, db_file: Optional[str] = None) -> Dict[str, Dict[str, int]]:
    with db.reading(db_file) as conn:
        to_pay = db.sum_payments(conn, payer=participant, statuses=ACTIVE_PAYMENT_STATUSES)
        to_confirm = db.sum_payments(conn, payee=participant, statuses=[PaymentStatus.PENDING])
        confirmed = db.sum_payments(conn, party=participant, statuses=[PaymentStatus.CONFIRMED])
    return {name: {"total": total, "count": count}
            for name, (total, count) in (("to_pay", to_pay), ("to_confirm", to_confirm), ("confirmed", confirmed))}
