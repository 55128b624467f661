"""Bill lifecycle: status state machine and payment bookkeeping.

States::

    PENDING --payment, balance left--> PAID --settled + processed--> COMPLETED
    PENDING <--due date passed / moved--> OVERDUE
    OVERDUE --payment, balance left--> PAID
    OVERDUE --payment clears balance--> COMPLETED

Every change rewrites ``pending_amount`` so that
``amount == received_amount + pending_amount`` holds when it is committed.
"""

import logging
from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.errors import (
    BillNotFoundError,
    BusinessRuleViolation,
    InvalidPaymentError,
    InvalidStatusTransitionError,
)
from app.models.bill import Bill
from app.models.enums import BillStatus
from app.schemas.bill import OverdueRefreshResult, PaymentCreate
from app.services.billing_config import BillingConfig
from app.services.usage import round_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

ALLOWED_TRANSITIONS: dict[BillStatus, frozenset[BillStatus]] = {
    BillStatus.PENDING: frozenset({BillStatus.OVERDUE, BillStatus.PAID, BillStatus.COMPLETED}),
    BillStatus.OVERDUE: frozenset({BillStatus.PENDING, BillStatus.PAID, BillStatus.COMPLETED}),
    BillStatus.PAID: frozenset({BillStatus.COMPLETED}),
    BillStatus.COMPLETED: frozenset(),
}


def can_transition(current: BillStatus | str, target: BillStatus | str) -> bool:
    """Check whether the state machine allows moving from current to target."""
    current, target = BillStatus(current), BillStatus(target)
    return current == target or target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: BillStatus | str, target: BillStatus | str) -> None:
    """Raise InvalidStatusTransitionError unless the transition is allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(BillStatus(current).value, BillStatus(target).value)


def set_status(bill: Bill, target: BillStatus) -> None:
    """Move a bill to a status, stamping completed_at on completion."""
    current = BillStatus(bill.status)
    if current != target:
        logger.info("Bill %s: %s -> %s", bill.bill_number, current.value, target.value)
    bill.status = target
    if target == BillStatus.COMPLETED and bill.completed_at is None:
        bill.completed_at = datetime.now(UTC)


def total_paid(bill: Bill) -> Decimal:
    """Everything received for the bill, including any excess."""
    return Decimal(bill.received_amount or ZERO) + Decimal(bill.overpaid_amount or ZERO)


def apply_amount(bill: Bill, new_amount: Decimal) -> Decimal:
    """Set a new total and rebalance received/pending/overpaid around it.

    Money already paid is kept: whatever exceeds the new total moves to
    ``overpaid_amount`` instead of driving ``pending_amount`` negative.
    Returns the resulting overpaid amount.
    """
    new_amount = round_money(new_amount)
    paid = total_paid(bill)
    received = min(paid, new_amount)

    bill.amount = new_amount
    bill.received_amount = round_money(received)
    bill.pending_amount = round_money(new_amount - received)
    bill.overpaid_amount = round_money(paid - received)
    return bill.overpaid_amount


def expected_status(bill: Bill, config: BillingConfig, today: date | None = None) -> BillStatus:
    """Status the bill's money fields imply."""
    today = today or date.today()
    current = BillStatus(bill.status)
    pending = Decimal(bill.pending_amount)
    received = Decimal(bill.received_amount)

    if pending <= config.amount_epsilon:
        if received <= 0:
            # Zero-amount bill: nothing to pay either way
            if current in (BillStatus.PENDING, BillStatus.COMPLETED):
                return current
            return BillStatus.PENDING
        if current == BillStatus.COMPLETED or config.auto_complete_on_settle:
            return BillStatus.COMPLETED
        return BillStatus.PAID
    if received > 0:
        return BillStatus.PAID
    if bill.due_date is not None and bill.due_date < today:
        return BillStatus.OVERDUE
    return BillStatus.PENDING


def get_bill(db: Session, bill_id: int, for_update: bool = False) -> Bill:
    """Get a bill by ID."""
    query = db.query(Bill).filter(Bill.id == bill_id)
    if for_update:
        query = query.with_for_update()
    bill = query.first()
    if not bill:
        raise BillNotFoundError(bill_id)
    return bill


def record_payment(
    db: Session,
    bill_id: int,
    payment: PaymentCreate,
    config: BillingConfig,
) -> Bill:
    """Record a payment and move the bill through the state machine."""
    bill = get_bill(db, bill_id, for_update=True)
    delta = Decimal(payment.received_amount_delta)

    if delta <= 0:
        raise InvalidPaymentError(f"Payment amount must be positive, got {delta}")
    if BillStatus(bill.status) == BillStatus.COMPLETED:
        raise InvalidStatusTransitionError(BillStatus.COMPLETED.value, BillStatus.PAID.value)

    pending = Decimal(bill.pending_amount)
    allow_overpayment = payment.allow_overpayment or config.allow_overpayment
    if delta > pending and not allow_overpayment:
        raise InvalidPaymentError(
            f"Payment {delta} exceeds the pending amount {pending} of bill {bill.bill_number}"
        )

    applied = min(delta, pending)
    excess = delta - applied
    received = round_money(Decimal(bill.received_amount) + applied)
    new_pending = round_money(Decimal(bill.amount) - received)

    if new_pending > 0:
        target = BillStatus.PAID
    elif config.auto_complete_on_settle:
        target = BillStatus.COMPLETED
    else:
        target = BillStatus.PAID
    ensure_transition(bill.status, target)

    bill.received_amount = received
    bill.pending_amount = new_pending
    bill.overpaid_amount = round_money(Decimal(bill.overpaid_amount) + excess)
    bill.paid_date = payment.paid_date or date.today()
    if payment.payment_method:
        bill.payment_method = payment.payment_method
    set_status(bill, target)

    db.commit()
    db.refresh(bill)

    logger.info(
        "Recorded payment of %s on bill %s (received=%s, pending=%s, overpaid=%s)",
        delta,
        bill.bill_number,
        bill.received_amount,
        bill.pending_amount,
        bill.overpaid_amount,
    )
    return bill


def complete_bill(db: Session, bill_id: int, config: BillingConfig) -> Bill:
    """Mark a settled bill as COMPLETED once downstream processing is done."""
    bill = get_bill(db, bill_id, for_update=True)
    ensure_transition(bill.status, BillStatus.COMPLETED)

    if Decimal(bill.pending_amount) > config.amount_epsilon:
        raise BusinessRuleViolation(
            f"Bill {bill.bill_number} still has {bill.pending_amount} outstanding",
            "outstanding_balance",
            suggested_fix="Record the remaining payment first",
        )

    set_status(bill, BillStatus.COMPLETED)
    db.commit()
    db.refresh(bill)
    return bill


def refresh_overdue_statuses(db: Session, today: date | None = None) -> OverdueRefreshResult:
    """Apply the time-driven PENDING <-> OVERDUE edges."""
    today = today or date.today()

    overdue = (
        db.query(Bill)
        .filter(
            Bill.status == BillStatus.PENDING,
            Bill.due_date.is_not(None),
            Bill.due_date < today,
            Bill.pending_amount > 0,
        )
        .all()
    )
    for bill in overdue:
        set_status(bill, BillStatus.OVERDUE)

    restored = (
        db.query(Bill)
        .filter(
            Bill.status == BillStatus.OVERDUE,
            Bill.due_date.is_not(None),
            Bill.due_date >= today,
        )
        .all()
    )
    for bill in restored:
        set_status(bill, BillStatus.PENDING)

    db.commit()

    message = f"{len(overdue)} bill(s) marked overdue, {len(restored)} restored to pending"
    logger.info(message)
    return OverdueRefreshResult(
        marked_overdue=len(overdue),
        restored_pending=len(restored),
        message=message,
    )
