"""Order status state machine and the conditional writes that move orders through it."""
import enum

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from portal.errors import InvalidTransition, NotFound
from portal.models import Order, utcnow

logger = structlog.get_logger(__name__)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAYMENT_PROCESSING = "payment_processing"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    INTAKE_PENDING = "intake_pending"
    INTAKE_COMPLETED = "intake_completed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


S = OrderStatus

TRANSITIONS = {
    S.PENDING: {S.PAYMENT_PROCESSING, S.PAYMENT_FAILED, S.CANCELLED},
    S.PAYMENT_PROCESSING: {S.PAYMENT_COMPLETED, S.PAYMENT_FAILED, S.CANCELLED},
    S.PAYMENT_FAILED: {S.PAYMENT_COMPLETED, S.CANCELLED},
    S.PAYMENT_COMPLETED: {S.INTAKE_PENDING, S.INTAKE_COMPLETED, S.CANCELLED},
    S.INTAKE_PENDING: {S.INTAKE_COMPLETED, S.CANCELLED},
    S.INTAKE_COMPLETED: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

PAID_STATUSES = frozenset({
    S.PAYMENT_COMPLETED, S.INTAKE_PENDING, S.INTAKE_COMPLETED, S.IN_PROGRESS, S.COMPLETED,
})

# statuses an admin may set by hand; payment completion only comes from PayPal
ADMIN_SETTABLE = frozenset({
    S.INTAKE_PENDING, S.INTAKE_COMPLETED, S.IN_PROGRESS, S.COMPLETED, S.CANCELLED,
})

AMOUNT_MISMATCH = "amount_mismatch"


def sources_for(target: OrderStatus) -> list[str]:
    return [src.value for src, targets in TRANSITIONS.items() if target in targets]


def can_transition(current: str, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(OrderStatus(current), set())


def is_paid(order: Order) -> bool:
    return OrderStatus(order.status) in PAID_STATUSES


def get_order(db: Session, order_id: str, user_id: str | None = None) -> Order | None:
    """Load a live order; with ``user_id`` only that user's orders are visible."""
    query = db.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    return query.first()


def get_order_by_paypal_id(db: Session, paypal_order_id: str) -> Order | None:
    return (
        db.query(Order)
        .filter(Order.paypal_order_id == paypal_order_id, Order.deleted_at.is_(None))
        .first()
    )


def _apply(db: Session, order_id: str, *conditions, **values) -> bool:
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.deleted_at.is_(None), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def transition(db: Session, order_id: str, target: OrderStatus, **values) -> bool:
    """Move an order to ``target`` from any status allowed to reach it."""
    won = _apply(db, order_id, Order.status.in_(sources_for(target)), status=target.value, **values)
    logger.info("order_transition", order_id=order_id, target=target.value, applied=won)
    return won


def mark_payment_processing(db: Session, order_id: str, paypal_order_id: str) -> bool:
    return transition(db, order_id, S.PAYMENT_PROCESSING, paypal_order_id=paypal_order_id)


def mark_payment_failed(db: Session, order_id: str, reason: str,
                        payment_status: str | None = None) -> bool:
    won = _apply(
        db,
        order_id,
        Order.status.in_([S.PENDING.value, S.PAYMENT_PROCESSING.value]),
        status=S.PAYMENT_FAILED.value,
        failure_reason=reason,
        payment_status=payment_status,
    )
    logger.warning("order_payment_failed", order_id=order_id, reason=reason, applied=won)
    return won


def mark_payment_completed(db: Session, order_id: str, capture_id: str,
                           allow_failed: bool = False) -> bool:
    """
    Record a completed capture. Exactly one caller per order gets ``True``.

    ``allow_failed`` lets the webhook complete an order whose earlier capture
    attempt was reported as not completed (e.g. a PENDING capture that cleared
    later). Orders failed for an amount mismatch are never completed.
    """
    if not capture_id:
        logger.error("order_payment_completed_without_capture", order_id=order_id)
        return False
    eligible = Order.status.in_([S.PENDING.value, S.PAYMENT_PROCESSING.value])
    if allow_failed:
        eligible = or_(
            eligible,
            and_(
                Order.status == S.PAYMENT_FAILED.value,
                or_(Order.failure_reason.is_(None), Order.failure_reason != AMOUNT_MISMATCH),
            ),
        )
    won = _apply(
        db,
        order_id,
        eligible,
        Order.paypal_capture_id.is_(None),
        status=S.PAYMENT_COMPLETED.value,
        payment_status="COMPLETED",
        paypal_capture_id=capture_id,
        payment_completed_at=utcnow(),
        failure_reason=None,
    )
    logger.info("order_payment_completed", order_id=order_id, capture_id=capture_id, applied=won)
    return won


def attach_user(db: Session, order_id: str, user_id: str) -> bool:
    return _apply(db, order_id, Order.user_id.is_(None), user_id=user_id)


def override_status(db: Session, order_id: str, target: OrderStatus) -> Order:
    """Admin status change, still bound by the state machine."""
    order = get_order(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    current = order.status
    if target not in ADMIN_SETTABLE or not can_transition(current, target):
        raise InvalidTransition(f"Cannot move order from {current} to {target.value}")
    if not _apply(db, order_id, Order.status == current, status=target.value):
        raise InvalidTransition("Order was modified concurrently, please retry")
    logger.info("order_status_overridden", order_id=order_id, old=current, new=target.value)
    db.refresh(order)
    return order


def soft_delete(db: Session, order_id: str) -> bool:
    return _apply(db, order_id, deleted_at=utcnow())
