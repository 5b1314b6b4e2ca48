"""Checkout workflow: order creation, buyer capture and the PayPal webhook."""
import json
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy.orm import Session

from portal import accounts, catalog, intake, orders
from portal.auth import AuthUser
from portal.config import get_settings
from portal.errors import (
    AmountMismatch,
    InvalidRequest,
    NotFound,
    PaymentNotCompleted,
    SignatureInvalid,
    UpstreamError,
)
from portal.models import Order, Profile
from portal.notifications import Notifier
from portal.orders import AMOUNT_MISMATCH, OrderStatus
from portal.paypal_service import PayPalClient

logger = structlog.get_logger(__name__)

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"

CAPTURABLE = {OrderStatus.PENDING.value, OrderStatus.PAYMENT_PROCESSING.value}


def amounts_match(expected: Decimal, actual: Decimal | None) -> bool:
    if actual is None:
        return False
    return abs(Decimal(expected) - Decimal(actual)) <= get_settings().amount_tolerance


def create_order(db: Session, gateway: PayPalClient, user: AuthUser | None,
                 product_slug: str, addon_slugs=(), guest_email: str | None = None) -> Order:
    """
    Pin the price of a purchase in a local ``pending`` order, then open the
    matching PayPal order and move to ``payment_processing``.

    If PayPal rejects the request the local order stays ``pending``.
    """
    product, addons, total = catalog.price_order(db, product_slug, addon_slugs)

    metadata = {
        "addons": [{"slug": a.slug, "name": a.name, "price": str(a.price)} for a in addons],
    }
    if user is not None:
        accounts.ensure_account(db, user.id, user.email)
    elif guest_email:
        metadata["guest_email"] = accounts.normalize_email(guest_email)
    else:
        raise InvalidRequest("Guest checkout requires an email address")

    order = Order(
        user_id=user.id if user else None,
        product_id=product.slug,
        amount_usd=total,
        status=OrderStatus.PENDING.value,
        order_metadata=metadata,
    )
    db.add(order)
    db.commit()
    log = logger.bind(order_id=order.id, product=product.slug)
    log.info("order_created", amount=str(total), addons=[a.slug for a in addons])

    description = " + ".join([product.name] + [a.name for a in addons])
    try:
        remote_id = gateway.create_remote_order(total, description, order.id)
    except UpstreamError:
        log.error("remote_order_failed")
        raise

    orders.mark_payment_processing(db, order.id, remote_id)
    db.refresh(order)
    return order


def capture_order(db: Session, gateway: PayPalClient, notifier: Notifier, user: AuthUser,
                  order_id: str, paypal_order_id: str) -> tuple[Order, str | None]:
    """
    Capture an approved PayPal order on behalf of the buyer who owns it.
    Returns the order and the PayPal capture id.
    """
    log = logger.bind(order_id=order_id, paypal_order_id=paypal_order_id, user_id=user.id)

    # scoped to the caller: another user's order looks exactly like a missing one
    order = orders.get_order(db, order_id, user_id=user.id)
    if order is None or order.paypal_order_id != paypal_order_id:
        log.warning("capture_order_not_found")
        raise NotFound("Order not found")
    return order, _capture(db, gateway, notifier, order, paypal_order_id, log)


def capture_guest_order(db: Session, gateway: PayPalClient, notifier: Notifier,
                        order_id: str, paypal_order_id: str) -> tuple[Order, str | None]:
    """
    Capture a guest checkout. The buyer has no session, so the pair of local
    and PayPal order ids is the only proof of ownership.

    Funds are captured and checked here, but the order stays in
    ``payment_processing`` until the webhook resolves the guest account and
    completes it.
    """
    log = logger.bind(order_id=order_id, paypal_order_id=paypal_order_id, guest=True)

    order = orders.get_order(db, order_id)
    if order is None or order.paypal_order_id != paypal_order_id or not order.guest_email:
        log.warning("capture_order_not_found")
        raise NotFound("Order not found")
    return order, _capture(db, gateway, notifier, order, paypal_order_id, log)


def _capture(db: Session, gateway: PayPalClient, notifier: Notifier, order: Order,
             paypal_order_id: str, log) -> str | None:
    if orders.is_paid(order):
        log.info("capture_already_completed", capture_id=order.paypal_capture_id)
        return order.paypal_capture_id
    if order.status not in CAPTURABLE:
        log.warning("capture_not_allowed", status=order.status)
        raise PaymentNotCompleted()

    expected = _expected_price(db, order)
    if not amounts_match(order.amount_usd, expected):
        log.error("catalog_amount_mismatch", recorded=str(order.amount_usd), expected=str(expected))
        orders.mark_payment_failed(db, order.id, AMOUNT_MISMATCH)
        raise AmountMismatch()

    result = gateway.capture_remote_order(paypal_order_id)
    if not result.completed or not result.capture_id:
        log.warning("capture_not_completed", paypal_status=result.status,
                    capture_id=result.capture_id)
        if result.completed:
            # the webhook still carries the capture id and may complete the order
            reason = "capture_missing_id"
        else:
            reason = f"capture_{result.status.lower() or 'unknown'}"
        orders.mark_payment_failed(db, order.id, reason, payment_status=result.status)
        raise PaymentNotCompleted()

    if not amounts_match(order.amount_usd, result.amount):
        # funds were captured; the order needs a manual refund
        log.error(
            "captured_amount_mismatch",
            recorded=str(order.amount_usd),
            captured=str(result.amount),
            capture_id=result.capture_id,
        )
        orders.mark_payment_failed(db, order.id, AMOUNT_MISMATCH, payment_status=result.status)
        raise AmountMismatch()

    if order.user_id is None:
        log.info("guest_capture_awaiting_webhook", capture_id=result.capture_id)
        return result.capture_id

    if not _complete(db, notifier, order, result.capture_id):
        if not orders.is_paid(order):
            log.warning("capture_lost_to_status_change", status=order.status)
            raise PaymentNotCompleted()
        log.info("capture_completed_elsewhere", capture_id=order.paypal_capture_id)
    return order.paypal_capture_id


def verify_webhook(gateway: PayPalClient, headers, raw_body: bytes) -> None:
    settings = get_settings()
    if not settings.paypal_webhook_id:
        if settings.is_production:
            logger.error("paypal_webhook_id_missing", note="refusing unsigned webhook")
            raise SignatureInvalid()
        logger.warning(
            "paypal_webhook_signature_skipped",
            note="PAYPAL_WEBHOOK_ID not set, development only",
        )
        return
    if not gateway.verify_notification_signature(settings.paypal_webhook_id, headers, raw_body):
        logger.error("paypal_webhook_signature_invalid", security_event=True)
        raise SignatureInvalid()


def handle_webhook(db: Session, gateway: PayPalClient, notifier: Notifier,
                   raw_body: bytes, headers) -> dict:
    verify_webhook(gateway, headers, raw_body)

    try:
        event = json.loads(raw_body)
    except ValueError:
        raise InvalidRequest("Invalid payload")
    if not isinstance(event, dict):
        raise InvalidRequest("Invalid payload")
    event_type = event.get("event_type")
    logger.info("paypal_webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type != CAPTURE_COMPLETED:
        return {"message": "Event received"}

    resource = event.get("resource") or {}
    capture_id = resource.get("id")
    remote_order_id = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
    raw_amount = (resource.get("amount") or {}).get("value")
    if not remote_order_id or not capture_id:
        logger.error("paypal_webhook_missing_ids", capture_id=capture_id)
        raise InvalidRequest("No order ID")

    log = logger.bind(paypal_order_id=remote_order_id, capture_id=capture_id)
    order = orders.get_order_by_paypal_id(db, remote_order_id)
    if order is None:
        log.error("webhook_order_not_found")
        raise NotFound("Order not found")
    log = log.bind(order_id=order.id)

    if orders.is_paid(order) or order.paypal_capture_id:
        log.info("webhook_already_processed")
        return {"message": "Already processed", "orderId": order.id}

    if order.user_id is None:
        _attach_guest(db, order, log)

    captured = _parse_amount(raw_amount)
    if not amounts_match(order.amount_usd, captured):
        log.error("webhook_amount_mismatch", recorded=str(order.amount_usd), captured=raw_amount)
        orders.mark_payment_failed(db, order.id, AMOUNT_MISMATCH, payment_status="COMPLETED")
        return {"message": "Amount mismatch recorded", "orderId": order.id}

    if not _complete(db, notifier, order, capture_id, allow_failed=True):
        log.info("webhook_already_processed", status=order.status)
        return {"message": "Already processed", "orderId": order.id}

    return {"message": "Webhook processed successfully", "orderId": order.id}


def _parse_amount(value) -> Decimal | None:
    try:
        return Decimal(str(value)) if value is not None else None
    except InvalidOperation:
        return None


def _expected_price(db: Session, order: Order) -> Decimal | None:
    try:
        _, _, total = catalog.price_order(db, order.product_id, order.addon_slugs)
    except NotFound:
        return None
    return total


def _attach_guest(db: Session, order: Order, log) -> None:
    if not order.guest_email:
        log.warning("webhook_order_without_owner")
        return
    try:
        user = accounts.resolve_guest(db, order.guest_email)
    except InvalidRequest:
        log.error("guest_email_invalid")
        return
    orders.attach_user(db, order.id, user.id)
    db.refresh(order)
    log.info("guest_attached", user_id=order.user_id)


def _complete(db: Session, notifier: Notifier, order: Order, capture_id: str,
              allow_failed: bool = False) -> bool:
    won = orders.mark_payment_completed(db, order.id, capture_id, allow_failed=allow_failed)
    db.refresh(order)
    if not won:
        return False

    if order.user_id:
        intake.ensure_intake_form(db, order)
    else:
        logger.warning("intake_skipped_no_owner", order_id=order.id)
    _send_confirmation(db, notifier, order)
    return True


def _send_confirmation(db: Session, notifier: Notifier, order: Order) -> None:
    try:
        profile = db.get(Profile, order.user_id) if order.user_id else None
        product = catalog.find_product(db, order.product_id)
        notifier.send_payment_confirmation(
            to=profile.email if profile else order.guest_email,
            customer_name=profile.full_name if profile else None,
            product_name=product.name if product else order.product_id,
            amount=order.amount_usd,
            order_id=order.id,
        )
    except Exception as e:
        logger.error("confirmation_email_failed", order_id=order.id, error=str(e))
