from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from portal import intake, orders, reconciliation
from portal.auth import AuthUser, get_current_user, require_admin
from portal.database import get_db
from portal.errors import DeliveryFailed, NotFound
from portal.notifications import Notifier, get_notifier
from portal.paypal_service import PayPalClient, get_gateway
from portal.rate_limit import limit_requests
from portal.schemas import (
    CaptureOrderRequest,
    CaptureOrderResponse,
    ContactRequest,
    ContactResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    GuestOrderRequest,
    IntakeFormResponse,
    IntakeFormUpdate,
    OrderResponse,
    OrderStatusUpdate,
)

router = APIRouter()


@router.post("/paypal/create-order", response_model=CreateOrderResponse,
             dependencies=[Depends(limit_requests)])
def create_order(
    request: CreateOrderRequest,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PayPalClient = Depends(get_gateway),
):
    order = reconciliation.create_order(
        db, gateway, user, request.product_slug, request.addon_slugs
    )
    return CreateOrderResponse(order_id=order.id, paypal_order_id=order.paypal_order_id)


@router.post("/paypal/create-guest-order", response_model=CreateOrderResponse,
             dependencies=[Depends(limit_requests)])
def create_guest_order(
    request: GuestOrderRequest,
    db: Session = Depends(get_db),
    gateway: PayPalClient = Depends(get_gateway),
):
    order = reconciliation.create_order(
        db, gateway, None, request.product_slug, request.addon_slugs, guest_email=request.email
    )
    return CreateOrderResponse(order_id=order.id, paypal_order_id=order.paypal_order_id)


@router.post("/paypal/capture-order", response_model=CaptureOrderResponse,
             dependencies=[Depends(limit_requests)])
def capture_order(
    request: CaptureOrderRequest,
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PayPalClient = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    order, capture_id = reconciliation.capture_order(
        db, gateway, notifier, user, request.order_id, request.paypal_order_id
    )
    return CaptureOrderResponse(order_id=order.id, capture_id=capture_id)


@router.post("/paypal/capture-guest-order", response_model=CaptureOrderResponse,
             dependencies=[Depends(limit_requests)])
def capture_guest_order(
    request: CaptureOrderRequest,
    db: Session = Depends(get_db),
    gateway: PayPalClient = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    order, capture_id = reconciliation.capture_guest_order(
        db, gateway, notifier, request.order_id, request.paypal_order_id
    )
    return CaptureOrderResponse(order_id=order.id, capture_id=capture_id)


@router.post("/contact", response_model=ContactResponse, dependencies=[Depends(limit_requests)])
def contact(request: ContactRequest, notifier: Notifier = Depends(get_notifier)):
    sent = notifier.send_contact_message(
        request.first_name, request.last_name, request.email,
        request.company, request.subject, request.message,
    )
    if not sent:
        raise DeliveryFailed()
    return ContactResponse()


def _owned_intake_form(db: Session, order_id: str, user: AuthUser):
    order = orders.get_order(db, order_id, user_id=user.id)
    form = intake.get_intake_form(db, order_id) if order else None
    if form is None:
        raise NotFound("Intake form not found")
    return form


@router.get("/intake/{order_id}", response_model=IntakeFormResponse)
def get_intake(order_id: str, user: AuthUser = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return _owned_intake_form(db, order_id, user)


@router.patch("/intake/{order_id}", response_model=IntakeFormResponse)
def update_intake(order_id: str, changes: IntakeFormUpdate,
                  user: AuthUser = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    form = _owned_intake_form(db, order_id, user)
    return intake.update_intake_form(db, form, changes.model_dump(exclude_unset=True))


@router.patch("/admin/orders/{order_id}/status", response_model=OrderResponse)
def override_order_status(order_id: str, update: OrderStatusUpdate,
                          admin: AuthUser = Depends(require_admin),
                          db: Session = Depends(get_db)):
    return orders.override_status(db, order_id, update.status)


@router.delete("/admin/orders/{order_id}", status_code=204)
def delete_order(order_id: str, admin: AuthUser = Depends(require_admin),
                 db: Session = Depends(get_db)):
    if not orders.soft_delete(db, order_id):
        raise NotFound("Order not found")
    return Response(status_code=204)
