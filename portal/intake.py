import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal import orders
from portal.models import IntakeForm, Order, Profile, utcnow

logger = structlog.get_logger(__name__)


def get_intake_form(db: Session, order_id: str) -> IntakeForm | None:
    return db.query(IntakeForm).filter(IntakeForm.order_id == order_id).first()


def ensure_intake_form(db: Session, order: Order) -> IntakeForm:
    """Create the intake form for ``order`` unless one already exists."""
    existing = get_intake_form(db, order.id)
    if existing is not None:
        return existing

    profile = db.get(Profile, order.user_id) if order.user_id else None
    form = IntakeForm(
        order_id=order.id,
        user_id=order.user_id,
        contact_email=profile.email if profile else None,
        contact_person=profile.full_name if profile else None,
        business_name=profile.company_name if profile else None,
        contact_phone=profile.phone if profile else None,
        current_step=1,
        is_completed=False,
    )
    db.add(form)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("intake_form_exists", order_id=order.id)
        return get_intake_form(db, order.id)
    logger.info("intake_form_created", order_id=order.id, user_id=order.user_id)
    return form


def update_intake_form(db: Session, form: IntakeForm, changes: dict) -> IntakeForm:
    completing = changes.pop("is_completed", None) is True and not form.is_completed
    for field, value in changes.items():
        setattr(form, field, value)
    if completing:
        form.is_completed = True
        form.completed_at = utcnow()
    db.commit()

    if completing:
        orders.transition(db, form.order_id, orders.OrderStatus.INTAKE_COMPLETED)
    db.refresh(form)
    return form
