import structlog
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.errors import InvalidRequest
from portal.models import IntakeForm, Order, Profile, User

logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    try:
        return validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise InvalidRequest(f"Invalid email address: {e}") from e


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email).first()


def _create(db: Session, email: str, user_id: str | None = None, is_guest: bool = False) -> User:
    user = User(email=email, is_guest=is_guest)
    if user_id is not None:
        user.id = user_id
    db.add(user)
    db.flush()
    db.add(Profile(id=user.id, email=email, role="client"))
    db.commit()
    return user


def ensure_account(db: Session, user_id: str, email: str | None) -> Profile | None:
    """Make sure an authenticated caller has local user and profile rows."""
    profile = db.get(Profile, user_id)
    if profile is not None or not email:
        return profile
    email = email.lower()

    existing = get_user_by_email(db, email)
    if existing is not None:
        if not existing.is_guest:
            logger.error("account_email_conflict", user_id=user_id, existing_user_id=existing.id)
            return None
        return _claim_guest(db, existing, user_id)

    try:
        _create(db, email, user_id=user_id)
    except IntegrityError:
        db.rollback()
        logger.info("account_created_concurrently", user_id=user_id)
    return db.get(Profile, user_id)


def _claim_guest(db: Session, guest: User, user_id: str) -> Profile | None:
    """
    Re-key a guest account onto the id of the login that now owns its email.
    Profile details, orders and intake forms move along in one transaction.
    """
    guest_id, email = guest.id, guest.email
    old = db.get(Profile, guest_id)
    details = {
        "full_name": old.full_name if old else None,
        "company_name": old.company_name if old else None,
        "phone": old.phone if old else None,
    }
    try:
        if old is not None:
            db.delete(old)
            db.flush()
        db.delete(guest)
        db.flush()
        db.add(User(id=user_id, email=email, is_guest=False))
        db.flush()
        db.add(Profile(id=user_id, email=email, role="client", **details))
        db.execute(update(Order).where(Order.user_id == guest_id).values(user_id=user_id))
        db.execute(
            update(IntakeForm).where(IntakeForm.user_id == guest_id).values(user_id=user_id)
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("guest_claim_conflict", user_id=user_id, guest_id=guest_id)
        return db.get(Profile, user_id)
    logger.info("guest_account_claimed", user_id=user_id, guest_id=guest_id)
    return db.get(Profile, user_id)


def resolve_guest(db: Session, email: str) -> User:
    """Find the account for a guest email or create one with a minimal profile."""
    email = normalize_email(email)
    user = get_user_by_email(db, email)
    if user is not None:
        return user
    try:
        user = _create(db, email, is_guest=True)
    except IntegrityError:
        # another delivery created it first
        db.rollback()
        user = get_user_by_email(db, email)
        if user is None:
            raise
        return user
    logger.info("guest_account_created", user_id=user.id)
    return user
