import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from portal.database import Base


def _uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(320), unique=True, index=True, nullable=False)
    is_guest = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    email = Column(String(320), nullable=False)
    full_name = Column(String(255))
    company_name = Column(String(255))
    phone = Column(String(64))
    role = Column(String(16), nullable=False, default="client")    # client | admin
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    category = Column(String(32), nullable=False)
    price_usd = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), index=True)                   # NULL until a guest is resolved
    product_id = Column(String(100), nullable=False)           # product slug
    amount_usd = Column(Numeric(10, 2), nullable=False)
    status = Column(String(32), nullable=False, default="pending", index=True)
    failure_reason = Column(String(64))
    payment_status = Column(String(32))                        # raw PayPal status
    paypal_order_id = Column(String(64), unique=True, index=True)
    paypal_capture_id = Column(String(64), unique=True)
    order_metadata = Column("metadata", JSON, nullable=False, default=dict)
    payment_completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True))

    @property
    def addon_slugs(self):
        return [addon["slug"] for addon in (self.order_metadata or {}).get("addons", [])]

    @property
    def guest_email(self):
        return (self.order_metadata or {}).get("guest_email")


class IntakeForm(Base):
    __tablename__ = "intake_forms"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), unique=True, nullable=False)
    user_id = Column(String(36), nullable=False, index=True)

    business_name = Column(String(255))
    industry = Column(String(255))
    website_url = Column(String(500))
    contact_person = Column(String(255))
    contact_email = Column(String(320))
    contact_phone = Column(String(64))

    project_goals = Column(Text)
    project_description = Column(Text)
    key_requirements = Column(JSON, nullable=False, default=list)
    competitors = Column(JSON, nullable=False, default=list)

    target_audience = Column(Text)
    geographic_focus = Column(String(255))
    age_range = Column(String(64))
    customer_pain_points = Column(Text)

    desired_start_date = Column(String(32))
    deadline = Column(String(32))
    budget_expectations = Column(String(255))
    additional_notes = Column(Text)

    is_completed = Column(Boolean, nullable=False, default=False)
    current_step = Column(Integer, nullable=False, default=1)
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
