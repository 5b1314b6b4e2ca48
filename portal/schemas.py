from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from portal.orders import OrderStatus


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_slug: str = Field(..., alias="productSlug", min_length=1)
    addon_slugs: list[str] = Field(default_factory=list, alias="addonSlugs")


class GuestOrderRequest(CreateOrderRequest):
    email: EmailStr


class CreateOrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    paypal_order_id: str = Field(..., alias="paypalOrderId")


class CaptureOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    paypal_order_id: str = Field(..., alias="paypalOrderId", min_length=1)
    order_id: str = Field(..., alias="orderId", min_length=1)


class CaptureOrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_id: str = Field(..., alias="orderId")
    capture_id: str | None = Field(None, alias="captureId")


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None
    product_id: str
    amount_usd: Decimal
    status: str
    payment_status: str | None
    paypal_order_id: str | None
    paypal_capture_id: str | None
    payment_completed_at: datetime | None
    created_at: datetime
    deleted_at: datetime | None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class IntakeFormUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    business_name: str | None = None
    industry: str | None = None
    website_url: str | None = None
    contact_person: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    project_goals: str | None = None
    project_description: str | None = None
    key_requirements: list | None = None
    competitors: list | None = None
    target_audience: str | None = None
    geographic_focus: str | None = None
    age_range: str | None = None
    customer_pain_points: str | None = None
    desired_start_date: str | None = None
    deadline: str | None = None
    budget_expectations: str | None = None
    additional_notes: str | None = None
    current_step: int | None = Field(None, ge=1, le=4)
    is_completed: bool | None = None


class IntakeFormResponse(IntakeFormUpdate):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    user_id: str
    current_step: int
    is_completed: bool
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ContactRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., alias="firstName", min_length=1)
    last_name: str = Field(..., alias="lastName", min_length=1)
    email: EmailStr
    company: str | None = None
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=10)


class ContactResponse(BaseModel):
    success: bool = True
    message: str = "Message sent successfully"
