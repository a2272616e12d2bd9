from datetime import datetime
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List, Any
from orderpay.db.models import PaymentMethod, OrderPaymentStatus, OrderStatus, PaymentStatus

class Address(BaseModel):
    name: str = Field(max_length=255)
    phone: str = Field(max_length=20)
    city: str = Field(max_length=100)
    address: str = Field(max_length=500, validation_alias=AliasChoices("address", "street"))
    zip: Optional[str] = Field(default=None, max_length=20)
    email: Optional[EmailStr] = None
    region: Optional[str] = None

class OrderItemIn(BaseModel):
    product_id: int
    qty: int = Field(ge=1, validation_alias=AliasChoices("qty", "quantity"))

class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1)
    payment_method: PaymentMethod
    billing_address: Address
    shipping_address: Optional[Address] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    discount_cents: int = Field(default=0, ge=0)

class OrderUpdate(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    product_id: int
    qty: int
    unit_price_cents: int
    total_price_cents: int
    title_snapshot: str

class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_id: int
    payment_id: str
    gateway: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    order_number: str
    user_email: str
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int
    payment_method: PaymentMethod
    payment_status: OrderPaymentStatus
    order_status: OrderStatus
    notes: Optional[str] = None
    billing_address: Optional[dict] = None
    shipping_address: Optional[dict] = None
    items: List[OrderItemRead] = []
    payments: List[PaymentRead] = []
    created_at: datetime
    updated_at: datetime

class OrderPage(BaseModel):
    items: List[OrderRead]
    page: int
    per_page: int
    total: int

class InitiatePayment(BaseModel):
    order_id: int

class InitiateResponse(BaseModel):
    payment_url: Optional[str]
    order_number: str
    payment_id: str

class RefundRequest(BaseModel):
    amount_cents: Optional[int] = Field(default=None, ge=1)

class PaymentOptionsRead(BaseModel):
    gateway: str
    options: List[Any]
