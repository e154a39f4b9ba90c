"""
Pydantic Schemas for Request/Response Validation

Request bodies for the customer, front-of-house and kitchen surfaces, and
the serialized order shape they all share.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from fulfillment.models import OrderStatus, PaymentStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single item in an order, snapshotted from the menu."""
    menu_item_id: Optional[str] = Field(None, max_length=64)
    name: str = Field(..., min_length=1, max_length=100, examples=["Pizza Margherita"])
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=["14.99"])
    modifiers: List[Any] = Field(default_factory=list, examples=[["extra cheese"]])
    special_instructions: Optional[str] = Field(None, max_length=200)


class CustomerInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["John Doe"])
    email: str = Field(..., max_length=255, examples=["john@example.com"])
    phone: str = Field(..., min_length=7, max_length=20, examples=["555-123-4567"])

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        # Basic email validation
        if not re.match(r'^[\w\.\+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError('Invalid email format')
        return v


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    customer: CustomerInfo
    items: List[OrderItemCreate] = Field(..., min_length=1)
    pickup_time: Optional[datetime] = Field(None, examples=["2024-01-15T18:30:00"])
    tip: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    special_instructions: Optional[str] = Field(None, max_length=500)


class StatusUpdate(BaseModel):
    """PATCH body for moving an order. Validated by the transition table."""
    status: str = Field(..., examples=["acknowledged"])


class PaymentIntentRequest(BaseModel):
    order_id: str


class PaymentConfirmRequest(BaseModel):
    order_id: str
    payment_reference: str = Field(..., min_length=1, examples=["pi_3Nx..."])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    menu_item_id: Optional[str]
    name: str
    unit_price: Decimal
    quantity: int
    modifiers: Optional[List[Any]]
    special_instructions: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: Optional[str]
    payment_reference: Optional[str]
    customer_name: str
    customer_email: str
    customer_phone: str
    pickup_time: Optional[datetime]
    special_instructions: Optional[str]
    subtotal: Decimal
    tax: Decimal
    tip: Decimal
    total: Decimal
    boh_tip: Decimal
    foh_tip: Decimal
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse]

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool
    message: str
    order: OrderResponse


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class PaymentIntentResponse(BaseModel):
    success: bool = True
    client_secret: str
    payment_reference: str
    amount: Decimal


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    retryable: bool = False


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    timestamp: datetime
