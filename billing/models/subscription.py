from datetime import datetime
from enum import Enum
from typing import TypedDict, Optional


class SubscriptionStatus(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"


class CardSubscriptionStatus(str, Enum):
    """Статусы подписки Stripe"""
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    UNPAID = "UNPAID"
    PAUSED = "PAUSED"


class SubscriptionRecord(TypedDict):
    """Запись PIX-подписки из базы данных"""
    id: str
    user_id: str
    status: str
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    updated_at: datetime
    version: int


class CardSubscriptionRecord(TypedDict):
    """Запись подписки Stripe"""
    stripe_subscription_id: str
    user_id: str
    stripe_customer_id: str
    status: str
    price_id: Optional[str]
    product_id: Optional[str]
    latest_invoice_id: Optional[str]
    default_payment_method: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at: Optional[datetime]
    cancel_at_period_end: bool
    created_at: datetime
    updated_at: datetime
    version: int


class BillingCustomerRecord(TypedDict):
    """Связь пользователя с клиентом Stripe"""
    user_id: str
    email: Optional[str]
    stripe_customer_id: str
    created_at: datetime
    updated_at: datetime
