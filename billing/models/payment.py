"""Модели для платежей"""
from enum import Enum
from typing import TypedDict, Optional
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class PaymentRecord(TypedDict):
    """Запись платежа из базы данных"""
    id: int
    user_id: str
    txid: str
    end_to_end_id: Optional[str]
    amount: Decimal
    status: str  # PENDING, CONFIRMED, FAILED, EXPIRED
    pix_payload: str  # "copia e cola"
    qr_png_base64: Optional[str]
    created_at: datetime
    confirmed_at: Optional[datetime]
    expires_at: datetime
    version: int


class PixWebhookEvent(BaseModel):
    """Уведомление PSP о PIX-платеже"""

    model_config = ConfigDict(populate_by_name=True)

    txid: Optional[str] = None
    end_to_end_id: Optional[str] = Field(default=None, alias="endToEndId")
    # Некоторые PSP присылают сумму в поле "valor"
    amount: Optional[Decimal] = Field(default=None, validation_alias=AliasChoices("amount", "valor"))
    status: str
    occurred_at: Optional[datetime] = Field(default=None, alias="occurredAt")

    @field_validator('status')
    @classmethod
    def normalize_status(cls, v):
        return v.strip().upper()

    @field_validator('occurred_at')
    @classmethod
    def require_offset(cls, v):
        """occurredAt без часового пояса неоднозначен"""
        if v is not None and v.tzinfo is None:
            raise ValueError("occurredAt должен содержать смещение часового пояса")
        return v
