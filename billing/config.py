import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from dotenv import load_dotenv

from billing.constants import PAYMENT_EXPIRY_INTERVAL_SECONDS, SUBSCRIPTION_SWEEP_INTERVAL_SECONDS
from billing.errors import ConfigurationError

# Загружаем переменные из .env файла (для локального запуска)
load_dotenv()


class PixSettings(BaseModel):
    """Проверенные параметры PIX, нужные для выставления счета"""

    key: str
    merchant_name: str
    merchant_city: str
    amount: Decimal
    txid_prefix: str
    expiration_minutes: int
    dynamic: bool


class Config(BaseModel):
    """Конфигурация сервиса с валидацией"""

    database_url: str = Field(..., description="PostgreSQL connection URL")

    # PIX настройки (проверяются при первом использовании)
    pix_key: Optional[str] = Field(default=None, description="Chave PIX получателя")
    pix_merchant_name: Optional[str] = Field(default=None, description="Имя получателя (до 25 символов)")
    pix_merchant_city: Optional[str] = Field(default=None, description="Город получателя (до 15 символов)")
    pix_amount: Optional[str] = Field(default=None, description="Стоимость подписки, например 49.90")
    pix_txid_prefix: str = Field(default="ASSIN", description="Префикс txid")
    pix_qr_expiration_minutes: int = Field(default=30, gt=0, description="Время жизни QR в минутах")
    pix_qr_dynamic: bool = Field(default=True, description="Динамический QR (txid в payload)")
    pix_webhook_secret: Optional[str] = Field(default=None, description="HMAC секрет PIX webhook")

    # Подписки и фоновые задачи
    subscription_grace_period_hours: int = Field(default=24, ge=0, description="Льготный период в часах")
    payment_expiry_interval_seconds: int = Field(default=PAYMENT_EXPIRY_INTERVAL_SECONDS, gt=0)
    subscription_sweep_interval_seconds: int = Field(default=SUBSCRIPTION_SWEEP_INTERVAL_SECONDS, gt=0)

    # Stripe настройки
    stripe_secret_key: Optional[str] = Field(default=None, description="Stripe Secret Key")
    stripe_publishable_key: Optional[str] = Field(default=None, description="Stripe Publishable Key")
    stripe_webhook_secret: Optional[str] = Field(default=None, description="Stripe webhook signing secret")
    stripe_price_basic: Optional[str] = Field(default=None, description="Price ID базового плана")
    stripe_mobile_api_version: str = Field(default="2020-08-27", description="Версия API для ephemeral key")
    stripe_webhook_tolerance_seconds: int = Field(default=300, gt=0)
    stripe_secret_wait_seconds: float = Field(default=8.0, ge=0, description="Ожидание client_secret")

    # HTTP
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8080, gt=0)
    enable_test_endpoints: bool = Field(default=False, description="Ручное подтверждение txid")
    admin_token: Optional[str] = Field(default=None, description="Токен для тестовых эндпоинтов")

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator('log_level')
    @classmethod
    def check_log_level(cls, v):
        """Проверяет, что уровень логирования существует"""
        if not isinstance(logging.getLevelName(v.upper()), int):
            raise ValueError(f"Неизвестный уровень логирования: {v}")
        return v.upper()

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key)

    def pix_settings(self) -> PixSettings:
        """
        Возвращает проверенные параметры PIX

        Raises:
            ConfigurationError: если ключ, получатель или сумма не заданы или некорректны
        """
        missing = [
            name for name, value in (
                ("PIX_KEY", self.pix_key),
                ("PIX_MERCHANT_NAME", self.pix_merchant_name),
                ("PIX_MERCHANT_CITY", self.pix_merchant_city),
                ("PIX_AMOUNT", self.pix_amount),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise ConfigurationError(f"Не установлены параметры PIX: {', '.join(missing)}")

        try:
            amount = Decimal(self.pix_amount.strip())
        except InvalidOperation:
            raise ConfigurationError(f"PIX_AMOUNT некорректен: {self.pix_amount!r}")
        if not amount.is_finite() or amount <= 0:
            raise ConfigurationError(f"PIX_AMOUNT должен быть положительным: {self.pix_amount!r}")

        return PixSettings(
            key=self.pix_key.strip(),
            merchant_name=self.pix_merchant_name,
            merchant_city=self.pix_merchant_city,
            amount=amount,
            txid_prefix=self.pix_txid_prefix,
            expiration_minutes=self.pix_qr_expiration_minutes,
            dynamic=self.pix_qr_dynamic,
        )

    def stripe_settings_missing(self) -> list[str]:
        """Список незаданных параметров Stripe"""
        return [
            name for name, value in (
                ("STRIPE_SECRET_KEY", self.stripe_secret_key),
                ("STRIPE_PUBLISHABLE_KEY", self.stripe_publishable_key),
                ("STRIPE_WEBHOOK_SECRET", self.stripe_webhook_secret),
                ("STRIPE_PRICE_BASIC", self.stripe_price_basic),
            )
            if not value
        ]

    @classmethod
    def from_env(cls) -> "Config":
        """Создает конфиг из переменных окружения с валидацией"""
        db_url = os.getenv("DATABASE_URL")

        if not db_url:
            raise ConfigurationError("DATABASE_URL не установлен")

        values = {
            "database_url": db_url,
            "pix_key": os.getenv("PIX_KEY"),
            "pix_merchant_name": os.getenv("PIX_MERCHANT_NAME"),
            "pix_merchant_city": os.getenv("PIX_MERCHANT_CITY"),
            "pix_amount": os.getenv("PIX_AMOUNT"),
            "pix_txid_prefix": os.getenv("PIX_TXID_PREFIX"),
            "pix_qr_expiration_minutes": os.getenv("PIX_QR_EXPIRATION_MINUTES"),
            "pix_qr_dynamic": _env_bool("PIX_QR_DYNAMIC"),
            "pix_webhook_secret": os.getenv("PIX_WEBHOOK_SECRET"),
            "subscription_grace_period_hours": os.getenv("SUBSCRIPTION_GRACE_PERIOD_HOURS"),
            "payment_expiry_interval_seconds": os.getenv("PAYMENT_EXPIRY_INTERVAL_SECONDS"),
            "subscription_sweep_interval_seconds": os.getenv("SUBSCRIPTION_SWEEP_INTERVAL_SECONDS"),
            "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY"),
            "stripe_publishable_key": os.getenv("STRIPE_PUBLISHABLE_KEY"),
            "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET"),
            "stripe_price_basic": os.getenv("STRIPE_PRICE_BASIC"),
            "stripe_mobile_api_version": os.getenv("STRIPE_MOBILE_API_VERSION"),
            "stripe_webhook_tolerance_seconds": os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS"),
            "stripe_secret_wait_seconds": os.getenv("STRIPE_SECRET_WAIT_SECONDS"),
            "http_host": os.getenv("HTTP_HOST"),
            "http_port": os.getenv("HTTP_PORT"),
            "enable_test_endpoints": _env_bool("ENABLE_TEST_ENDPOINTS"),
            "admin_token": os.getenv("ADMIN_TOKEN"),
            "log_level": os.getenv("LOG_LEVEL"),
        }

        # Незаданные переменные не передаем, чтобы сработали значения по умолчанию
        try:
            return cls(**{k: v for k, v in values.items() if v is not None})
        except PydanticValidationError as e:
            raise ConfigurationError(f"Некорректная конфигурация: {e}") from e


def _env_bool(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Настраивает логирование для приложения"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)
