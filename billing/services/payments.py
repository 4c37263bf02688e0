from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
import logging

from dateutil.relativedelta import relativedelta

from billing.config import Config
from billing.constants import BILLING_PERIOD_MONTHS, CONFLICT_RETRIES, PIX_STATIC_TXID
from billing.errors import ConflictError, NotFoundError, ValidationError
from billing.models.payment import PaymentRecord, PaymentStatus
from billing.models.subscription import SubscriptionStatus
from billing.pix.payload import build_payload
from billing.pix.qr import render_png_base64
from billing.services.subscriptions import SubscriptionService
from billing.utils.time import utc_now
from billing.utils.txid import new_txid

logger = logging.getLogger(__name__)

# Некоторые PSP используют PAID вместо CONFIRMED
_STATUS_ALIASES = {"PAID": PaymentStatus.CONFIRMED.value}


def _safe(value: Optional[str]) -> str:
    return value.strip() if value else ""


class PaymentService:
    """Учет PIX-платежей: создание, подтверждение и истечение"""

    def __init__(
        self,
        config: Config,
        repository,
        subscriptions: SubscriptionService,
        qr_renderer: Callable[[str], str] = render_png_base64,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.repository = repository
        self.subscriptions = subscriptions
        self.qr_renderer = qr_renderer
        self.clock = clock

    async def create_pending(self, user_id: str) -> PaymentRecord:
        """
        Создает PENDING платеж и payload PIX для пользователя

        Raises:
            ValidationError: если user_id пустой
            ConfigurationError: если параметры PIX не заданы или некорректны
        """
        if not user_id or not str(user_id).strip():
            raise ValidationError("userId обязателен")

        pix = self.config.pix_settings()
        now = self.clock()
        txid = new_txid(pix.txid_prefix, now)

        payload = build_payload(
            pix.key,
            pix.merchant_name,
            pix.merchant_city,
            pix.amount,
            txid,
            dynamic=pix.dynamic
        )
        qr = self.qr_renderer(payload)

        payment = await self.repository.create(
            user_id=str(user_id).strip(),
            txid=txid,
            amount=pix.amount,
            pix_payload=payload,
            qr_png_base64=qr,
            created_at=now,
            expires_at=now + timedelta(minutes=pix.expiration_minutes)
        )
        logger.info(f"💳 Создан платеж txid={txid}, user_id={payment['user_id']}, сумма={pix.amount}")
        return payment

    async def _find(
        self,
        txid: Optional[str],
        end_to_end_id: Optional[str],
        amount: Optional[Decimal] = None,
        by_amount: bool = False
    ) -> Optional[PaymentRecord]:
        """
        Ищет платеж по txid

        Для статического QR (txid пустой или ***) ищет по endToEndId,
        затем (если by_amount) самый свежий PENDING платеж на ту же сумму,
        еще не истекший.
        """
        tx = _safe(txid)
        if tx and tx != PIX_STATIC_TXID:
            payment = await self.repository.get_by_txid(tx)
            if payment:
                return payment

        e2e = _safe(end_to_end_id)
        if e2e:
            payment = await self.repository.get_by_end_to_end_id(e2e)
            if payment:
                return payment

        if (tx and tx != PIX_STATIC_TXID) or not by_amount:
            return None

        expected = amount if amount is not None else self.config.pix_settings().amount
        payment = await self.repository.find_pending_by_amount(expected, self.clock())
        if payment:
            logger.warning(
                f"[PIX WEBHOOK] статический QR: выбран платеж txid={payment['txid']} по сумме {expected}"
            )
        return payment

    async def apply_event(
        self,
        txid: Optional[str],
        reported_status: Optional[str],
        settlement_ref: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        amount: Optional[Decimal] = None
    ) -> Optional[PaymentRecord]:
        """
        Применяет событие PSP к платежу (идемпотентно)

        Args:
            txid: txid из payload
            reported_status: Статус от PSP (CONFIRMED, PAID, FAILED, ...)
            settlement_ref: endToEndId расчета
            occurred_at: Время события у PSP
            amount: Сумма из события (для статического QR)

        Returns:
            Платеж после применения события или None, если платеж не найден

        Raises:
            ConflictError: если запись постоянно меняется параллельно
        """
        status = _safe(reported_status).upper()
        status = _STATUS_ALIASES.get(status, status)

        for attempt in range(1, CONFLICT_RETRIES + 1):
            payment = await self._find(
                txid,
                settlement_ref,
                amount,
                by_amount=status == PaymentStatus.CONFIRMED
            )
            if payment is None:
                logger.warning(f"[PIX WEBHOOK] платеж не найден (txid={_safe(txid)}, e2e={_safe(settlement_ref)})")
                return None

            if payment['status'] == PaymentStatus.CONFIRMED:
                logger.info(f"[PIX WEBHOOK] txid={payment['txid']} уже подтвержден")
                return payment

            if payment['status'] != PaymentStatus.PENDING:
                logger.warning(
                    f"[PIX WEBHOOK] txid={payment['txid']} уже в статусе {payment['status']}, "
                    f"событие {status} проигнорировано"
                )
                return payment

            now = self.clock()
            if status == PaymentStatus.CONFIRMED:
                e2e = _safe(settlement_ref)
                changes = {
                    'status': PaymentStatus.CONFIRMED.value,
                    'confirmed_at': occurred_at or now,
                    'end_to_end_id': e2e or payment['end_to_end_id'],
                }
            elif status == PaymentStatus.FAILED:
                changes = {'status': PaymentStatus.FAILED.value}
            else:
                logger.info(f"[PIX WEBHOOK] статус '{status}' не применим, txid={payment['txid']}")
                return payment

            try:
                saved = await self.repository.update({**payment, **changes})
            except ConflictError:
                logger.warning(f"⚠️ Конфликт версий txid={payment['txid']}, попытка {attempt}")
                continue

            if saved['status'] == PaymentStatus.CONFIRMED:
                logger.info(f"💰 CONFIRMED txid={saved['txid']}, e2e={saved['end_to_end_id']}")
                # Период всегда месяц от момента подтверждения
                await self.subscriptions.activate(
                    saved['user_id'],
                    now,
                    now + relativedelta(months=BILLING_PERIOD_MONTHS)
                )
            else:
                logger.info(f"❌ FAILED txid={saved['txid']}")
            return saved

        raise ConflictError(f"Не удалось применить событие к txid={_safe(txid)}")

    async def confirm_manual(self, txid: str) -> PaymentRecord:
        """Ручное подтверждение txid (только для тестов и эксплуатации)"""
        payment = await self.apply_event(
            txid,
            PaymentStatus.CONFIRMED.value,
            f"MANUAL-{txid}",
            self.clock()
        )
        if payment is None:
            raise NotFoundError(f"Платеж {txid} не найден")
        return payment

    async def get_status(self, txid: str) -> dict:
        """Статус платежа и подписки пользователя"""
        payment = await self.repository.get_by_txid(txid)
        if payment is None:
            raise NotFoundError(f"Платеж {txid} не найден")

        subscription = await self.subscriptions.get_by_user(payment['user_id'])
        sub_status = subscription['status'] if subscription else SubscriptionStatus.INACTIVE.value
        return {
            'txid': payment['txid'],
            'paymentStatus': payment['status'],
            'subscriptionStatus': sub_status,
        }

    async def sweep_expired(self, now: datetime) -> list[PaymentRecord]:
        """
        Переводит просроченные PENDING платежи в EXPIRED

        Каждый платеж перечитывается перед записью, поэтому платеж,
        подтвержденный параллельно, не будет помечен как истекший.
        """
        candidates = await self.repository.list_expired_pending(now)
        expired = []

        for candidate in candidates:
            current = await self.repository.get_by_id(candidate['id'])
            if current is None or current['status'] != PaymentStatus.PENDING or current['expires_at'] >= now:
                continue
            try:
                saved = await self.repository.update({**current, 'status': PaymentStatus.EXPIRED.value})
            except ConflictError:
                logger.info(f"Платеж txid={current['txid']} изменен параллельно, пропускаем")
                continue
            logger.info(f"⌛ EXPIRED txid={saved['txid']}")
            expired.append(saved)

        return expired
