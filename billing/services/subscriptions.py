from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from billing.constants import CONFLICT_RETRIES
from billing.errors import ConflictError, NotFoundError, ValidationError
from billing.models.subscription import SubscriptionRecord, SubscriptionStatus
from billing.utils.time import utc_now

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Сервис для управления PIX-подписками"""
    
    def __init__(self, repository, clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.clock = clock
    
    async def get_by_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Получает подписку конкретного пользователя"""
        return await self.repository.get_by_user_id(user_id)
    
    async def activate(
        self,
        user_id: str,
        period_start: datetime,
        period_end: datetime
    ) -> SubscriptionRecord:
        """
        Активирует подписку на оплаченный период
        
        Вызывается только после подтвержденного платежа. Подписка создается
        при первой оплате, флаг отмены в конце периода сбрасывается.
        """
        if period_end < period_start:
            raise ValidationError("Конец периода раньше начала")
        
        for attempt in range(1, CONFLICT_RETRIES + 1):
            now = self.clock()
            current = await self.repository.get_by_user_id(user_id)
            try:
                if current is None:
                    saved = await self.repository.create(
                        user_id,
                        SubscriptionStatus.ACTIVE.value,
                        period_start,
                        period_end,
                        now
                    )
                else:
                    saved = await self.repository.update({
                        **current,
                        'status': SubscriptionStatus.ACTIVE.value,
                        'current_period_start': period_start,
                        'current_period_end': period_end,
                        'cancel_at_period_end': False,
                        'updated_at': now,
                    })
            except ConflictError:
                logger.warning(f"⚠️ Конфликт при активации подписки user_id={user_id}, попытка {attempt}")
                continue
            
            logger.info(f"✅ Подписка активна: user_id={user_id}, до {period_end.isoformat()}")
            return saved
        
        raise ConflictError(f"Не удалось активировать подписку user_id={user_id}")
    
    async def request_cancel_at_period_end(self, user_id: str) -> SubscriptionRecord:
        """Отмечает подписку для отмены в конце текущего периода"""
        for attempt in range(1, CONFLICT_RETRIES + 1):
            current = await self.repository.get_by_user_id(user_id)
            if current is None:
                raise NotFoundError(f"Подписка пользователя {user_id} не найдена")
            try:
                saved = await self.repository.update({
                    **current,
                    'cancel_at_period_end': True,
                    'updated_at': self.clock(),
                })
            except ConflictError:
                logger.warning(f"⚠️ Конфликт при отмене подписки user_id={user_id}, попытка {attempt}")
                continue
            logger.info(f"🛑 Подписка user_id={user_id} будет отменена в конце периода")
            return saved
        
        raise ConflictError(f"Не удалось отметить отмену подписки user_id={user_id}")
    
    async def sweep_period_ends(self, now: datetime, grace: timedelta) -> list[SubscriptionRecord]:
        """
        Переводит подписки с закончившимся периодом в PAST_DUE или CANCELED
        
        Args:
            now: Текущее время
            grace: Льготный период после конца оплаченного окна
        
        Returns:
            Список измененных подписок
        """
        cutoff = now - grace
        candidates = await self.repository.list_active_ended_before(cutoff)
        changed = []
        
        for candidate in candidates:
            # Перечитываем запись прямо перед записью: ее могли продлить
            current = await self.repository.get_by_id(candidate['id'])
            if (
                current is None
                or current['status'] != SubscriptionStatus.ACTIVE
                or current['current_period_end'] is None
                or current['current_period_end'] >= cutoff
            ):
                continue
            
            if current['cancel_at_period_end']:
                new_status = SubscriptionStatus.CANCELED
            else:
                new_status = SubscriptionStatus.PAST_DUE
            
            try:
                saved = await self.repository.update({
                    **current,
                    'status': new_status.value,
                    'updated_at': now,
                })
            except ConflictError:
                logger.info(f"Подписка {current['id']} изменена параллельно, пропускаем")
                continue
            
            logger.info(f"⏰ Подписка user_id={current['user_id']} -> {new_status.value}")
            changed.append(saved)
        
        return changed
