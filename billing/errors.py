"""Иерархия ошибок биллинга"""


class BillingError(Exception):
    """Базовая ошибка сервиса"""


class ValidationError(BillingError):
    """Некорректный запрос или входные данные"""


class NotFoundError(BillingError):
    """Платеж, подписка или пользователь не найдены"""


class ConflictError(BillingError):
    """Запись изменена параллельно (устаревшая версия)"""


class ExternalProcessorError(BillingError):
    """Платежный процессор отклонил вызов или вернул неожиданный ответ"""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class ConfigurationError(BillingError):
    """Отсутствуют или некорректны обязательные параметры биллинга"""


class WebhookSignatureError(BillingError):
    """Подпись webhook отсутствует или не совпала"""
