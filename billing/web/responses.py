"""JSON-ответы и отображение ошибок биллинга в HTTP статусы"""
import json
import logging
from datetime import datetime
from decimal import Decimal
from functools import partial

from aiohttp import web
from pydantic import ValidationError as PydanticValidationError

from billing.errors import (
    ConfigurationError,
    ConflictError,
    ExternalProcessorError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)


def _default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Объект {type(value).__name__} не сериализуется в JSON")


_dumps = partial(json.dumps, default=_default, ensure_ascii=False)


def json_response(data: dict, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def error_response(status: int, message: str) -> web.Response:
    return json_response({"error": message}, status=status)


async def read_json(request: web.Request) -> dict:
    """Тело запроса как JSON-объект, иначе ValidationError"""
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Тело запроса не является корректным JSON")
    if not isinstance(data, dict):
        raise ValidationError("Ожидается JSON-объект")
    return data


def require_field(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} обязателен")
    return value.strip()


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Переводит ошибки сервиса в JSON {"error": ...}"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except WebhookSignatureError as e:
        # Логируем только причину, секрет в сообщение не попадает
        logger.warning(f"🔐 Отклонен webhook {request.path}: {e}")
        return error_response(400, str(e))
    except ValidationError as e:
        return error_response(400, str(e))
    except PydanticValidationError as e:
        return error_response(400, f"Некорректные данные: {e.error_count()} ошибок")
    except NotFoundError as e:
        return error_response(404, str(e))
    except ConflictError as e:
        logger.warning(f"⚠️ Конфликт {request.path}: {e}")
        return error_response(409, str(e))
    except ExternalProcessorError as e:
        logger.error(f"Ошибка платежного процессора {request.path}: {e}")
        return error_response(502, str(e))
    except ConfigurationError as e:
        logger.error(f"Ошибка конфигурации {request.path}: {e}")
        return error_response(500, str(e))
    except Exception as e:
        logger.exception(f"Необработанная ошибка {request.method} {request.path}: {e}")
        return error_response(500, "Внутренняя ошибка сервера")
