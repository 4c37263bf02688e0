"""Проверка HMAC-подписи PIX webhook"""
import hashlib
import hmac
from typing import Optional


def sign_body(body: bytes, secret: str) -> str:
    """HMAC-SHA256 тела запроса в hex"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_body_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Проверяет подпись тела запроса

    Args:
        body: Сырое тело запроса
        signature: Значение заголовка X-Signature (hex, регистр не важен)
        secret: Общий секрет PSP

    Returns:
        True если подпись верна
    """
    if not signature:
        return False
    expected = sign_body(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
