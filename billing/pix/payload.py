"""Сборка PIX BR Code ("copia e cola") в формате EMV TLV с CRC16"""
import re
import unicodedata
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from billing.constants import (
    PIX_GUI,
    PIX_FORMAT_INDICATOR,
    PIX_POI_STATIC,
    PIX_POI_DYNAMIC,
    PIX_MCC,
    PIX_CURRENCY_BRL,
    PIX_COUNTRY,
    PIX_STATIC_TXID,
    PIX_DESCRIPTION,
    PIX_CRC_TAG,
    MERCHANT_NAME_MAX,
    MERCHANT_CITY_MAX,
    DESCRIPTION_MAX,
)
from billing.errors import ValidationError

_NOT_ALLOWED = re.compile(r"[^A-Z0-9 \-.]")
_CENTS = Decimal("0.01")

CRC_POLYNOMIAL = 0x1021
CRC_INITIAL = 0xFFFF


def tlv(tag: str, value: str) -> str:
    """Кодирует поле как ID + LEN + VALUE (LEN - длина в байтах UTF-8)"""
    size = len(value.encode("utf-8"))
    if size > 99:
        raise ValidationError(f"Поле {tag} длиннее 99 байт ({size})")
    return f"{tag}{size:02d}{value}"


def crc16(data: str) -> str:
    """CRC-16/CCITT-FALSE: полином 0x1021, начальное значение 0xFFFF, без финального XOR"""
    crc = CRC_INITIAL
    for byte in data.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC_POLYNOMIAL) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def sanitize(text: Optional[str], max_length: int) -> str:
    """
    Нормализует текстовое поле

    Убирает диакритику, переводит в верхний регистр, оставляет только
    [A-Z0-9 -.] и только после этого обрезает до max_length.
    """
    if text is None:
        text = "NA"
    decomposed = unicodedata.normalize("NFD", text)
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _NOT_ALLOWED.sub("", without_marks.upper())
    return cleaned[:max_length]


def format_amount(amount: Union[Decimal, str, int]) -> str:
    """Сумма с двумя знаками после запятой, округление ROUND_HALF_UP"""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Некорректная сумма: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Сумма должна быть положительной: {amount!r}")
    return f"{value.quantize(_CENTS, rounding=ROUND_HALF_UP):f}"


def _merchant_account_info(pix_key: str, description: Optional[str]) -> str:
    desc = sanitize(description, DESCRIPTION_MAX) if description else ""
    inner = tlv("00", PIX_GUI) + tlv("01", pix_key)
    if desc.strip():
        inner += tlv("02", desc)
    return tlv("26", inner)


def _additional_data(reference: str) -> str:
    return tlv("62", tlv("05", reference))


def build_payload(
    pix_key: str,
    merchant_name: str,
    merchant_city: str,
    amount: Union[Decimal, str],
    txid: Optional[str],
    dynamic: bool = True,
    description: Optional[str] = PIX_DESCRIPTION,
) -> str:
    """
    Собирает payload PIX с контрольной суммой

    Args:
        pix_key: Ключ PIX получателя
        merchant_name: Имя получателя (будет нормализовано, до 25 символов)
        merchant_city: Город получателя (до 15 символов)
        amount: Сумма
        txid: Идентификатор транзакции (для статического кода игнорируется)
        dynamic: Динамический код (POI 12 и txid) или статический (POI 11 и ***)
        description: Описание в информации о получателе

    Returns:
        Строка BR Code, заканчивающаяся 6304 + 4 hex символа CRC
    """
    if not pix_key or not pix_key.strip():
        raise ValidationError("Ключ PIX не задан")

    if dynamic:
        if not txid:
            raise ValidationError("Для динамического кода нужен txid")
        reference = txid
    else:
        reference = PIX_STATIC_TXID

    partial = (
        tlv("00", PIX_FORMAT_INDICATOR)
        + tlv("01", PIX_POI_DYNAMIC if dynamic else PIX_POI_STATIC)
        + _merchant_account_info(pix_key.strip(), description)
        + tlv("52", PIX_MCC)
        + tlv("53", PIX_CURRENCY_BRL)
        + tlv("54", format_amount(amount))
        + tlv("58", PIX_COUNTRY)
        + tlv("59", sanitize(merchant_name, MERCHANT_NAME_MAX))
        + tlv("60", sanitize(merchant_city, MERCHANT_CITY_MAX))
        + _additional_data(reference)
    )
    to_crc = partial + PIX_CRC_TAG
    return to_crc + crc16(to_crc)


def parse_tlv(data: str) -> list[tuple[str, str]]:
    """
    Разбирает строку TLV верхнего уровня

    Длина считается в байтах UTF-8, как и при кодировании.

    Returns:
        Список пар (tag, value) в исходном порядке
    """
    raw = data.encode("utf-8")
    fields = []
    pos = 0
    while pos < len(raw):
        if pos + 4 > len(raw):
            raise ValidationError(f"Обрезанное поле на позиции {pos}")
        tag = raw[pos:pos + 2].decode("ascii")
        length_text = raw[pos + 2:pos + 4].decode("ascii")
        if not length_text.isdigit():
            raise ValidationError(f"Некорректная длина поля {tag}: {length_text!r}")
        length = int(length_text)
        end = pos + 4 + length
        if end > len(raw):
            raise ValidationError(f"Поле {tag} выходит за границы строки")
        fields.append((tag, raw[pos + 4:end].decode("utf-8")))
        pos = end
    return fields


def verify_checksum(payload: str) -> bool:
    """Проверяет, что последние 4 символа - CRC16 всей предыдущей строки"""
    if len(payload) < 8 or payload[-8:-4] != PIX_CRC_TAG:
        return False
    return crc16(payload[:-4]) == payload[-4:].upper()
