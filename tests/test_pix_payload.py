"""
Tests for the BR Code encoder.
"""
import base64
from decimal import Decimal

import pytest

from billing.errors import ValidationError
from billing.pix.payload import (
    build_payload,
    crc16,
    format_amount,
    parse_tlv,
    sanitize,
    tlv,
    verify_checksum,
)
from billing.pix.qr import render_png_base64

KEY = "pagamentos@exemplo.com.br"
TXID = "ASSIN-202405100900-1A2B3"


def _fields(payload: str) -> dict:
    return dict(parse_tlv(payload))


@pytest.mark.unit
class TestPrimitives:
    def test_crc16_check_value(self):
        # CRC-16/CCITT-FALSE check value
        assert crc16("123456789") == "29B1"

    def test_crc16_is_four_uppercase_hex_digits(self):
        assert crc16("") == "FFFF"
        value = crc16("000201")
        assert len(value) == 4
        assert value == value.upper()

    def test_tlv_length_counts_utf8_bytes(self):
        assert tlv("00", "01") == "000201"
        assert tlv("01", "é") == "0102é"

    def test_tlv_rejects_values_over_99_bytes(self):
        with pytest.raises(ValidationError):
            tlv("26", "x" * 100)

    def test_sanitize_strips_diacritics_and_filters(self):
        assert sanitize("José Ações Ltda!", 25) == "JOSE ACOES LTDA"
        assert sanitize("São Paulo", 15) == "SAO PAULO"

    def test_sanitize_truncates_after_filtering(self):
        assert sanitize("São Paulo do Norte Capital", 15) == "SAO PAULO DO NO"
        assert sanitize("***Loja***", 4) == "LOJA"

    def test_sanitize_none_becomes_na(self):
        assert sanitize(None, 25) == "NA"

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("49.9"), "49.90"),
        ("10.005", "10.01"),
        ("10.004", "10.00"),
        (5, "5.00"),
    ])
    def test_format_amount_rounds_half_up(self, amount, expected):
        assert format_amount(amount) == expected

    @pytest.mark.parametrize("amount", ["0", "-1.00", "abc", "NaN"])
    def test_format_amount_rejects_non_positive(self, amount):
        with pytest.raises(ValidationError):
            format_amount(amount)


@pytest.mark.unit
class TestBuildPayload:
    def test_is_deterministic(self):
        first = build_payload(KEY, "Loja Exemplo", "Sao Paulo", Decimal("49.90"), TXID)
        second = build_payload(KEY, "Loja Exemplo", "Sao Paulo", Decimal("49.90"), TXID)
        assert first == second

    def test_dynamic_field_order_and_values(self):
        payload = build_payload(KEY, "Loja Exemplo", "São Paulo", Decimal("49.90"), TXID)
        fields = parse_tlv(payload)

        assert [tag for tag, _ in fields] == ["00", "01", "26", "52", "53", "54", "58", "59", "60", "62", "63"]
        values = dict(fields)
        assert values["00"] == "01"
        assert values["01"] == "12"
        assert values["52"] == "0000"
        assert values["53"] == "986"
        assert values["54"] == "49.90"
        assert values["58"] == "BR"
        assert values["59"] == "LOJA EXEMPLO"
        assert values["60"] == "SAO PAULO"
        assert _fields(values["26"]) == {"00": "br.gov.bcb.pix", "01": KEY, "02": "ASSINATURA"}
        assert _fields(values["62"]) == {"05": TXID}

    def test_static_code_uses_poi_11_and_placeholder_reference(self):
        payload = build_payload(KEY, "Loja Exemplo", "Sao Paulo", "49.90", TXID, dynamic=False)
        values = _fields(payload)
        assert values["01"] == "11"
        assert _fields(values["62"]) == {"05": "***"}

    def test_ends_with_valid_checksum(self):
        payload = build_payload(KEY, "Loja Exemplo", "Sao Paulo", "49.90", TXID)
        assert payload[-8:-4] == "6304"
        assert payload[-4:] == crc16(payload[:-4])
        assert verify_checksum(payload)

    def test_checksum_detects_tampering(self):
        payload = build_payload(KEY, "Loja Exemplo", "Sao Paulo", "49.90", TXID)
        assert not verify_checksum(payload.replace("49.90", "49.91"))

    def test_long_merchant_fields_are_truncated(self):
        payload = build_payload(KEY, "Comércio de Assinaturas Digitais Ltda", "Florianópolis do Sul", "1", TXID)
        values = _fields(payload)
        assert len(values["59"]) == 25
        assert len(values["60"]) == 15
        assert values["60"] == "FLORIANOPOLIS D"

    def test_empty_description_is_omitted(self):
        payload = build_payload(KEY, "Loja", "Recife", "1", TXID, description=None)
        assert "02" not in _fields(_fields(payload)["26"])

    def test_dynamic_requires_txid(self):
        with pytest.raises(ValidationError):
            build_payload(KEY, "Loja", "Recife", "1", None)

    def test_requires_pix_key(self):
        with pytest.raises(ValidationError):
            build_payload("  ", "Loja", "Recife", "1", TXID)


@pytest.mark.unit
class TestParseTlv:
    def test_rejects_truncated_input(self):
        with pytest.raises(ValidationError):
            parse_tlv("0002")

    def test_rejects_non_numeric_length(self):
        with pytest.raises(ValidationError):
            parse_tlv("00AB01")


@pytest.mark.unit
def test_render_png_base64_returns_png():
    encoded = render_png_base64(build_payload(KEY, "Loja", "Recife", "1", TXID))
    assert base64.b64decode(encoded).startswith(b"\x89PNG\r\n\x1a\n")
