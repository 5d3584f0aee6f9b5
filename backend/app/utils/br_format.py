"""
Conversoes no padrao pt-BR (virgula decimal, ponto de milhar, dd/mm/yyyy).
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

BR_DATE_RX = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")

TWO_PLACES = Decimal("0.01")


def parse_br_decimal(value: Optional[str]) -> Optional[Decimal]:
    """
    Converte "1.234,56" / "62,80" / "62.80" em Decimal.
    Retorna None se o texto nao for um numero.
    """
    if value is None:
        return None

    cleaned = re.sub(r"[^\d.,\-]", "", str(value))
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    if "," in cleaned:
        # Virgula e o separador decimal; pontos sao milhar
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_br_date(value: Optional[str]) -> Optional[date]:
    """Converte "17/11/2025" em date(2025, 11, 17). None se invalido."""
    if not value:
        return None

    match = BR_DATE_RX.search(value)
    if not match:
        return None

    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_brl(value: Union[Decimal, float, int, None]) -> Optional[str]:
    """Formata um valor com 2 casas no padrao pt-BR: 1234.5 -> "1.234,50"."""
    if value is None:
        return None

    quantized = Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    us_format = f"{quantized:,.2f}"
    return us_format.replace(",", "X").replace(".", ",").replace("X", ".")
