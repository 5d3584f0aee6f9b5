import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.services.product_name import normalize_spaces

NUMBER = r"\d+(?:[.,]\d+)?"

# "12 Cx 13 Kg" | "Cx 20 Kg" | "15 Kg"
RX_PACKAGED = re.compile(
    rf"^(?:({NUMBER})\s+)?(Cx|Sc|Kg|Mo-\d{{1,2}}|Lt|L|Unid|Un)\s*({NUMBER})?\s*(?:Kg)?$",
    re.IGNORECASE,
)
RX_WEIGHT = re.compile(rf"^({NUMBER})\s*Kg$", re.IGNORECASE)
RX_KG = re.compile(r"^Kg$", re.IGNORECASE)


@dataclass
class UnitDetails:
    unit_kind: Optional[str] = None
    unit_kg: Optional[Decimal] = None
    pack_count: Optional[Decimal] = None


def _to_decimal(value: str) -> Decimal:
    return Decimal(value.replace(",", "."))


def parse_unit_details(unit: Optional[str]) -> UnitDetails:
    """
    Extrai tipo de embalagem, peso por embalagem (Kg) e quantidade de
    embalagens de uma unidade normalizada.

        "Cx 10 Kg"    -> UnitDetails("Cx", 10, None)
        "12 Cx 13 Kg" -> UnitDetails("Cx", 13, 12)
        "15 Kg"       -> UnitDetails("Kg", 15, None)
        "Kg"          -> UnitDetails("Kg", 1, None)

    Unidades nao reconhecidas devolvem todos os campos None.
    """
    if not unit:
        return UnitDetails()

    text = normalize_spaces(unit)

    match = RX_PACKAGED.match(text)
    if match:
        pack_count = _to_decimal(match.group(1)) if match.group(1) else None
        kind_raw = match.group(2)
        unit_kind = kind_raw[0].upper() + kind_raw[1:].lower()

        # "15 Kg": o numero e o peso, nao a quantidade de embalagens
        if unit_kind == "Kg" and pack_count is not None and not match.group(3):
            return UnitDetails(unit_kind="Kg", unit_kg=pack_count, pack_count=None)

        if match.group(3):
            unit_kg = _to_decimal(match.group(3))
        elif unit_kind == "Kg":
            unit_kg = Decimal("1")
        else:
            unit_kg = None

        return UnitDetails(unit_kind=unit_kind, unit_kg=unit_kg, pack_count=pack_count)

    match = RX_WEIGHT.match(text)
    if match:
        return UnitDetails(unit_kind="Kg", unit_kg=_to_decimal(match.group(1)))

    if RX_KG.match(text):
        return UnitDetails(unit_kind="Kg", unit_kg=Decimal("1"))

    return UnitDetails()


def compute_price_per_kg(price: Decimal, unit_kg: Optional[Decimal]) -> Optional[Decimal]:
    """Preco por Kg com 2 casas; None sem peso conhecido."""
    if unit_kg is None or unit_kg <= 0:
        return None
    return (Decimal(price) / Decimal(unit_kg)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
