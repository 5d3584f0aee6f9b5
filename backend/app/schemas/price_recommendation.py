from pydantic import BaseModel
from typing import List, Optional
from datetime import date as DateType, datetime

from app.models import PriceRecommendation
from app.utils.br_format import format_brl


class PriceRecommendationResponse(BaseModel):
    id: int
    product_name: str
    product_unit: Optional[str] = None
    product_unit_kind: Optional[str] = None
    product_unit_kg: Optional[float] = None
    pack_count: Optional[float] = None
    price_per_kg: Optional[float] = None
    market_price: float
    suggested_price: float
    date: DateType
    algorithm_version: str
    created_at: Optional[datetime] = None

    # Apresentacao pt-BR
    product_full_name: str
    market_price_br: Optional[str] = None
    suggested_price_br: Optional[str] = None
    price_per_kg_br: Optional[str] = None


class PriceRecommendationListResponse(BaseModel):
    data: List[PriceRecommendationResponse]


class LatestPricesResponse(BaseModel):
    count: int
    data: List[PriceRecommendationResponse]


class PriceRecommendationItemResponse(BaseModel):
    data: PriceRecommendationResponse


class AgrolinkItemResponse(BaseModel):
    raw_label: str
    name: str
    unit: Optional[str] = None
    location: str
    price: str
    date: str


class AgrolinkCollectResponse(BaseModel):
    fonte: str = "agrolink"
    coletados: int
    itens: List[AgrolinkItemResponse]


class AgrolinkSyncResponse(BaseModel):
    coletados: int
    gravados: int
    overwrite: bool


class AgrolinkCounts(BaseModel):
    coletados: int
    gravados: int


class SyncResponse(BaseModel):
    ok: bool
    source: Optional[str] = None
    ama_count: int = 0
    agrolink: Optional[AgrolinkCounts] = None
    skipped: bool = False
    error: Optional[str] = None


def _to_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def to_response(record: PriceRecommendation) -> PriceRecommendationResponse:
    """Converte o registro adicionando os campos formatados em pt-BR"""
    full_name = (
        f"{record.product_name} ({record.product_unit})" if record.product_unit else record.product_name
    )
    return PriceRecommendationResponse(
        id=record.id,
        product_name=record.product_name,
        product_unit=record.product_unit,
        product_unit_kind=record.product_unit_kind,
        product_unit_kg=_to_float(record.product_unit_kg),
        pack_count=_to_float(record.pack_count),
        price_per_kg=_to_float(record.price_per_kg),
        market_price=float(record.market_price),
        suggested_price=float(record.suggested_price),
        date=record.date,
        algorithm_version=record.algorithm_version,
        created_at=record.created_at,
        product_full_name=full_name,
        market_price_br=format_brl(record.market_price),
        suggested_price_br=format_brl(record.suggested_price),
        price_per_kg_br=format_brl(record.price_per_kg),
    )
