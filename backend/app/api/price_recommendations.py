from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
import logging

from app.core.database import get_db
from app.schemas.price_recommendation import (
    AgrolinkCollectResponse,
    AgrolinkSyncResponse,
    LatestPricesResponse,
    PriceRecommendationItemResponse,
    PriceRecommendationListResponse,
    SyncResponse,
    to_response,
)
from app.services.price_recommendation import PriceRecommendationService
from app.services.price_sync import PriceSyncJob, redis_sync_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/price-recommendations", tags=["price-recommendations"])

# Letras (com acento), numeros, espaco, hifen, parenteses, barra, ponto, virgula, º, ª e °; sem "_"
PRODUCT_NAME_PATTERN = r"^(?:[^\W_]|[\s\-()/.,ºª°])+$"

NOT_FOUND_MESSAGE = "Produto não encontrado"


def get_price_service(db: Session = Depends(get_db)) -> PriceRecommendationService:
    return PriceRecommendationService(db)


def get_sync_lock():
    return redis_sync_lock()


def _product_name_param():
    return Path(..., min_length=2, max_length=200, pattern=PRODUCT_NAME_PATTERN)


def _collector_error(source: str, error: Exception) -> JSONResponse:
    logger.warning(f"[{source}] Coleta de debug falhou: {error}")
    return JSONResponse(status_code=502, content={"detail": str(error), "data": []})


# ============= Consultas =============

@router.get("/today", response_model=PriceRecommendationListResponse)
def list_today(service: PriceRecommendationService = Depends(get_price_service)):
    """Cotações com data de hoje"""
    return {"data": [to_response(r) for r in service.list_today()]}


@router.get("/latest", response_model=LatestPricesResponse)
def get_latest_all(service: PriceRecommendationService = Depends(get_price_service)):
    """Último preço de cada produto (preferindo AMA)"""
    records = service.get_latest_all()
    return {"count": len(records), "data": [to_response(r) for r in records]}


@router.get("/by-name/latest", response_model=PriceRecommendationItemResponse)
def get_latest_by_name_query(
    name: Optional[str] = Query(None),
    service: PriceRecommendationService = Depends(get_price_service),
):
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail='Parâmetro "name" é obrigatório')

    record = service.get_latest_by_name(name)
    if not record:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return {"data": to_response(record)}


# ============= Debug / sincronizacao =============

@router.post("/t/sync", response_model=SyncResponse)
async def trigger_sync(
    min: int = Query(10, ge=0),
    overwrite: bool = Query(False),
    service: PriceRecommendationService = Depends(get_price_service),
    lock=Depends(get_sync_lock),
):
    """Sincroniza agora: AMA, com fallback Agrolink"""
    return await PriceSyncJob(service, lock=lock).sync_once(min, overwrite)


@router.get("/t/agrolink", response_model=AgrolinkCollectResponse)
async def debug_collect_agrolink(service: PriceRecommendationService = Depends(get_price_service)):
    """Coleta o Agrolink (OCR) sem gravar"""
    try:
        items = await service.collect_agrolink()
    except Exception as e:
        return _collector_error("Agrolink", e)
    return {"fonte": "agrolink", "coletados": len(items), "itens": [i.to_dict() for i in items]}


@router.post("/t/agrolink/sync", response_model=AgrolinkSyncResponse)
async def debug_sync_agrolink(
    overwrite: bool = Query(False),
    service: PriceRecommendationService = Depends(get_price_service),
):
    result = await service.materialize_from_agrolink(overwrite)
    return {**result, "overwrite": overwrite}


@router.get("/t/extract-pdf-data")
async def debug_extract_pdf_data(
    url: Optional[str] = Query(None),
    service: PriceRecommendationService = Depends(get_price_service),
):
    """Extrai (e grava) as cotações de um PDF da AMA"""
    if not url:
        raise HTTPException(status_code=400, detail="Invalid URL parameter")

    try:
        items = await service.extract_data(url)
    except Exception as e:
        return _collector_error("AMA", e)
    return {"data": [[name, price] for name, price in items]}


# ============= Por nome (rotas com parametro por ultimo) =============

@router.get("/{product_name}/latest", response_model=PriceRecommendationItemResponse)
def get_latest_by_name(
    product_name: str = _product_name_param(),
    service: PriceRecommendationService = Depends(get_price_service),
):
    record = service.get_latest_by_name(product_name)
    if not record:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return {"data": to_response(record)}


@router.get("/{product_name}", response_model=PriceRecommendationItemResponse)
def get_by_name(
    product_name: str = _product_name_param(),
    service: PriceRecommendationService = Depends(get_price_service),
):
    record = service.get_by_name(product_name)
    if not record:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return {"data": to_response(record)}
