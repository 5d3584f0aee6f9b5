"""
Tasks agendadas (Celery Beat)
- Sincronização diária das cotações (AMA, com fallback Agrolink)
"""
import asyncio
import logging
from typing import Optional

from app.tasks.celery_app import celery_app
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.logging import log_sync_result

logger = logging.getLogger(__name__)


@celery_app.task(name="sync_price_recommendations")
def sync_price_recommendations(min_items: Optional[int] = None, overwrite: Optional[bool] = None):
    """
    Executa uma sincronização de preços.
    Agendada diariamente e também disparável manualmente (.delay()).
    """
    from app.services.price_recommendation import PriceRecommendationService
    from app.services.price_sync import PriceSyncJob

    if min_items is None:
        min_items = settings.AMA_MIN_ITEMS
    if overwrite is None:
        overwrite = settings.AGROLINK_OVERWRITE

    logger.info("[Prices Sync] job iniciado")

    db = SessionLocal()
    try:
        job = PriceSyncJob(PriceRecommendationService(db))
        result = asyncio.run(job.sync_once(min_items, overwrite))
        log_sync_result(logger, result)
        return result
    finally:
        db.close()
