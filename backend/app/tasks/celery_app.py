from celery import Celery
from celery.schedules import crontab
from app.core.config import settings

celery_app = Celery(
    "price_tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=['app.tasks.price_tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.PRICE_SYNC_TIMEZONE,
    enable_utc=True,
    # Uma coleta por vez por worker (browser + OCR sao pesados)
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Margem acima dos prazos de AMA + Agrolink
    task_time_limit=int(settings.AMA_TIMEOUT_SECONDS + settings.AGROLINK_TIMEOUT_SECONDS + 120),
    task_soft_time_limit=int(settings.AMA_TIMEOUT_SECONDS + settings.AGROLINK_TIMEOUT_SECONDS + 60),
)

# Configuração do Celery Beat - Tarefas agendadas
celery_app.conf.beat_schedule = {
    'sync-price-recommendations-daily': {
        'task': 'sync_price_recommendations',
        'schedule': crontab(hour=settings.PRICE_SYNC_HOUR, minute=settings.PRICE_SYNC_MINUTE),
        'options': {'queue': 'default'}
    },
}
