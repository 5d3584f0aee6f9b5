from unittest.mock import MagicMock

from app.services.price_sync import PriceSyncJob
from app.tasks import price_tasks
from app.tasks.celery_app import celery_app


def test_daily_schedule():
    entry = celery_app.conf.beat_schedule["sync-price-recommendations-daily"]

    assert entry["task"] == "sync_price_recommendations"
    assert entry["schedule"].hour == {12}
    assert entry["schedule"].minute == {30}
    assert "app.tasks.price_tasks" in celery_app.conf.include


def test_task_runs_sync_and_closes_session(monkeypatch):
    session = MagicMock()
    calls = []

    async def fake_sync_once(self, min_items=10, overwrite=False):
        calls.append((min_items, overwrite))
        return {"ok": True, "source": "AMA", "ama_count": 15, "agrolink": None}

    monkeypatch.setattr(price_tasks, "SessionLocal", lambda: session)
    monkeypatch.setattr(PriceSyncJob, "sync_once", fake_sync_once)

    result = price_tasks.sync_price_recommendations.run()

    assert result["source"] == "AMA"
    assert calls == [(10, False)]
    session.close.assert_called_once()
