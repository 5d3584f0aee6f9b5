"""
Sincronizacao de precos: tenta o boletim AMA; se falhar ou vier abaixo do
minimo, usa o Agrolink como fallback.

Cron (worker Celery) e gatilho manual (API) rodam em processos diferentes,
entao a exclusao mutua usa um lock no Redis.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import redis
from redis.exceptions import LockError, RedisError

from app.core.config import settings
from app.services.price_recommendation import PriceRecommendationService

logger = logging.getLogger(__name__)

SOURCE_AMA = "AMA"
SOURCE_AGROLINK = "AGROLINK"

SYNC_LOCK_NAME = "price-recommendations:sync"


def redis_sync_lock(redis_url: Optional[str] = None, timeout: Optional[float] = None):
    """
    Lock compartilhado entre processos. Expira sozinho apos a soma dos prazos
    das duas etapas, caso o processo dono morra no meio da sincronizacao.
    """
    client = redis.Redis.from_url(redis_url or settings.REDIS_URL)
    timeout = timeout or settings.AMA_TIMEOUT_SECONDS + settings.AGROLINK_TIMEOUT_SECONDS + 60
    return client.lock(SYNC_LOCK_NAME, timeout=timeout)


class PriceSyncJob:

    def __init__(
        self,
        service: PriceRecommendationService,
        ama_timeout: Optional[float] = None,
        agrolink_timeout: Optional[float] = None,
        lock=None,
    ):
        self.service = service
        self.ama_timeout = ama_timeout or settings.AMA_TIMEOUT_SECONDS
        self.agrolink_timeout = agrolink_timeout or settings.AGROLINK_TIMEOUT_SECONDS
        self.lock = lock if lock is not None else redis_sync_lock()

    async def sync_once(self, min_items: int = 10, overwrite: bool = False) -> Dict[str, Any]:
        """
        Executa uma sincronizacao. Nunca levanta excecao: o resultado indica a
        fonte usada (`source`) e as contagens.
        """
        try:
            acquired = self.lock.acquire(blocking=False)
        except RedisError as e:
            logger.error(f"[Prices Sync] Lock de sincronização indisponível: {e}")
            return {
                "ok": False,
                "source": None,
                "ama_count": 0,
                "agrolink": None,
                "error": f"Lock de sincronização indisponível: {e}",
            }

        if not acquired:
            logger.info("[Prices Sync] Sincronização já em andamento, ignorando gatilho")
            return {"ok": False, "source": None, "skipped": True, "ama_count": 0, "agrolink": None}

        try:
            return await self._run(min_items, overwrite)
        finally:
            try:
                self.lock.release()
            except (LockError, RedisError) as e:
                # Lock expirou antes do fim; o resultado da execucao vale mesmo assim
                logger.warning(f"[Prices Sync] Falha ao liberar lock: {e}")

    async def _run(self, min_items: int, overwrite: bool) -> Dict[str, Any]:
        ama_count = 0
        try:
            ama_items = await asyncio.wait_for(self.service.extract_data(), timeout=self.ama_timeout)
            ama_count = len(ama_items)
            logger.info(f"[Prices Sync][AMA] itens extraídos: {ama_count}")

            if ama_count >= min_items:
                return {"ok": True, "source": SOURCE_AMA, "ama_count": ama_count, "agrolink": None}

            logger.info(f"[Prices Sync] AMA abaixo do mínimo ({ama_count} < {min_items}). Fallback Agrolink...")
        except asyncio.TimeoutError:
            logger.info(f"[Prices Sync] AMA excedeu {self.ama_timeout}s. Fallback Agrolink...")
        except Exception as e:
            # Fallback e o comportamento esperado, nao um erro
            logger.info(f"[Prices Sync] AMA falhou. Fallback Agrolink... {e}")

        try:
            agrolink = await asyncio.wait_for(
                self.service.materialize_from_agrolink(overwrite),
                timeout=self.agrolink_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"[Prices Sync] Agrolink excedeu {self.agrolink_timeout}s")
            return {
                "ok": False,
                "source": None,
                "ama_count": ama_count,
                "agrolink": None,
                "error": f"Agrolink excedeu {self.agrolink_timeout}s",
            }
        except Exception as e:
            logger.error(f"[Prices Sync] Agrolink falhou: {e}")
            return {"ok": False, "source": None, "ama_count": ama_count, "agrolink": None, "error": str(e)}

        logger.info(
            f"[Prices Sync][Agrolink] coletados={agrolink['coletados']} gravados={agrolink['gravados']}"
        )
        return {"ok": True, "source": SOURCE_AGROLINK, "ama_count": ama_count, "agrolink": agrolink}
