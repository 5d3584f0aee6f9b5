"""
Motor de recomendacao de precos: grava as cotacoes coletadas (AMA e Agrolink)
e responde consultas de "ultimo preco" com preferencia de fonte.

Preferencia de fonte (escrita e leitura): AMA > Agrolink > demais; em empate,
o registro mais recente (created_at) vence.
"""
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.core.logging import log_price_write
from app.models import PriceRecommendation
from app.services.agrolink_collector import AgrolinkItem, collect_agrolink_quotes
from app.services.ama_bulletin import (
    AmaBulletinClient,
    extract_bulletin_rows,
    find_bulletin_date,
    measure_to_unit,
    split_lines,
)
from app.services.product_name import (
    clean_product_name,
    sanitize_product_name_for_db,
    split_product_label,
    strip_location,
)
from app.services.unit_details import compute_price_per_kg, parse_unit_details
from app.utils.br_format import parse_br_date, parse_br_decimal

logger = logging.getLogger(__name__)

AMA_ALGORITHM_VERSION = "ama-pdf-v1"
AGROLINK_ALGORITHM_VERSION = "agrolink-ocr-v1"

AMA_PREFIX = "ama"
AGROLINK_PREFIX = "agrolink"

LATEST_BY_NAME_WINDOW = 50

CONFLICT_KEY = ["product_name", "date", "algorithm_version"]

UPSERT_COLUMNS = [
    "product_unit",
    "product_unit_kind",
    "product_unit_kg",
    "pack_count",
    "price_per_kg",
    "market_price",
    "suggested_price",
    "algorithm_version",
]


def source_rank(algorithm_version: Optional[str]) -> int:
    """AMA = 3, Agrolink = 2, demais = 1"""
    version = (algorithm_version or "").lower()
    if version.startswith(AMA_PREFIX):
        return 3
    if version.startswith(AGROLINK_PREFIX):
        return 2
    return 1


def source_rank_expression():
    """Mesmo ranking de source_rank() como expressao SQL"""
    version = func.lower(PriceRecommendation.algorithm_version)
    return case(
        (version.like(f"{AMA_PREFIX}%"), 3),
        (version.like(f"{AGROLINK_PREFIX}%"), 2),
        else_=1,
    )


def _created_at_key(record: PriceRecommendation) -> float:
    if record.created_at is None:
        return 0.0
    created_at = record.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.timestamp()


def pick_preferred(records: List[PriceRecommendation]) -> Optional[PriceRecommendation]:
    """Entre registros da mesma data, escolhe pela fonte e depois pelo mais recente"""
    if not records:
        return None
    return max(records, key=lambda r: (source_rank(r.algorithm_version), _created_at_key(r)))


class PriceRecommendationService:

    def __init__(
        self,
        db: Session,
        bulletin_client: Optional[AmaBulletinClient] = None,
        agrolink_collect: Optional[Callable[[], Awaitable[List[AgrolinkItem]]]] = None,
    ):
        self.db = db
        self.bulletin_client = bulletin_client or AmaBulletinClient()
        self.agrolink_collect = agrolink_collect or collect_agrolink_quotes

    # ============= Persistencia =============

    def _insert(self):
        if self.db.get_bind().dialect.name == "postgresql":
            return postgresql.insert(PriceRecommendation)
        return sqlite.insert(PriceRecommendation)

    def _insert_skip_duplicates(self, rows: List[Dict[str, Any]]) -> int:
        """INSERT ... ON CONFLICT DO NOTHING; retorna quantas linhas entraram"""
        if not rows:
            return 0

        start_time = time.time()
        stmt = self._insert().values(rows).on_conflict_do_nothing(index_elements=CONFLICT_KEY)
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:
            # Sessao segue utilizavel pelo fallback (Agrolink)
            self.db.rollback()
            raise

        inserted = max(result.rowcount or 0, 0)
        log_price_write(
            logger,
            "insert_if_absent",
            rows_affected=inserted,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return inserted

    def _upsert(self, row: Dict[str, Any]) -> None:
        """INSERT ... ON CONFLICT DO UPDATE; created_at do primeiro insert e mantido"""
        stmt = self._insert().values(**row)
        set_ = {column: getattr(stmt.excluded, column) for column in UPSERT_COLUMNS}
        set_["updated_at"] = datetime.now(timezone.utc)
        stmt = stmt.on_conflict_do_update(index_elements=CONFLICT_KEY, set_=set_)
        self.db.execute(stmt)

    # ============= Consultas simples =============

    def list_today(self) -> List[PriceRecommendation]:
        today = datetime.now(timezone.utc).date()
        return (
            self.db.query(PriceRecommendation)
            .filter(PriceRecommendation.date == today)
            .order_by(PriceRecommendation.product_name)
            .all()
        )

    def get_by_name(self, name: str) -> Optional[PriceRecommendation]:
        product_name = clean_product_name(name).upper()
        return (
            self.db.query(PriceRecommendation)
            .filter(PriceRecommendation.product_name == product_name)
            .order_by(PriceRecommendation.date.desc(), PriceRecommendation.created_at.desc())
            .first()
        )

    # ============= AMA (PDF) =============

    def _build_ama_row(self, name: str, price: str, measure: str, quote_date) -> Optional[Dict[str, Any]]:
        product_name = sanitize_product_name_for_db(name)
        if not product_name:
            logger.warning("[AMA Sync] Nome limpo vazio, ignorando linha", extra={'raw_name': name})
            return None

        market_price = parse_br_decimal(price)
        if market_price is None:
            logger.warning("[AMA Sync] Preço inválido, ignorando linha", extra={'raw_name': name, 'price': price})
            return None

        unit_kind, unit_kg = measure_to_unit(measure)
        unit_kg = Decimal(unit_kg) if unit_kg is not None else None

        return {
            "product_name": product_name,
            "product_unit": None,
            "product_unit_kind": unit_kind,
            "product_unit_kg": unit_kg,
            "pack_count": None,
            "price_per_kg": compute_price_per_kg(market_price, unit_kg),
            "market_price": market_price,
            "suggested_price": market_price,
            "date": quote_date,
            "algorithm_version": AMA_ALGORITHM_VERSION,
        }

    async def extract_data(self, url: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        Pipeline do boletim AMA: descobre/baixa o PDF, extrai as linhas e grava
        (insert-if-absent). Retorna os pares (nome, preco) brutos lidos do PDF.
        """
        pdf_url = url or await self.bulletin_client.discover_pdf_url()
        text = await self.bulletin_client.fetch_pdf_text(pdf_url)

        # A data do boletim vale para todas as linhas
        quote_date = find_bulletin_date(text)

        lines = split_lines(text)
        items = extract_bulletin_rows(lines)
        logger.info(f"[AMA Sync] linhas totais: {len(lines)}")
        logger.info(f"[AMA Sync] produtos detectados: {len(items)}")

        rows = []
        for item in items:
            row = self._build_ama_row(item.name, item.price, item.measure, quote_date)
            if row:
                rows.append(row)

        if not rows:
            logger.warning("[AMA Sync] Nenhum item válido para inserir após sanitização")
        else:
            inserted = self._insert_skip_duplicates(rows)
            logger.info(f"[AMA Sync] {inserted} de {len(rows)} itens gravados ({quote_date})")

        return [(item.name, item.price) for item in items]

    # ============= Agrolink (OCR) =============

    async def collect_agrolink(self) -> List[AgrolinkItem]:
        """Apenas coleta do Agrolink, sem gravar"""
        return await self.agrolink_collect()

    def _build_agrolink_row(self, item: AgrolinkItem) -> Optional[Dict[str, Any]]:
        raw = strip_location(item.raw_label or item.name, item.location)
        split = split_product_label(raw)
        product_name = sanitize_product_name_for_db(split.name or raw)

        if not product_name:
            logger.warning(
                "[Agrolink Sync] Nome limpo vazio, ignorando item",
                extra={'raw_label': item.raw_label, 'parsed_name': split.name},
            )
            return None

        market_price = parse_br_decimal(item.price)
        quote_date = parse_br_date(item.date)
        if market_price is None or quote_date is None:
            logger.warning(
                "[Agrolink Sync] Preço ou data inválidos, ignorando item",
                extra={'raw_label': item.raw_label, 'price': item.price, 'date': item.date},
            )
            return None

        details = parse_unit_details(split.unit)

        return {
            "product_name": product_name,
            "product_unit": split.unit,
            "product_unit_kind": details.unit_kind,
            "product_unit_kg": details.unit_kg,
            "pack_count": details.pack_count,
            "price_per_kg": compute_price_per_kg(market_price, details.unit_kg),
            "market_price": market_price,
            "suggested_price": market_price,
            "date": quote_date,
            "algorithm_version": AGROLINK_ALGORITHM_VERSION,
        }

    async def materialize_from_agrolink(self, overwrite_existing: bool = False) -> Dict[str, int]:
        """
        Coleta do Agrolink e grava em price_recommendations.

        - overwrite_existing=False: insert-if-absent (a primeira coleta do dia vence)
        - overwrite_existing=True: upsert por linha (atualiza preco/unidade)
        """
        items = await self.collect_agrolink()

        rows = []
        for item in items:
            row = self._build_agrolink_row(item)
            if row:
                rows.append(row)

        if not rows:
            logger.warning("[Agrolink Sync] Nenhum item válido para inserir após sanitização")
            return {"coletados": len(items), "gravados": 0}

        if not overwrite_existing:
            gravados = self._insert_skip_duplicates(rows)
            return {"coletados": len(items), "gravados": gravados}

        # Linhas repetidas na mesma coleta: a ultima prevalece
        unique_rows = {tuple(row[key] for key in CONFLICT_KEY): row for row in rows}

        start_time = time.time()
        try:
            for row in unique_rows.values():
                self._upsert(row)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        log_price_write(
            logger,
            "upsert",
            rows_affected=len(unique_rows),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return {"coletados": len(items), "gravados": len(unique_rows)}

    # ============= Ultimo preco (preferencia AMA) =============

    def get_latest_by_name(self, name: str) -> Optional[PriceRecommendation]:
        """Ultimo registro de UM produto, preferindo AMA em empates de data"""
        product_name = clean_product_name(name).upper()
        records = (
            self.db.query(PriceRecommendation)
            .filter(PriceRecommendation.product_name == product_name)
            .order_by(PriceRecommendation.date.desc(), PriceRecommendation.created_at.desc())
            .limit(LATEST_BY_NAME_WINDOW)
            .all()
        )
        if not records:
            return None

        top_date = records[0].date
        return pick_preferred([r for r in records if r.date == top_date])

    def get_latest_all(self) -> List[PriceRecommendation]:
        """Ultimo registro de CADA produto, preferindo AMA em empates de data"""
        latest_date = (
            select(
                PriceRecommendation.product_name.label("product_name"),
                func.max(PriceRecommendation.date).label("max_date"),
            )
            .group_by(PriceRecommendation.product_name)
            .subquery()
        )

        ranked = (
            select(
                PriceRecommendation.id.label("id"),
                func.row_number().over(
                    partition_by=PriceRecommendation.product_name,
                    order_by=(source_rank_expression().desc(), PriceRecommendation.created_at.desc()),
                ).label("rn"),
            )
            .join(
                latest_date,
                and_(
                    PriceRecommendation.product_name == latest_date.c.product_name,
                    PriceRecommendation.date == latest_date.c.max_date,
                ),
            )
            .subquery()
        )

        return list(
            self.db.scalars(
                select(PriceRecommendation)
                .join(ranked, PriceRecommendation.id == ranked.c.id)
                .where(ranked.c.rn == 1)
                .order_by(PriceRecommendation.product_name.asc())
            )
        )
