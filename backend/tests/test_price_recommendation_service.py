import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.models import PriceRecommendation
from app.services.agrolink_collector import AgrolinkItem
from app.services.ama_bulletin import BulletinParseError
from app.services.price_recommendation import (
    AGROLINK_ALGORITHM_VERSION,
    AMA_ALGORITHM_VERSION,
    PriceRecommendationService,
    pick_preferred,
    source_rank,
)

QUOTE_DATE = date(2025, 11, 17)

BULLETIN_TEXT = """COTAÇÃO DE PREÇOS
DATA: 17/11/2025
ABACAXI PEROLA
UNID.
3,00 3,50 4,00
TOMATE LONGA VIDA
KG
2,50 3,00
"""


class FakeBulletinClient:
    def __init__(self, text=BULLETIN_TEXT):
        self.text = text
        self.fetched = []

    async def discover_pdf_url(self):
        return "https://www.juazeiro.ba.gov.br/wp-content/uploads/2025/11/cotacao.pdf"

    async def fetch_pdf_text(self, pdf_url):
        self.fetched.append(pdf_url)
        return self.text


def _agrolink_item(raw_label="Alho Comum Cx 10Kg Juazeiro (BA)", price="62,80", quote_date="17/11/2025"):
    return AgrolinkItem(
        raw_label=raw_label,
        name="",
        unit=None,
        location="Juazeiro (BA)",
        price=price,
        date=quote_date,
    )


def _agrolink_collect(*items):
    async def collect():
        return list(items)
    return collect


def _record(name, version, quote_date=QUOTE_DATE, price="10.00", created_at=None):
    return PriceRecommendation(
        product_name=name,
        market_price=Decimal(price),
        suggested_price=Decimal(price),
        date=quote_date,
        algorithm_version=version,
        created_at=created_at,
    )


def _add(db, *records):
    for record in records:
        db.add(record)
    db.commit()


class TestSourceRank:

    def test_ranks(self):
        assert source_rank(AMA_ALGORITHM_VERSION) == 3
        assert source_rank(AGROLINK_ALGORITHM_VERSION) == 2
        assert source_rank("manual") == 1
        assert source_rank(None) == 1

    def test_pick_preferred_empty(self):
        assert pick_preferred([]) is None


class TestExtractData:

    def test_persists_bulletin_rows(self, db):
        bulletin = FakeBulletinClient()
        service = PriceRecommendationService(db, bulletin_client=bulletin)

        items = asyncio.run(service.extract_data())

        assert items == [("ABACAXI PEROLA", "4,00"), ("TOMATE LONGA VIDA", "3,00")]
        records = {r.product_name: r for r in db.query(PriceRecommendation).all()}
        assert set(records) == {"ABACAXI PEROLA", "TOMATE LONGA VIDA"}

        tomato = records["TOMATE LONGA VIDA"]
        assert tomato.date == QUOTE_DATE
        assert tomato.algorithm_version == AMA_ALGORITHM_VERSION
        assert tomato.product_unit_kind == "Kg"
        assert tomato.product_unit_kg == Decimal("1")
        assert tomato.market_price == Decimal("3.00")
        assert tomato.suggested_price == tomato.market_price
        assert tomato.price_per_kg == Decimal("3.00")

        pineapple = records["ABACAXI PEROLA"]
        assert pineapple.product_unit_kind == "Un"
        assert pineapple.product_unit_kg is None
        assert pineapple.price_per_kg is None

    def test_explicit_url_skips_discovery(self, db):
        bulletin = FakeBulletinClient()
        service = PriceRecommendationService(db, bulletin_client=bulletin)

        asyncio.run(service.extract_data("https://example.com/boletim.pdf"))

        assert bulletin.fetched == ["https://example.com/boletim.pdf"]

    def test_second_run_inserts_nothing(self, db):
        service = PriceRecommendationService(db, bulletin_client=FakeBulletinClient())

        asyncio.run(service.extract_data())
        asyncio.run(service.extract_data())

        assert db.query(PriceRecommendation).count() == 2

    def test_missing_date_raises(self, db):
        service = PriceRecommendationService(db, bulletin_client=FakeBulletinClient("TOMATE\nKG\n2,50"))

        with pytest.raises(BulletinParseError):
            asyncio.run(service.extract_data())
        assert db.query(PriceRecommendation).count() == 0


class TestMaterializeFromAgrolink:

    def test_derived_fields(self, db):
        service = PriceRecommendationService(db, agrolink_collect=_agrolink_collect(_agrolink_item()))

        result = asyncio.run(service.materialize_from_agrolink())

        assert result == {"coletados": 1, "gravados": 1}
        record = db.query(PriceRecommendation).one()
        assert record.product_name == "ALHO COMUM"
        assert record.product_unit == "Cx 10 Kg"
        assert record.product_unit_kind == "Cx"
        assert record.product_unit_kg == Decimal("10")
        assert record.pack_count is None
        assert record.market_price == Decimal("62.80")
        assert record.price_per_kg == Decimal("6.28")
        assert record.date == QUOTE_DATE
        assert record.algorithm_version == AGROLINK_ALGORITHM_VERSION

    def test_skip_mode_is_idempotent(self, db):
        items = [_agrolink_item(), _agrolink_item("Tomate Kg Juazeiro (BA)", "3,50")]
        service = PriceRecommendationService(db, agrolink_collect=_agrolink_collect(*items))

        first = asyncio.run(service.materialize_from_agrolink())
        second = asyncio.run(service.materialize_from_agrolink())

        assert first == {"coletados": 2, "gravados": 2}
        assert second == {"coletados": 2, "gravados": 0}
        assert db.query(PriceRecommendation).count() == 2

    def test_skip_mode_keeps_first_price(self, db):
        asyncio.run(PriceRecommendationService(
            db, agrolink_collect=_agrolink_collect(_agrolink_item(price="62,80"))
        ).materialize_from_agrolink())
        asyncio.run(PriceRecommendationService(
            db, agrolink_collect=_agrolink_collect(_agrolink_item(price="70,00"))
        ).materialize_from_agrolink())

        assert db.query(PriceRecommendation).one().market_price == Decimal("62.80")

    def test_overwrite_updates_existing_row(self, db):
        asyncio.run(PriceRecommendationService(
            db, agrolink_collect=_agrolink_collect(_agrolink_item(price="62,80"))
        ).materialize_from_agrolink())
        original = db.query(PriceRecommendation).one()
        original_id, original_created_at = original.id, original.created_at

        result = asyncio.run(PriceRecommendationService(
            db, agrolink_collect=_agrolink_collect(_agrolink_item("Alho Comum Cx 12Kg Juazeiro (BA)", "72,00"))
        ).materialize_from_agrolink(overwrite_existing=True))

        assert result == {"coletados": 1, "gravados": 1}
        db.expire_all()
        record = db.query(PriceRecommendation).one()
        assert record.id == original_id
        assert record.created_at == original_created_at
        assert record.market_price == Decimal("72.00")
        assert record.product_unit == "Cx 12 Kg"
        assert record.price_per_kg == Decimal("6.00")

    def test_overwrite_deduplicates_within_batch(self, db):
        items = [_agrolink_item(price="62,80"), _agrolink_item(price="65,00")]
        service = PriceRecommendationService(db, agrolink_collect=_agrolink_collect(*items))

        result = asyncio.run(service.materialize_from_agrolink(overwrite_existing=True))

        assert result == {"coletados": 2, "gravados": 1}
        assert db.query(PriceRecommendation).one().market_price == Decimal("65.00")

    def test_invalid_items_are_dropped(self, db):
        items = [
            _agrolink_item(),
            _agrolink_item("", price="10,00"),
            _agrolink_item("Tomate Kg Juazeiro (BA)", price="abc"),
            _agrolink_item("Cebola Kg Juazeiro (BA)", quote_date="ontem"),
        ]
        service = PriceRecommendationService(db, agrolink_collect=_agrolink_collect(*items))

        result = asyncio.run(service.materialize_from_agrolink())

        assert result == {"coletados": 4, "gravados": 1}

    def test_nothing_collected(self, db):
        service = PriceRecommendationService(db, agrolink_collect=_agrolink_collect())
        assert asyncio.run(service.materialize_from_agrolink()) == {"coletados": 0, "gravados": 0}


class TestLatestByName:

    @pytest.mark.parametrize("insert_ama_first", [True, False])
    def test_ama_wins_same_date(self, db, insert_ama_first):
        ama = _record("TOMATE", AMA_ALGORITHM_VERSION, price="3.00")
        agrolink = _record("TOMATE", AGROLINK_ALGORITHM_VERSION, price="3.50")
        _add(db, *([ama, agrolink] if insert_ama_first else [agrolink, ama]))

        record = PriceRecommendationService(db).get_latest_by_name("Tomate")

        assert record.algorithm_version == AMA_ALGORITHM_VERSION

    def test_newer_date_wins_over_source(self, db):
        _add(
            db,
            _record("TOMATE", AMA_ALGORITHM_VERSION, quote_date=QUOTE_DATE - timedelta(days=1)),
            _record("TOMATE", AGROLINK_ALGORITHM_VERSION, quote_date=QUOTE_DATE),
        )

        record = PriceRecommendationService(db).get_latest_by_name("TOMATE")

        assert record.algorithm_version == AGROLINK_ALGORITHM_VERSION
        assert record.date == QUOTE_DATE

    def test_same_rank_newest_created_at_wins(self, db):
        older = datetime(2025, 11, 17, 8, 0, tzinfo=timezone.utc)
        _add(
            db,
            _record("TOMATE", "manual-v1", price="1.00", created_at=older),
            _record("TOMATE", "planilha-v1", price="2.00", created_at=older + timedelta(hours=1)),
        )

        record = PriceRecommendationService(db).get_latest_by_name("tomate")

        assert record.market_price == Decimal("2.00")

    def test_name_is_cleaned_before_lookup(self, db):
        _add(db, _record("ALHO COMUM", AGROLINK_ALGORITHM_VERSION))
        assert PriceRecommendationService(db).get_latest_by_name("alho comum tipo 1") is not None

    def test_not_found(self, db):
        assert PriceRecommendationService(db).get_latest_by_name("Inexistente") is None


class TestLatestAll:

    def test_one_row_per_product(self, db):
        _add(
            db,
            _record("TOMATE", AGROLINK_ALGORITHM_VERSION, price="3.50"),
            _record("TOMATE", AMA_ALGORITHM_VERSION, price="3.00"),
            _record("CEBOLA", AMA_ALGORITHM_VERSION, quote_date=QUOTE_DATE - timedelta(days=2), price="2.00"),
            _record("CEBOLA", AGROLINK_ALGORITHM_VERSION, price="2.20"),
        )

        records = PriceRecommendationService(db).get_latest_all()

        assert [(r.product_name, r.algorithm_version) for r in records] == [
            ("CEBOLA", AGROLINK_ALGORITHM_VERSION),
            ("TOMATE", AMA_ALGORITHM_VERSION),
        ]

    def test_agrees_with_latest_by_name(self, db):
        _add(
            db,
            _record("ALHO", AGROLINK_ALGORITHM_VERSION),
            _record("ALHO", AMA_ALGORITHM_VERSION),
            _record("BATATA", AGROLINK_ALGORITHM_VERSION),
        )
        service = PriceRecommendationService(db)

        for record in service.get_latest_all():
            assert service.get_latest_by_name(record.product_name).id == record.id

    def test_empty(self, db):
        assert PriceRecommendationService(db).get_latest_all() == []


class TestSimpleQueries:

    def test_list_today(self, db):
        today = datetime.now(timezone.utc).date()
        _add(
            db,
            _record("TOMATE", AMA_ALGORITHM_VERSION, quote_date=today),
            _record("CEBOLA", AMA_ALGORITHM_VERSION, quote_date=today - timedelta(days=1)),
        )

        records = PriceRecommendationService(db).list_today()

        assert [r.product_name for r in records] == ["TOMATE"]

    def test_get_by_name_returns_most_recent_date(self, db):
        _add(
            db,
            _record("TOMATE", AMA_ALGORITHM_VERSION, quote_date=QUOTE_DATE - timedelta(days=1)),
            _record("TOMATE", AGROLINK_ALGORITHM_VERSION, quote_date=QUOTE_DATE),
        )

        record = PriceRecommendationService(db).get_by_name("tomate")

        assert record.date == QUOTE_DATE

    def test_get_by_name_not_found(self, db):
        assert PriceRecommendationService(db).get_by_name("Inexistente") is None


class TestStoredNamesAreReachable:

    def test_bulletin_name_with_glued_digit(self, db):
        text = "DATA: 17/11/2025\nTOMATE TIPO2\nKG\n2,50 3,00"
        service = PriceRecommendationService(db, bulletin_client=FakeBulletinClient(text))

        asyncio.run(service.extract_data())

        stored = db.query(PriceRecommendation).one()
        assert stored.product_name == "TOMATE"
        assert service.get_latest_by_name(stored.product_name).id == stored.id
        assert service.get_by_name("Tomate Tipo2").id == stored.id

    def test_both_sources_share_the_key(self, db):
        text = "DATA: 17/11/2025\nALHO COMUM TIPO1\nKG\n6,00 6,50"
        service = PriceRecommendationService(
            db,
            bulletin_client=FakeBulletinClient(text),
            agrolink_collect=_agrolink_collect(_agrolink_item("Alho Comum Tipo1 Cx 10Kg Juazeiro (BA)")),
        )

        asyncio.run(service.extract_data())
        asyncio.run(service.materialize_from_agrolink())

        assert {r.product_name for r in db.query(PriceRecommendation).all()} == {"ALHO COMUM"}


class TestSourcesCoexist:

    def test_ama_and_agrolink_rows_kept_in_skip_mode(self, db):
        text = "DATA: 17/11/2025\nALHO COMUM\nKG\n6,00 6,50"
        service = PriceRecommendationService(
            db,
            bulletin_client=FakeBulletinClient(text),
            agrolink_collect=_agrolink_collect(_agrolink_item()),
        )

        asyncio.run(service.extract_data())
        result = asyncio.run(service.materialize_from_agrolink(overwrite_existing=False))

        assert result == {"coletados": 1, "gravados": 1}
        versions = sorted(
            r.algorithm_version
            for r in db.query(PriceRecommendation).filter(PriceRecommendation.product_name == "ALHO COMUM")
        )
        assert versions == [AGROLINK_ALGORITHM_VERSION, AMA_ALGORITHM_VERSION]

        latest = service.get_latest_by_name("Alho Comum")
        assert latest.algorithm_version == AMA_ALGORITHM_VERSION
        assert latest.market_price == Decimal("6.50")
        assert [r.algorithm_version for r in service.get_latest_all()] == [AMA_ALGORITHM_VERSION]


class TestWriteFailures:

    def _failing_session(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("server closed the connection"))
        return session

    def test_insert_failure_rolls_back(self):
        session = self._failing_session()
        service = PriceRecommendationService(session, bulletin_client=FakeBulletinClient())

        with pytest.raises(OperationalError):
            asyncio.run(service.extract_data())

        session.rollback.assert_called_once()
        session.commit.assert_not_called()

    def test_upsert_failure_rolls_back(self):
        session = self._failing_session()
        service = PriceRecommendationService(session, agrolink_collect=_agrolink_collect(_agrolink_item()))

        with pytest.raises(OperationalError):
            asyncio.run(service.materialize_from_agrolink(overwrite_existing=True))

        session.rollback.assert_called_once()
