from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, UniqueConstraint, Index
from sqlalchemy.sql import func
from app.core.database import Base


class PriceRecommendation(Base):
    """
    Cotacao de preco de um produto em uma data, gerada pelo pipeline de ingestao.

    Cada fonte (boletim AMA, Agrolink) grava sua propria observacao para
    (produto, data); a escolha entre fontes e feita na leitura.
    """
    __tablename__ = "price_recommendations"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Nome normalizado em maiusculas (ex: "ALHO COMUM")
    product_name = Column(String(200), nullable=False, index=True)

    # Unidade (ex: "Cx 10 Kg") e atributos derivados
    product_unit = Column(String(50), nullable=True)
    product_unit_kind = Column(String(20), nullable=True)  # Cx, Sc, Kg, Un...
    product_unit_kg = Column(Numeric(10, 3), nullable=True)
    pack_count = Column(Numeric(10, 2), nullable=True)
    price_per_kg = Column(Numeric(12, 2), nullable=True)

    market_price = Column(Numeric(12, 2), nullable=False)
    suggested_price = Column(Numeric(12, 2), nullable=False)

    # Data da cotacao informada pela fonte (nao a data de ingestao)
    date = Column(Date, nullable=False, index=True)

    # Origem/versao: "ama-pdf-v1", "agrolink-ocr-v1"
    algorithm_version = Column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint('product_name', 'date', 'algorithm_version', name='uq_price_recommendation_name_date_source'),
        Index('idx_price_recommendations_name_date', 'product_name', 'date'),
    )

    def __repr__(self):
        return f"<PriceRecommendation {self.product_name} {self.date} - R$ {self.market_price} ({self.algorithm_version})>"
