from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: str
    REDIS_URL: str = "redis://localhost:6379/0"
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Boletim AMA (Juazeiro/BA)
    AMA_LISTING_URL: str = "https://www.juazeiro.ba.gov.br/category/autarquia-municipal-de-abastecimento-ama/"
    AMA_QUOTATION_KEYWORD: str = "cotação"
    AMA_PDF_PATH_MARKER: str = "/wp-content/uploads/"
    AMA_MIN_ITEMS: int = 10
    AMA_TIMEOUT_SECONDS: float = 300

    # Agrolink (fallback via OCR)
    AGROLINK_URL: str = "https://www.agrolink.com.br/regional/ba/juazeiro/cotacoes"
    AGROLINK_LOCALITY: str = "Juazeiro"
    AGROLINK_OVERWRITE: bool = False
    AGROLINK_TIMEOUT_SECONDS: float = 900
    TESSERACT_CMD: Optional[str] = None

    HTTP_TIMEOUT_SECONDS: float = 30.0
    BROWSER_TIMEOUT_MS: int = 60000
    TABLE_WAIT_TIMEOUT_MS: int = 30000

    # Agendamento diario da sincronizacao
    PRICE_SYNC_HOUR: int = 12
    PRICE_SYNC_MINUTE: int = 30
    PRICE_SYNC_TIMEZONE: str = "America/Recife"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
