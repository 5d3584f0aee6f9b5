"""
Logging estruturado (JSON) da ingestao de cotacoes
"""
import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "price-recommendation"

# Bibliotecas que logam demais no nivel INFO
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "urllib3": logging.WARNING,
    "pdfminer": logging.WARNING,
    "PIL": logging.WARNING,
    "celery": logging.INFO,
}


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Cada registro vira um objeto JSON com servico, nivel e origem no codigo"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['service'] = SERVICE_NAME
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['location'] = f"{record.module}:{record.funcName}:{record.lineno}"


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configura o logger raiz (stdout).

    Args:
        level: DEBUG, INFO, WARNING, ERROR ou CRITICAL
        json_logs: JSON estruturado (producao) ou texto simples (desenvolvimento)
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream = logging.StreamHandler(sys.stdout)
    if json_logs:
        stream.setFormatter(CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s'))
    else:
        stream.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s'))

    root_logger.addHandler(stream)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def log_source_fetch(
    logger: logging.Logger,
    source: str,
    url: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
):
    """
    Registra uma requisicao a uma fonte de cotacoes (site da AMA, Agrolink).
    Falhas saem como WARNING; a decisao de fallback e de quem chama.
    """
    logger.log(
        logging.WARNING if error else logging.INFO,
        f"Fetch {source}",
        extra={
            'source_fetch': {
                'source': source,
                'url': url,
                'status_code': status_code,
                'duration_ms': duration_ms,
                'error': error,
            }
        }
    )


def log_price_write(
    logger: logging.Logger,
    operation: str,
    rows_affected: int,
    duration_ms: Optional[float] = None,
):
    """Registra uma escrita em price_recommendations (insert-if-absent ou upsert)"""
    logger.debug(
        "Price write",
        extra={
            'price_write': {
                'operation': operation,
                'rows_affected': rows_affected,
                'duration_ms': duration_ms,
            }
        }
    )


def log_sync_result(logger: logging.Logger, result: Dict[str, Any]):
    """Resumo de uma sincronizacao (fonte usada e contagens)"""
    level = logging.INFO if result.get("ok") or result.get("skipped") else logging.ERROR
    logger.log(
        level,
        f"[Prices Sync] fonte={result.get('source')} ama={result.get('ama_count')}",
        extra={'price_sync': result}
    )
