"""
Coleta do boletim de cotacoes da AMA (Autarquia Municipal de Abastecimento
de Juazeiro/BA).

O boletim e um PDF publicado diariamente em uma noticia do site da prefeitura.
O texto extraido do PDF vem em blocos de 3 linhas:

    ABACAXI PEROLA          <- nome
    UNID.                   <- medida
    3,00 3,50 3,50          <- precos (o ultimo e o valor usado)
"""
import asyncio
import io
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple
from urllib.parse import urljoin

import httpx
import pdfplumber
from bs4 import BeautifulSoup

from app.core.config import settings
from app.core.logging import log_source_fetch
from app.utils.br_format import BR_DATE_RX, parse_br_date

logger = logging.getLogger(__name__)

PROVIDER = "AMA Juazeiro"

# Valores no formato "99,99" / "1.250,00"
PRICE_RX = re.compile(r"\d{1,3}(?:\.\d{3})*,\d{2}")
DATE_LABEL_RX = re.compile(r"^data[:\s]", re.IGNORECASE)
PDF_HREF_RX = re.compile(r"\.pdf(\?.*)?$", re.IGNORECASE)

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'


class BulletinDiscoveryError(Exception):
    """Nenhum boletim (ou nenhum PDF valido) encontrado no site da AMA"""


class BulletinParseError(Exception):
    """Texto do PDF sem a data da cotacao"""


@dataclass
class BulletinRow:
    name: str
    price: str
    measure: str = ""


def split_lines(text: str) -> List[str]:
    """Linhas nao vazias e sem espacos nas pontas"""
    return [line.strip() for line in re.split(r"\r?\n", text or "") if line.strip()]


def find_bulletin_date(text: str) -> date:
    """Data da cotacao (primeiro dd/mm/yyyy do texto)."""
    match = BR_DATE_RX.search(text or "")
    quote_date = parse_br_date(match.group(0)) if match else None
    if quote_date is None:
        raise BulletinParseError("Data não encontrada no PDF")
    return quote_date


def extract_bulletin_rows(lines: List[str]) -> List[BulletinRow]:
    """
    Le os blocos nome | medida | precos.

    Para cada linha (a partir da terceira) com algum valor monetario, o ultimo
    valor e o preco, a linha i-2 e o nome e a linha i-1 e a medida.
    """
    rows: List[BulletinRow] = []

    for index in range(2, len(lines)):
        prices = PRICE_RX.findall(lines[index])
        if not prices:
            continue

        name_line = lines[index - 2]
        if not name_line.strip() or DATE_LABEL_RX.match(name_line):
            continue

        rows.append(BulletinRow(
            name=re.sub(r"\s{2,}", " ", name_line).strip(),
            price=prices[-1],
            measure=re.sub(r"\s+", " ", lines[index - 1]).strip(),
        ))

    return rows


def measure_to_unit(measure: Optional[str]) -> Tuple[Optional[str], Optional[int]]:
    """
    Medida do boletim -> (tipo, kg).
    "KG" -> ("Kg", 1); "UNID." -> ("Un", None); demais -> (None, None)
    """
    upper = (measure or "").upper()
    if re.search(r"KG\b", upper):
        return "Kg", 1
    if "UNID" in upper:
        return "Un", None
    return None, None


def _pdf_bytes_to_text(content: bytes) -> str:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


class AmaBulletinClient:
    """Cliente HTTP do site da AMA: descobre o PDF do dia e extrai seu texto"""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        listing_url: Optional[str] = None,
        keyword: Optional[str] = None,
        path_marker: Optional[str] = None,
    ):
        self._client = http_client
        self.listing_url = listing_url or settings.AMA_LISTING_URL
        self.keyword = keyword or settings.AMA_QUOTATION_KEYWORD
        self.path_marker = path_marker or settings.AMA_PDF_PATH_MARKER

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        start_time = time.time()
        response = await client.get(url)
        log_source_fetch(
            logger, PROVIDER, url,
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        response.raise_for_status()
        return response

    async def discover_pdf_url(self) -> str:
        """
        Descobre o PDF de cotacao do dia:
        1. na pagina de listagem, o link cujo texto contem a palavra-chave
        2. nessa noticia, os links .pdf sob o caminho de uploads
        3. o primeiro candidato que responde 200 a um HEAD
        """
        client = self._client or self._new_client()
        try:
            listing = await self._get(client, self.listing_url)
            post_url = self._find_quotation_link(listing.text, str(listing.url))
            if not post_url:
                raise BulletinDiscoveryError("Nenhuma notícia de cotação encontrada na AMA")

            post = await self._get(client, post_url)
            candidates = self._find_pdf_links(post.text, str(post.url))
            logger.info(f"[AMA Sync] {len(candidates)} PDF(s) candidatos em {post_url}")

            for pdf_url in candidates:
                try:
                    head = await client.head(pdf_url)
                except httpx.HTTPError as e:
                    log_source_fetch(logger, PROVIDER, pdf_url, error=str(e))
                    continue

                if head.status_code == 200:
                    return pdf_url

                log_source_fetch(
                    logger, PROVIDER, pdf_url,
                    status_code=head.status_code,
                    error=f"HEAD retornou {head.status_code}",
                )

            raise BulletinDiscoveryError("Nenhum PDF de cotação encontrado para hoje")
        finally:
            if self._client is None:
                await client.aclose()

    def _find_quotation_link(self, html: str, base_url: str) -> Optional[str]:
        soup = BeautifulSoup(html, "html.parser")
        keyword_rx = re.compile(re.escape(self.keyword), re.IGNORECASE)
        for anchor in soup.find_all("a", href=True):
            if keyword_rx.search(anchor.get_text(" ", strip=True)):
                return urljoin(base_url, anchor["href"])
        return None

    def _find_pdf_links(self, html: str, base_url: str) -> List[str]:
        soup = BeautifulSoup(html, "html.parser")
        links: List[str] = []
        for anchor in soup.find_all("a", href=True):
            href = urljoin(base_url, anchor["href"])
            if PDF_HREF_RX.search(href) and self.path_marker in href and href not in links:
                links.append(href)
        return links

    async def fetch_pdf_text(self, pdf_url: str) -> str:
        """Baixa o PDF e devolve o texto de todas as paginas"""
        client = self._client or self._new_client()
        try:
            response = await self._get(client, pdf_url)
            content = response.content
        finally:
            if self._client is None:
                await client.aclose()

        return await asyncio.to_thread(_pdf_bytes_to_text, content)
